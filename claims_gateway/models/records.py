"""ORM rows for the SQL-backed approval store.

Approval requests are updated in place as they move through their lifecycle;
history rows are append-only and never updated.
"""

from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from claims_gateway.core.database import Base


class ApprovalRequestRecord(Base):
    __tablename__ = "approval_requests"

    request_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    request_type: Mapped[str] = mapped_column(String(32), nullable=False)
    target_contract: Mapped[str] = mapped_column(String(128), nullable=False)
    target_operation: Mapped[str] = mapped_column(String(128), nullable=False)

    arguments: Mapped[list] = mapped_column(JSON, nullable=False)
    required_orgs: Mapped[list] = mapped_column(JSON, nullable=False)
    approvals: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    rejections: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    metadata_: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)

    status: Mapped[str] = mapped_column(String(16), nullable=False, index=True)

    created_by: Mapped[str] = mapped_column(String(256), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    executed_by: Mapped[str | None] = mapped_column(String(256), nullable=True)
    executed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    executed_tx_ref: Mapped[str | None] = mapped_column(String(256), nullable=True)

    def __repr__(self) -> str:
        return f"<ApprovalRequestRecord {self.request_id} status={self.status}>"


class ApprovalHistoryRecord(Base):
    __tablename__ = "approval_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    request_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("approval_requests.request_id"), nullable=False, index=True
    )
    action: Mapped[str] = mapped_column(String(16), nullable=False)
    organization: Mapped[str | None] = mapped_column(String(128), nullable=True)
    actor: Mapped[str | None] = mapped_column(String(256), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<ApprovalHistoryRecord {self.request_id} {self.action} by {self.organization}>"
