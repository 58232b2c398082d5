"""Weather-index policy shapes and the consensus observation they are checked against.

Policies and templates are read from the ledger, which emits camelCase keys
(``policyID``, ``indexThresholds``…); the aliases below map them onto
snake_case attributes. Unknown keys are ignored.
"""

from dataclasses import dataclass, field

from pydantic import BaseModel, Field


class ConsensusWeatherObservation(BaseModel):
    """Measurements agreed on by the oracle network for one location and time."""

    location: str
    timestamp: str
    rainfall: float
    temperature: float
    humidity: float


class PolicyThresholdRule(BaseModel):
    # Rainfall | Temperature | Humidity | Drought; kept as free text so that
    # unknown index types reach the evaluator instead of failing the template.
    index_type: str = Field(alias="indexType")
    operator: str
    threshold_value: float = Field(alias="thresholdValue")
    payout_percent: float = Field(alias="payoutPercent", ge=0, le=100)
    severity: str = ""
    metric: str | None = None
    measurement_days: int | None = Field(default=None, alias="measurementDays")

    model_config = {"populate_by_name": True}


class Policy(BaseModel):
    policy_id: str = Field(alias="policyID")
    farmer_id: str = Field(alias="farmerID")
    template_id: str = Field(alias="templateID")
    farm_location: str = Field(alias="farmLocation")
    coverage_amount: float = Field(alias="coverageAmount")
    status: str

    model_config = {"populate_by_name": True}


class PolicyTemplate(BaseModel):
    template_id: str = Field(alias="templateID")
    index_thresholds: list[PolicyThresholdRule] = Field(
        default_factory=list, alias="indexThresholds"
    )

    model_config = {"populate_by_name": True}


@dataclass
class PayoutOutcome:
    """Result of one consensus run. Built fresh per run."""

    policies_checked: int = 0
    thresholds_breached: int = 0
    claims_triggered: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
