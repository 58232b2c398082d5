"""Threshold evaluation — does one observation breach one policy rule?

``breached`` is pure and total: for any rule and observation it returns a
bool. Unknown index types and operators are logged and treated as "not
breached" rather than raised, so one malformed template rule can never abort
a payout run.
"""

import logging
import math
import operator as op
from typing import Callable

from claims_gateway.core.config import settings
from claims_gateway.models.weather import ConsensusWeatherObservation, PolicyThresholdRule

logger = logging.getLogger(__name__)

_FIELD_BY_INDEX: dict[str, str] = {
    "rainfall": "rainfall",
    "temperature": "temperature",
    "humidity": "humidity",
}

_COMPARATORS: dict[str, Callable[[float, float], bool]] = {
    "<": op.lt,
    ">": op.gt,
    "<=": op.le,
    ">=": op.ge,
}


def observed_value(index_type: str, observation: ConsensusWeatherObservation) -> float | None:
    """Return the measurement a rule's index type refers to, or None if unsupported."""
    field_name = _FIELD_BY_INDEX.get((index_type or "").strip().lower())
    if field_name is None:
        return None
    return getattr(observation, field_name)


def breached(
    rule: PolicyThresholdRule,
    observation: ConsensusWeatherObservation,
    tolerance: float | None = None,
) -> bool:
    """Compare the observed value against ``rule.threshold_value`` with ``rule.operator``.

    ``==`` is approximate: values within ``tolerance`` (default 0.01) are equal.
    """
    actual = observed_value(rule.index_type, observation)
    if actual is None:
        logger.warning("Unknown index type: %s", rule.index_type)
        return False
    if math.isnan(actual) or math.isnan(rule.threshold_value):
        logger.warning("Non-numeric comparison for %s: %s vs %s", rule.index_type, actual, rule.threshold_value)
        return False

    if rule.operator == "==":
        eps = settings.equality_tolerance if tolerance is None else tolerance
        return abs(actual - rule.threshold_value) < eps

    compare = _COMPARATORS.get(rule.operator)
    if compare is None:
        logger.warning("Unknown operator: %s", rule.operator)
        return False
    return compare(actual, rule.threshold_value)
