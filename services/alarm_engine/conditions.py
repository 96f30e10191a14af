from __future__ import annotations

from alarm_engine.models import Condition

CONDITION_TEXT: dict[str, str] = {
    "gt": "greater than",
    "lt": "less than",
    "gte": "greater than or equal to",
    "lte": "less than or equal to",
    "eq": "equal to",
    "neq": "not equal to",
    "spike": "spiked above",
    "drop": "dropped below",
}

SUPPORTED_CONDITIONS = frozenset(c.value for c in Condition)


def evaluate_condition(value: float, condition: str, threshold: float) -> bool:
    """Check if a metric value meets a rule condition.

    spike/drop compare against the threshold only, like gt/lt; no trend
    history is consulted. eq/neq are exact float comparisons.
    Unknown conditions never match.
    """
    if condition == "gt":
        return value > threshold
    elif condition == "lt":
        return value < threshold
    elif condition == "gte":
        return value >= threshold
    elif condition == "lte":
        return value <= threshold
    elif condition == "eq":
        return value == threshold
    elif condition == "neq":
        return value != threshold
    elif condition == "spike":
        return value > threshold
    elif condition == "drop":
        return value < threshold
    return False


def condition_text(condition: str | None) -> str:
    if condition is None:
        return "undefined"
    return CONDITION_TEXT.get(condition, condition)
