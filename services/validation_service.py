from backend.call_controller import (
    OUTCOME_ANSWERED,
    OUTCOME_DECLINED,
    OUTCOME_SNOOZED,
)
from backend.push_dispatcher import PLATFORMS

CALL_OUTCOMES = {OUTCOME_ANSWERED, OUTCOME_DECLINED, OUTCOME_SNOOZED, 'missed'}


def parse_positive_int(value, default=None):
    """Return a positive int, ``default`` when blank, or None when invalid."""
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def normalize_platform(raw):
    platform = str(raw or "").strip().lower()
    return platform if platform in PLATFORMS else None


def normalize_call_outcome(raw):
    outcome = str(raw or "").strip().lower()
    return outcome if outcome in CALL_OUTCOMES else None


def clean_token(raw):
    token = str(raw or "").strip()
    return token or None
