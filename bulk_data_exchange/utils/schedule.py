"""
Schedule grammar for recurring exports.

Accepts the shortcuts ``daily``, ``weekly`` and ``monthly`` (fixed offsets
from the reference time) or a standard 5-field cron expression.
"""

import re
from datetime import datetime, timedelta, timezone
from typing import List, Tuple

from croniter import croniter
from dateutil.relativedelta import relativedelta

from ..core.exceptions import InvalidInputError, InvalidScheduleError

SHORTCUTS = ("daily", "weekly", "monthly")

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def validate_schedule(schedule: str) -> str:
    """
    Validate a schedule expression.

    Returns:
        The normalised expression

    Raises:
        InvalidScheduleError: If the expression is neither a shortcut nor a 5-field cron
    """
    expression = str(schedule or "").strip()
    if expression.lower() in SHORTCUTS:
        return expression.lower()

    if not expression:
        raise InvalidScheduleError(expression, "Schedule is required")

    fields = expression.split()
    if len(fields) != 5:
        raise InvalidScheduleError(expression, f"Expected 5 cron fields, got {len(fields)}")

    if not croniter.is_valid(expression):
        raise InvalidScheduleError(expression, "Invalid cron expression")

    return " ".join(fields)


def next_run_from_schedule(now: datetime, schedule: str) -> datetime:
    """
    Compute the next firing strictly after ``now``.

    Args:
        now: Reference time (naive values are treated as UTC)
        schedule: Shortcut or 5-field cron expression

    Returns:
        Timezone-aware UTC datetime of the next firing
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    expression = validate_schedule(schedule)

    if expression == "daily":
        return now + timedelta(hours=24)
    if expression == "weekly":
        return now + timedelta(days=7)
    if expression == "monthly":
        return now + relativedelta(months=1)

    try:
        return croniter(expression, now).get_next(datetime)
    except (ValueError, KeyError) as e:
        raise InvalidScheduleError(expression, str(e))


def normalize_recipients(recipients: List[str]) -> Tuple[List[str], List[str]]:
    """
    Split recipients into valid and rejected addresses.

    Returns:
        Tuple of (valid addresses, rejected entries)
    """
    valid, rejected = [], []
    for entry in recipients or []:
        address = str(entry).strip()
        if not address:
            continue
        (valid if EMAIL_PATTERN.match(address) else rejected).append(address)
    return valid, rejected


def require_recipients(recipients: List[str]) -> List[str]:
    """Valid recipient addresses, de-duplicated in order; at least one is required."""
    valid, _ = normalize_recipients(recipients)
    unique = list(dict.fromkeys(valid))
    if not unique:
        raise InvalidInputError("At least one valid recipient email is required", field="recipients")
    return unique
