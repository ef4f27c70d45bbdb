"""
Target grade solver.

With `n` grades averaging `m`, the next grade `x` that brings the average to
`t` satisfies (m*n + x) / (n + 1) = t, so x = t*(n + 1) - m*n.
"""

from __future__ import annotations

import datetime
import logging
from typing import Any, Dict, Optional

from school_companion.config import MAX_GRADE, MIN_GRADE
from school_companion.errors import ValidationError
from school_companion.grades import as_number, average, filter_by_period, get_subject
from school_companion.periods import ALL
from school_companion.store import RecordStore

logger = logging.getLogger(__name__)

INFEASIBLE = "infeasible"
ACHIEVED = "achieved"
NEEDED = "needed"


def solve_target(current_average: Any, count: Any, target: Any, subject_id: Any = None) -> Dict[str, Any]:
    """
    Minimum next grade needed to reach `target`.

    status is "infeasible" when x > 10, "achieved" when x < 0 (even a 0 keeps
    the average on target) and "needed" otherwise; x == 0 and x == 10 are both
    "needed".
    """
    t = as_number(target)
    if t is None or not (MIN_GRADE <= t <= MAX_GRADE):
        logger.warning("Rejected target %r for subject %s", target, subject_id)
        raise ValidationError(f"Target must be a number between {MIN_GRADE:g} and {MAX_GRADE:g}")

    m = as_number(current_average) or 0.0
    try:
        n = int(count or 0)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Grade count must be a whole number, got {count!r}") from e
    if n < 0:
        raise ValidationError("Grade count can't be negative")

    x = t * (n + 1) - m * n

    if x > MAX_GRADE:
        status = INFEASIBLE
    elif x < MIN_GRADE:
        status = ACHIEVED
    else:
        status = NEEDED

    return {
        "subject_id": subject_id,
        "target": t,
        "current_average": m,
        "count": n,
        "status": status,
        "needed": round(x, 2),
    }


def describe_target(result: Dict[str, Any]) -> str:
    if result["status"] == INFEASIBLE:
        return f"Not reachable with a single grade (you would need {result['needed']:.2f})."
    if result["status"] == ACHIEVED:
        return "Target already reached: even a 0 keeps you on target."
    return f"You need at least {result['needed']:.2f} on the next grade."


async def target_for_subject(store: RecordStore, subject_id: Any, target: Any, period: str = ALL,
                             today: Optional[datetime.date] = None) -> Dict[str, Any]:
    subject = await get_subject(store, subject_id, today=today)
    grades = filter_by_period(subject["grades"], period, today)
    return solve_target(average(grades) or 0.0, len(grades), target, subject_id=subject["id"])
