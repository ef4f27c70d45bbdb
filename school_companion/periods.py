"""
Academic periods.

A period token names a slice of the school year used to bound grade
aggregation. Grades are tagged with "trim1" or "pent"; "all" is the
catch-all used by the statistics view.
"""

from __future__ import annotations

import datetime
from typing import Any, Dict, Optional

TRIM1 = "trim1"
PENT = "pent"
ALL = "all"

PERIODS = (TRIM1, PENT, ALL)
GRADE_PERIODS = (TRIM1, PENT)

PERIOD_LABELS = {
    TRIM1: "1st Term (Sep-Dec)",
    PENT: "2nd Term (Jan-Jun)",
    ALL: "All statistics",
}

PERIOD_SHORT_LABELS = {
    TRIM1: "1st Term",
    PENT: "2nd Term",
    ALL: "All",
}

ALL_START = datetime.date(2000, 1, 1)
ALL_END = datetime.date(2099, 12, 31)


def normalize_period(token: Optional[str]) -> str:
    token = str(token or "").strip().lower()
    return token if token in PERIODS else ALL


def resolve_period(token: Optional[str], today: Optional[datetime.date] = None) -> Dict[str, Any]:
    """Map a period token to {token, start, end, label}. Unknown tokens resolve to "all"."""
    token = normalize_period(token)
    year = (today or datetime.date.today()).year

    if token == TRIM1:
        start, end = datetime.date(year, 9, 1), datetime.date(year, 12, 31)
    elif token == PENT:
        start, end = datetime.date(year, 1, 1), datetime.date(year, 6, 30)
    else:
        start, end = ALL_START, ALL_END

    return {"token": token, "start": start, "end": end, "label": PERIOD_LABELS[token]}
