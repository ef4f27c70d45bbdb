"""
Report cards.

An "actual" report card is a dated snapshot of the grades written on the
school's report for a period. The user types one grade per subject; those
values live only in the snapshot and never touch the grade history. Once
saved a card is never edited, only deleted.

A "predicted" report card is computed on demand from the current period
averages and is never stored. Its overall average is the mean of the subject
averages, whereas the statistics view averages every raw grade.
"""

from __future__ import annotations

import datetime
import logging
import time
from typing import Any, Collection, Dict, List, Mapping, Optional

from school_companion.errors import NotFoundError, ValidationError
from school_companion.grades import (
    SUBJECTS,
    average,
    coerce_id,
    filter_by_period,
    parse_grade_value,
    to_iso,
)
from school_companion.periods import PERIODS, resolve_period
from school_companion.store import RecordStore

logger = logging.getLogger(__name__)

REPORT_CARDS = "report_cards"

ACTUAL = "actual"
PREDICTED = "predicted"


def _is_blank(raw: Any) -> bool:
    return raw is None or (isinstance(raw, str) and not raw.strip())


async def new_report_id(store: RecordStore, now: Optional[float] = None,
                        reserved: Collection[str] = ()) -> str:
    """A free "report-<ms>" id; `reserved` holds ids picked for records not yet written."""
    ms = int((now if now is not None else time.time()) * 1000)
    while f"report-{ms}" in reserved or await store.get(REPORT_CARDS, f"report-{ms}") is not None:
        ms += 1
    return f"report-{ms}"


async def save_actual_report_card(store: RecordStore, period: Any, date: Any,
                                  per_subject_grades: Mapping[Any, Any],
                                  now: Optional[float] = None) -> Dict[str, Any]:
    if _is_blank(period) or _is_blank(date):
        raise ValidationError("Choose a period and a date")
    if period not in PERIODS:
        raise ValidationError(f"Unknown period: {period!r}")
    date_iso = to_iso(date)
    if date_iso is None:
        raise ValidationError(f"Invalid date: {date!r}")

    entered = {coerce_id(k): v for k, v in (per_subject_grades or {}).items() if not _is_blank(v)}
    if not entered:
        raise ValidationError("Enter at least one grade")

    subjects = {s["id"]: s for s in await store.get_all(SUBJECTS)}
    missing = [k for k in entered if k not in subjects]
    if missing:
        raise NotFoundError(f"Subject {missing[0]} not found")

    rows: List[Dict[str, Any]] = []
    for sid, s in subjects.items():
        if sid not in entered:
            continue
        rows.append({
            "subject_id": sid,
            "name": s.get("name", ""),
            "grade": parse_grade_value(entered[sid]),
        })

    card = {
        "id": await new_report_id(store, now),
        "period": period,
        "date": date_iso,
        "subjects": rows,
        "average": average(r["grade"] for r in rows),
        "kind": ACTUAL,
    }
    await store.add(REPORT_CARDS, card)
    logger.info("Saved report card %s (%s, %d subjects)", card["id"], period, len(rows))
    return card


def predict_report_card(subjects: List[Dict[str, Any]], period: Any,
                        today: Optional[datetime.date] = None) -> Dict[str, Any]:
    resolved = resolve_period(period, today)

    rows = []
    for s in subjects:
        grades = filter_by_period(s.get("grades") or [], resolved["token"], today)
        avg = average(grades)
        if avg is None:
            continue
        rows.append({
            "subject_id": s.get("id"),
            "name": s.get("name", ""),
            "average": avg,
            "count": len(grades),
        })

    return {
        "kind": PREDICTED,
        "period": resolved["token"],
        "label": resolved["label"],
        "date": (today or datetime.date.today()).isoformat(),
        "subjects": rows,
        "average": average(r["average"] for r in rows),
    }


async def list_report_cards(store: RecordStore) -> List[Dict[str, Any]]:
    cards = [c for c in await store.get_all(REPORT_CARDS) if c.get("kind") == ACTUAL]
    cards.sort(key=lambda c: str(c.get("date") or ""), reverse=True)
    return cards


async def delete_report_card(store: RecordStore, report_id: Any) -> None:
    if await store.get(REPORT_CARDS, report_id) is None:
        raise NotFoundError(f"Report card {report_id} not found")
    await store.delete(REPORT_CARDS, report_id)
    logger.info("Deleted report card %s", report_id)
