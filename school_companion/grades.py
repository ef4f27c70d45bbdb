from __future__ import annotations

import datetime
import logging
import math
from typing import Any, Dict, Iterable, List, Optional, Tuple

from school_companion.config import MAX_GRADE, MIN_GRADE, PASSING_GRADE
from school_companion.errors import NotFoundError, ValidationError
from school_companion.periods import ALL, GRADE_PERIODS, TRIM1, resolve_period
from school_companion.store import RecordStore

logger = logging.getLogger(__name__)

SUBJECTS = "subjects"


# -------------------------------
# Small utility helpers
# -------------------------------

def coerce_id(x: Any) -> Any:
    """Record keys arrive from widgets as str or int; the store keys subjects by int."""
    if isinstance(x, bool):
        return x
    if isinstance(x, int):
        return x
    s = str(x).strip() if x is not None else ""
    if s.isdigit():
        return int(s)
    return s or None


def to_iso(d: Any) -> Optional[str]:
    if isinstance(d, datetime.datetime):
        return d.date().isoformat()
    if isinstance(d, datetime.date):
        return d.isoformat()
    if isinstance(d, str) and d.strip():
        try:
            return datetime.date.fromisoformat(d.strip()[:10]).isoformat()
        except ValueError:
            return None
    return None


def as_number(x: Any) -> Optional[float]:
    if x is None or isinstance(x, bool):
        return None
    try:
        v = float(str(x).strip().replace(",", ".")) if isinstance(x, str) else float(x)
    except (TypeError, ValueError):
        return None
    if math.isnan(v) or math.isinf(v):
        return None
    return v


def parse_grade_value(raw: Any) -> float:
    """Parse user input into a grade in [0, 10]."""
    v = as_number(raw)
    if v is None:
        raise ValidationError(f"Grade must be a number, got {raw!r}")
    if not (MIN_GRADE <= v <= MAX_GRADE):
        raise ValidationError(f"Grade must be between {MIN_GRADE:g} and {MAX_GRADE:g}, got {v:g}")
    return v


def _value(g: Any) -> float:
    return float(g["value"]) if isinstance(g, dict) else float(g)


# -------------------------------
# Legacy grade normalization
# -------------------------------

def normalize_grade(entry: Any, today: Optional[datetime.date] = None) -> Optional[Dict[str, Any]]:
    """
    Bring one stored grade into the canonical {value, date, period} shape.

    Old data files kept bare numbers; those get today's date and the first
    term. Structured entries without a date get today's; entries without a
    period keep period=None, which matches every period when filtering.
    Returns None for entries that can't be salvaged.
    """
    today_iso = (today or datetime.date.today()).isoformat()

    if isinstance(entry, dict):
        v = as_number(entry.get("value"))
        date_iso = to_iso(entry.get("date")) or today_iso
        period = entry.get("period")
        period = period if period in GRADE_PERIODS else None
    else:
        v = as_number(entry)
        date_iso = today_iso
        period = TRIM1

    if v is None or not (MIN_GRADE <= v <= MAX_GRADE):
        return None
    return {"value": v, "date": date_iso, "period": period}


def normalize_grades(grades: Any, today: Optional[datetime.date] = None) -> List[Dict[str, Any]]:
    if not isinstance(grades, list):
        return []
    out = []
    for entry in grades:
        g = normalize_grade(entry, today)
        if g is None:
            logger.warning("Dropping unusable grade entry %r", entry)
            continue
        out.append(g)
    return out


def normalize_subject(subject: Dict[str, Any], today: Optional[datetime.date] = None) -> Tuple[Dict[str, Any], bool]:
    """Return (normalized subject, changed). Running it on its own output changes nothing."""
    fixed = dict(subject)
    fixed["name"] = str(subject.get("name") or "").strip() or "Untitled subject"
    fixed["grades"] = normalize_grades(subject.get("grades"), today)
    return fixed, fixed != subject


# -------------------------------
# Grade aggregation
# -------------------------------

def filter_by_period(grades: Iterable[Dict[str, Any]], token: Optional[str],
                     today: Optional[datetime.date] = None) -> List[Dict[str, Any]]:
    period = resolve_period(token, today)
    token = period["token"]
    start, end = period["start"].isoformat(), period["end"].isoformat()

    out = []
    for g in grades:
        tag = g.get("period")
        # "all" is the catch-all: tagged grades of either term match it too
        if tag and token != ALL and tag != token:
            continue
        d = g.get("date")
        if not d or not (start <= str(d) <= end):
            continue
        out.append(g)
    return out


def average(grades: Iterable[Any]) -> Optional[float]:
    """Plain mean rounded to 2 decimals, None when there is nothing to average."""
    values = [_value(g) for g in grades]
    if not values:
        return None
    return round(sum(values) / len(values), 2)


def format_average(avg: Optional[float], missing: str = "N/A") -> str:
    return missing if avg is None else f"{avg:.2f}"


def build_statistics(subjects: List[Dict[str, Any]], token: Optional[str],
                     today: Optional[datetime.date] = None) -> Dict[str, Any]:
    period = resolve_period(token, today)

    all_values: List[float] = []
    breakdown: List[Dict[str, Any]] = []
    best: Optional[Dict[str, Any]] = None
    worst: Optional[Dict[str, Any]] = None

    for s in subjects:
        filtered = filter_by_period(s.get("grades") or [], period["token"], today)
        if not filtered:
            continue
        all_values.extend(_value(g) for g in filtered)

        avg = average(filtered)
        row = {
            "id": s.get("id"),
            "name": s.get("name", ""),
            "count": len(filtered),
            "average": avg,
            "grades": filtered,
        }
        breakdown.append(row)

        # strict comparisons: on ties the first subject in store order wins
        if best is None or avg > best["average"]:
            best = row
        if worst is None or avg < worst["average"]:
            worst = row

    def _pick(row: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if row is None:
            return None
        return {"id": row["id"], "name": row["name"], "average": row["average"]}

    count = len(all_values)
    return {
        "period": period["token"],
        "label": period["label"],
        "start": period["start"],
        "end": period["end"],
        "subject_count": len(subjects),
        "grade_count": count,
        "global_average": round(sum(all_values) / count, 2) if count else None,
        "best_grade": max(all_values) if count else None,
        "worst_grade": min(all_values) if count else None,
        "best_subject": _pick(best),
        "worst_subject": _pick(worst) if worst is not None and worst["average"] < PASSING_GRADE else None,
        "subjects": breakdown,
    }


# -------------------------------
# Subjects & grades (store)
# -------------------------------

async def _load_subject(store: RecordStore, record: Dict[str, Any],
                        today: Optional[datetime.date]) -> Dict[str, Any]:
    subject, changed = normalize_subject(record, today)
    if changed:
        logger.info("Migrated grades of subject %s to the structured format", subject.get("id"))
        await store.put(SUBJECTS, subject)
    return subject


async def list_subjects(store: RecordStore, today: Optional[datetime.date] = None) -> List[Dict[str, Any]]:
    return [await _load_subject(store, r, today) for r in await store.get_all(SUBJECTS)]


async def get_subject(store: RecordStore, subject_id: Any, today: Optional[datetime.date] = None) -> Dict[str, Any]:
    key = coerce_id(subject_id)
    record = await store.get(SUBJECTS, key) if key is not None else None
    if record is None:
        raise NotFoundError(f"Subject {subject_id} not found")
    return await _load_subject(store, record, today)


async def add_subject(store: RecordStore, name: Any) -> Dict[str, Any]:
    name = str(name or "").strip()
    if not name:
        raise ValidationError("Enter a subject name")
    subject = {"name": name, "grades": []}
    subject["id"] = await store.add(SUBJECTS, subject)
    logger.info("Added subject %s (%s)", subject["id"], name)
    return subject


async def delete_subject(store: RecordStore, subject_id: Any) -> None:
    """Delete a subject and its grades. Tests pointing at it are left alone."""
    subject = await get_subject(store, subject_id)
    await store.delete(SUBJECTS, subject["id"])
    logger.info("Deleted subject %s (%s)", subject["id"], subject["name"])


async def add_grade(store: RecordStore, subject_id: Any, value: Any, period: str = TRIM1,
                    on: Optional[datetime.date] = None) -> Dict[str, Any]:
    value = parse_grade_value(value)
    if period not in GRADE_PERIODS:
        raise ValidationError(f"Unknown period: {period!r}")
    on = on or datetime.date.today()

    subject = await get_subject(store, subject_id, today=on)
    grade = {"value": value, "date": on.isoformat(), "period": period}
    subject["grades"].append(grade)
    await store.put(SUBJECTS, subject)
    logger.info("Added grade %s to subject %s (%s)", value, subject["id"], period)
    return grade


async def delete_grade(store: RecordStore, subject_id: Any, index: int) -> Dict[str, Any]:
    """Remove the grade at `index` in the subject's stored order."""
    subject = await get_subject(store, subject_id)
    grades = subject["grades"]
    if not isinstance(index, int) or isinstance(index, bool) or not (0 <= index < len(grades)):
        raise ValidationError(f"No grade at position {index}")
    removed = grades.pop(index)
    await store.put(SUBJECTS, subject)
    logger.info("Deleted grade %s from subject %s", removed["value"], subject["id"])
    return removed
