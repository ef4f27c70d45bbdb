"""
Backup export/import.

The backup is one JSON document:

    {"version": "2.0", "exportDate": "...", "subjects": [...], "tasks": [...],
     "tests": [...], "reportCards": [...]}

Import appends to whatever is already stored; nothing is merged or
de-duplicated. Every record is checked first and everything is then saved in
one store write, so a bad file or a failed save leaves the store untouched.
Imported records get fresh identifiers and tests/report cards are re-pointed
at the new subject ids.
"""

from __future__ import annotations

import datetime
import json
import logging
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

from school_companion.config import EXPORT_VERSION, MAX_GRADE, MIN_GRADE
from school_companion.errors import ImportFormatError, ValidationError
from school_companion.grades import (
    SUBJECTS,
    as_number,
    coerce_id,
    list_subjects,
    normalize_grade,
    to_iso,
)
from school_companion.periods import PERIODS
from school_companion.report_cards import ACTUAL, REPORT_CARDS, new_report_id
from school_companion.schedule import TASKS, TEST_KINDS, TESTS, parse_start_time
from school_companion.store import RecordStore

logger = logging.getLogger(__name__)

# backup key -> store collection
OPTIONAL_COLLECTIONS = {
    "tasks": TASKS,
    "tests": TESTS,
    "reportCards": REPORT_CARDS,
}


# -------------------------------
# Export
# -------------------------------

async def export_data(store: RecordStore, now: Optional[datetime.datetime] = None) -> Dict[str, Any]:
    now = now or datetime.datetime.now(datetime.timezone.utc)
    return {
        "version": EXPORT_VERSION,
        "exportDate": now.isoformat(),
        "subjects": await list_subjects(store),
        "tasks": await store.get_all(TASKS),
        "tests": await store.get_all(TESTS),
        "reportCards": await store.get_all(REPORT_CARDS),
    }


def export_json(data: Dict[str, Any]) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False, default=str)


def grades_dataframe(subjects: List[Dict[str, Any]]) -> pd.DataFrame:
    rows = []
    for s in subjects:
        for g in s.get("grades") or []:
            rows.append({
                "subject_id": s.get("id"),
                "subject": s.get("name", ""),
                "value": g.get("value"),
                "date": g.get("date"),
                "period": g.get("period"),
            })
    return pd.DataFrame(rows, columns=["subject_id", "subject", "value", "date", "period"])


def export_grades_csv(subjects: List[Dict[str, Any]]) -> str:
    return grades_dataframe(subjects).to_csv(index=False)


# -------------------------------
# Import: validation
# -------------------------------

def _fail(where: str, msg: str) -> ImportFormatError:
    return ImportFormatError(f"Invalid backup file: {where}: {msg}")


def _require_dict(rec: Any, where: str) -> Dict[str, Any]:
    if not isinstance(rec, dict):
        raise _fail(where, "not an object")
    return rec


def _require_date(raw: Any, where: str) -> str:
    iso = to_iso(raw)
    if iso is None:
        raise _fail(where, f"invalid date {raw!r}")
    return iso


def _ref(x: Any) -> Any:
    # only scalar ids can be re-pointed; anything else becomes an orphan
    return coerce_id(x) if isinstance(x, (int, str)) and not isinstance(x, bool) else None


def _check_subject(rec: Any, where: str) -> Tuple[Any, Dict[str, Any]]:
    rec = _require_dict(rec, where)
    name = str(rec.get("name") or "").strip()
    if not name:
        raise _fail(where, "missing name")

    raw_grades = rec.get("grades", [])
    if raw_grades is None:
        raw_grades = []
    if not isinstance(raw_grades, list):
        raise _fail(where, "grades is not a list")

    grades = []
    for j, entry in enumerate(raw_grades):
        g = normalize_grade(entry)
        if g is None:
            raise _fail(f"{where}.grades[{j}]", f"unusable grade {entry!r}")
        grades.append(g)

    return _ref(rec.get("id")), {"name": name, "grades": grades}


def _check_task(rec: Any, where: str) -> Dict[str, Any]:
    rec = _require_dict(rec, where)
    text = str(rec.get("text") or "").strip()
    if not text:
        raise _fail(where, "missing text")
    try:
        start_time = parse_start_time(rec.get("start_time"))
    except ValidationError as e:
        raise _fail(where, str(e)) from e
    return {
        "text": text,
        "date": _require_date(rec.get("date"), where),
        "start_time": start_time,
        "completed": bool(rec.get("completed", False)),
    }


def _check_test(rec: Any, where: str) -> Dict[str, Any]:
    rec = _require_dict(rec, where)
    kind = rec.get("kind") or "generic"
    if kind not in TEST_KINDS:
        raise _fail(where, f"unknown kind {kind!r}")
    return {
        "subject_id": _ref(rec.get("subject_id")),
        "date": _require_date(rec.get("date"), where),
        "kind": kind,
        "note": str(rec.get("note") or ""),
    }


def _check_report_card(rec: Any, where: str) -> Dict[str, Any]:
    rec = _require_dict(rec, where)
    if rec.get("kind", ACTUAL) != ACTUAL:
        raise _fail(where, "only actual report cards can be imported")
    if rec.get("period") not in PERIODS:
        raise _fail(where, f"unknown period {rec.get('period')!r}")

    entries = rec.get("subjects")
    if not isinstance(entries, list) or not entries:
        raise _fail(where, "a report card needs at least one subject")

    rows = []
    for j, e in enumerate(entries):
        e = _require_dict(e, f"{where}.subjects[{j}]")
        grade = as_number(e.get("grade"))
        if grade is None or not (MIN_GRADE <= grade <= MAX_GRADE):
            raise _fail(f"{where}.subjects[{j}]", f"invalid grade {e.get('grade')!r}")
        rows.append({"subject_id": _ref(e.get("subject_id")), "name": str(e.get("name") or ""), "grade": grade})

    avg = as_number(rec.get("average"))
    if avg is None:
        avg = round(sum(r["grade"] for r in rows) / len(rows), 2)

    return {
        "period": rec["period"],
        "date": _require_date(rec.get("date"), where),
        "subjects": rows,
        "average": avg,
        "kind": ACTUAL,
    }


def _parse_payload(payload: Any) -> Dict[str, Any]:
    if isinstance(payload, (bytes, bytearray)):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ImportFormatError("Invalid backup file: not UTF-8 text") from e
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except ValueError as e:
            raise ImportFormatError(f"Invalid backup file: {e}") from e
    if not isinstance(payload, dict):
        raise ImportFormatError("Invalid backup file: expected a JSON object")
    if not isinstance(payload.get("subjects"), list):
        raise ImportFormatError("Invalid backup file: 'subjects' must be a list")
    for key in OPTIONAL_COLLECTIONS:
        if payload.get(key) is not None and not isinstance(payload[key], list):
            raise ImportFormatError(f"Invalid backup file: '{key}' must be a list")
    return payload


def validate_backup(payload: Any) -> Dict[str, List[Any]]:
    """Check the whole document and return the cleaned records, or raise ImportFormatError."""
    data = _parse_payload(payload)
    return {
        "subjects": [_check_subject(r, f"subjects[{i}]") for i, r in enumerate(data["subjects"])],
        "tasks": [_check_task(r, f"tasks[{i}]") for i, r in enumerate(data.get("tasks") or [])],
        "tests": [_check_test(r, f"tests[{i}]") for i, r in enumerate(data.get("tests") or [])],
        "reportCards": [_check_report_card(r, f"reportCards[{i}]")
                        for i, r in enumerate(data.get("reportCards") or [])],
    }


# -------------------------------
# Import: write
# -------------------------------

async def import_data(store: RecordStore, payload: Any) -> Dict[str, int]:
    try:
        clean = validate_backup(payload)
    except ImportFormatError:
        logger.warning("Rejected backup file", exc_info=True)
        raise

    # subject ids are picked up front so tests and cards can be re-pointed
    # before the single write below
    new_ids = await store.next_keys(SUBJECTS, len(clean["subjects"]))
    subjects = []
    id_map = {}
    for (old, rec), new in zip(clean["subjects"], new_ids):
        subjects.append(dict(rec, id=new))
        if old is not None:
            id_map[old] = new

    # references to subjects outside the backup can't be trusted in this store
    tests = [dict(t, subject_id=id_map.get(t["subject_id"])) for t in clean["tests"]]

    cards = []
    taken: set = set()
    for card in clean["reportCards"]:
        card = dict(card)
        card["subjects"] = [dict(r, subject_id=id_map.get(r["subject_id"])) for r in card["subjects"]]
        card["id"] = await new_report_id(store, reserved=taken)
        taken.add(card["id"])
        cards.append(card)

    await store.add_batch({
        SUBJECTS: subjects,
        TASKS: clean["tasks"],
        TESTS: tests,
        REPORT_CARDS: cards,
    })

    counts = {key: len(records) for key, records in clean.items()}
    logger.info("Imported backup: %s", counts)
    return counts
