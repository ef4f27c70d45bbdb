from __future__ import annotations

import datetime
import logging
import re
from typing import Any, Dict, List, Optional

from school_companion.config import URGENT_DAYS
from school_companion.errors import NotFoundError, ValidationError
from school_companion.grades import SUBJECTS, coerce_id, to_iso
from school_companion.store import RecordStore

logger = logging.getLogger(__name__)

TASKS = "tasks"
TESTS = "tests"

TEST_KINDS = ("generic", "oral", "written", "project")
TEST_KIND_ICONS = {
    "generic": "📅",
    "oral": "🗣️",
    "written": "📝",
    "project": "🎯",
}

WEEKDAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
MONTH_ABBR = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

UNKNOWN_SUBJECT = "Unknown subject"

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def _parse_date(x: Any) -> Optional[datetime.date]:
    iso = to_iso(x)
    return datetime.date.fromisoformat(iso) if iso else None


def subject_label(subjects_by_id: Dict[Any, Dict[str, Any]], subject_id: Any) -> str:
    s = subjects_by_id.get(coerce_id(subject_id))
    if not s:
        return UNKNOWN_SUBJECT
    return str(s.get("name", "")).strip() or UNKNOWN_SUBJECT


# -------------------------------
# Tasks (one calendar day each)
# -------------------------------

def parse_start_time(raw: Any) -> str:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return "00:00"
    if isinstance(raw, datetime.time):
        return raw.strftime("%H:%M")
    s = str(raw).strip()
    if not _TIME_RE.match(s):
        raise ValidationError(f"Start time must look like HH:MM, got {s!r}")
    return s


async def add_task(store: RecordStore, text: Any, start_time: Any = None,
                   on: Optional[datetime.date] = None) -> Dict[str, Any]:
    text = str(text or "").strip()
    if not text:
        raise ValidationError("Enter a task")

    task = {
        "text": text,
        "date": (on or datetime.date.today()).isoformat(),
        "start_time": parse_start_time(start_time),
        "completed": False,
    }
    task["id"] = await store.add(TASKS, task)
    logger.info("Added task %s for %s", task["id"], task["date"])
    return task


async def _get_task(store: RecordStore, task_id: Any) -> Dict[str, Any]:
    task = await store.get(TASKS, coerce_id(task_id))
    if task is None:
        raise NotFoundError(f"Task {task_id} not found")
    return task


async def toggle_task(store: RecordStore, task_id: Any) -> Dict[str, Any]:
    task = await _get_task(store, task_id)
    task["completed"] = not bool(task.get("completed", False))
    await store.put(TASKS, task)
    return task


async def delete_task(store: RecordStore, task_id: Any) -> None:
    task = await _get_task(store, task_id)
    await store.delete(TASKS, task["id"])
    logger.info("Deleted task %s", task["id"])


async def tasks_for_day(store: RecordStore, day: Optional[datetime.date] = None) -> List[Dict[str, Any]]:
    day = day or datetime.date.today()
    tasks = await store.get_all_by_index(TASKS, "date", day.isoformat())
    return sorted(tasks, key=lambda t: str(t.get("start_time") or "00:00"))


# -------------------------------
# Tests
# -------------------------------

async def add_test(store: RecordStore, subject_id: Any, date: Any, kind: Optional[str] = "generic",
                   note: Optional[str] = "") -> Dict[str, Any]:
    sid = coerce_id(subject_id)
    d = _parse_date(date)
    if sid is None or d is None:
        raise ValidationError("Choose a subject and a date")

    kind = kind or "generic"
    if kind not in TEST_KINDS:
        raise ValidationError(f"Unknown test kind: {kind!r}")

    if await store.get(SUBJECTS, sid) is None:
        raise NotFoundError(f"Subject {subject_id} not found")

    test = {
        "subject_id": sid,
        "date": d.isoformat(),
        "kind": kind,
        "note": str(note or "").strip(),
    }
    test["id"] = await store.add(TESTS, test)
    logger.info("Added %s test %s on %s for subject %s", kind, test["id"], test["date"], sid)
    return test


async def delete_test(store: RecordStore, test_id: Any) -> None:
    key = coerce_id(test_id)
    if await store.get(TESTS, key) is None:
        raise NotFoundError(f"Test {test_id} not found")
    await store.delete(TESTS, key)
    logger.info("Deleted test %s", key)


async def list_tests(store: RecordStore) -> List[Dict[str, Any]]:
    return await store.get_all(TESTS)


async def tests_for_subject(store: RecordStore, subject_id: Any) -> List[Dict[str, Any]]:
    return await store.get_all_by_index(TESTS, "subject_id", coerce_id(subject_id))


# -------------------------------
# Calendar views
# -------------------------------

def upcoming_tests(tests: List[Dict[str, Any]], today: Optional[datetime.date] = None) -> List[Dict[str, Any]]:
    """Tests from today on, soonest first, flagged urgent when at most URGENT_DAYS away."""
    today = today or datetime.date.today()

    out = []
    for t in tests:
        d = _parse_date(t.get("date"))
        if d is None:
            continue
        days_left = (d - today).days
        if days_left < 0:
            continue
        item = dict(t)
        item["days_left"] = days_left
        item["urgent"] = days_left <= URGENT_DAYS
        out.append(item)

    out.sort(key=lambda x: x["date"])
    return out


def week_of(d: datetime.date) -> List[datetime.date]:
    monday = d - datetime.timedelta(days=d.weekday())
    return [monday + datetime.timedelta(days=i) for i in range(7)]


def week_label(days: List[datetime.date]) -> str:
    start, end = days[0], days[-1]
    return f"{start.day} - {end.day} {MONTH_ABBR[end.month - 1]} {end:%y}"


def two_week_view(tests: List[Dict[str, Any]], today: Optional[datetime.date] = None) -> List[Dict[str, Any]]:
    """This week and next (Monday to Sunday), with tests dropped into their day."""
    today = today or datetime.date.today()

    by_date: Dict[str, List[Dict[str, Any]]] = {}
    for t in tests:
        d = _parse_date(t.get("date"))
        if d is not None:
            by_date.setdefault(d.isoformat(), []).append(t)

    weeks = []
    for first_day in (today, today + datetime.timedelta(days=7)):
        days = week_of(first_day)
        weeks.append({
            "label": week_label(days),
            "start": days[0],
            "end": days[-1],
            "days": [
                {
                    "date": d,
                    "weekday": WEEKDAY_NAMES[d.weekday()],
                    "is_today": d == today,
                    "tests": by_date.get(d.isoformat(), []),
                }
                for d in days
            ],
        })
    return weeks


# -------------------------------
# Calendar export (iCalendar)
# -------------------------------

_ICS_ESCAPES = str.maketrans({"\\": "\\\\", ";": "\\;", ",": "\\,", "\n": "\\n"})


def describe_test(test: Dict[str, Any], subjects_by_id: Dict[Any, Dict[str, Any]]) -> str:
    """Event title such as "Maths (written) - chapter 3"."""
    summary = f"{subject_label(subjects_by_id, test.get('subject_id'))} ({test.get('kind') or 'generic'})"
    if test.get("note"):
        summary += f" - {test['note']}"
    return summary


def export_ics(tests: List[Dict[str, Any]], subjects_by_id: Dict[Any, Dict[str, Any]],
               calendar_name: str = "School Companion",
               now: Optional[datetime.datetime] = None) -> str:
    """
    Render tests as an iCalendar document of all-day events.

    Each test keeps a stable UID derived from its id, so re-importing the file
    into a calendar app updates events instead of duplicating them. Tests
    without a usable date are skipped.
    """
    stamp = (now or datetime.datetime.now(datetime.timezone.utc)).strftime("%Y%m%dT%H%M%SZ")

    out = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "PRODID:-//SchoolCompanion//Tests//EN",
        "CALSCALE:GREGORIAN",
        f"X-WR-CALNAME:{calendar_name.translate(_ICS_ESCAPES)}",
    ]
    for t in tests:
        day = _parse_date(t.get("date"))
        if day is None:
            continue
        out += [
            "BEGIN:VEVENT",
            f"UID:test-{t.get('id')}@school-companion",
            f"DTSTAMP:{stamp}",
            f"DTSTART;VALUE=DATE:{day:%Y%m%d}",
            f"DTEND;VALUE=DATE:{day + datetime.timedelta(days=1):%Y%m%d}",
            f"SUMMARY:{describe_test(t, subjects_by_id).translate(_ICS_ESCAPES)}",
            f"CATEGORIES:{str(t.get('kind') or 'generic').upper()}",
            "END:VEVENT",
        ]
    out.append("END:VCALENDAR")
    # RFC 5545 wants CRLF line endings
    return "\r\n".join(out) + "\r\n"
