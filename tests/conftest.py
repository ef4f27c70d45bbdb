"""
Test fixtures for School Companion.

Provides an in-memory store, a file-backed store under tmp_path, and a
`run` helper that drives one coroutine to completion.
"""

from __future__ import annotations

import asyncio
import datetime

import pytest

from school_companion.store import RecordStore


@pytest.fixture
def run():
    return asyncio.run


@pytest.fixture
def today():
    # a Monday
    return datetime.date(2026, 10, 19)


@pytest.fixture
def store():
    return RecordStore()


@pytest.fixture
def data_file(tmp_path):
    return tmp_path / "school_companion_data.json"


@pytest.fixture
def file_store(data_file):
    return RecordStore(data_file)


@pytest.fixture
def seeded(store, run, today):
    """Three subjects with first-term grades; returns {name: id}."""
    from school_companion import grades

    ids = {}
    for name, values in [("Maths", [6, 8]), ("History", [4, 5]), ("Physics", [9])]:
        s = run(grades.add_subject(store, name))
        ids[name] = s["id"]
        for v in values:
            run(grades.add_grade(store, s["id"], v, "trim1", on=today))
    return ids
