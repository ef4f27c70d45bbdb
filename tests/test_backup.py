import datetime
import json

import pytest

from school_companion import backup
from school_companion.errors import ImportFormatError, StoreError
from school_companion.grades import add_subject, list_subjects
from school_companion.report_cards import list_report_cards, save_actual_report_card
from school_companion.schedule import add_task, add_test, list_tests
from school_companion.store import RecordStore, open_store

NOW = datetime.datetime(2026, 10, 19, 12, 0, tzinfo=datetime.timezone.utc)


@pytest.fixture
def full_store(store, run, seeded, today):
    run(add_task(store, "Revise", "17:00", on=today))
    run(add_test(store, seeded["Maths"], "2026-10-28", "written", "algebra"))
    run(save_actual_report_card(store, "trim1", today, {seeded["Maths"]: 7, seeded["Physics"]: 9}))
    return store


class TestExport:
    def test_document_shape(self, full_store, run):
        data = run(backup.export_data(full_store, now=NOW))

        assert data["version"] == "2.0"
        assert data["exportDate"] == "2026-10-19T12:00:00+00:00"
        assert [s["name"] for s in data["subjects"]] == ["Maths", "History", "Physics"]
        assert len(data["tasks"]) == len(data["tests"]) == len(data["reportCards"]) == 1
        assert json.loads(backup.export_json(data)) == data

    def test_grades_csv(self, store, run, seeded):
        csv = backup.export_grades_csv(run(list_subjects(store)))
        lines = csv.strip().splitlines()
        assert lines[0] == "subject_id,subject,value,date,period"
        assert len(lines) == 6
        assert lines[1] == f"{seeded['Maths']},Maths,6.0,2026-10-19,trim1"

    def test_grades_csv_empty(self):
        assert backup.export_grades_csv([]).strip() == "subject_id,subject,value,date,period"


class TestImport:
    def test_round_trip_remaps_ids(self, full_store, run):
        payload = backup.export_json(run(backup.export_data(full_store, now=NOW)))

        target = RecordStore()
        existing = run(add_subject(target, "Music"))
        counts = run(backup.import_data(target, payload))
        assert counts == {"subjects": 3, "tasks": 1, "tests": 1, "reportCards": 1}

        subjects = run(list_subjects(target))
        assert [s["name"] for s in subjects] == ["Music", "Maths", "History", "Physics"]
        new_ids = {s["name"]: s["id"] for s in subjects}
        assert existing["id"] not in (new_ids["Maths"], new_ids["History"], new_ids["Physics"])
        assert [g["value"] for g in subjects[1]["grades"]] == [6.0, 8.0]

        (test,) = run(list_tests(target))
        assert test["subject_id"] == new_ids["Maths"]
        assert test["note"] == "algebra"

        (card,) = run(list_report_cards(target))
        assert [r["subject_id"] for r in card["subjects"]] == [new_ids["Maths"], new_ids["Physics"]]
        assert card["average"] == 8.0
        assert card["id"].startswith("report-")

    def test_import_appends(self, full_store, run):
        payload = run(backup.export_data(full_store, now=NOW))
        run(backup.import_data(full_store, payload))
        assert len(run(list_subjects(full_store))) == 6
        assert len(run(list_report_cards(full_store))) == 2

    def test_legacy_and_orphan_records(self, store, run):
        payload = {
            "subjects": [{"id": 10, "name": "Latin", "grades": [7, "6,5"]}],
            "tests": [
                {"subject_id": 10, "date": "2026-11-02", "kind": "oral"},
                {"subject_id": 77, "date": "2026-11-03"},
            ],
        }
        counts = run(backup.import_data(store, json.dumps(payload).encode("utf-8")))
        assert counts == {"subjects": 1, "tasks": 0, "tests": 2, "reportCards": 0}

        (latin,) = run(list_subjects(store))
        assert [(g["value"], g["period"]) for g in latin["grades"]] == [(7.0, "trim1"), (6.5, "trim1")]
        assert [t["subject_id"] for t in run(list_tests(store))] == [latin["id"], None]

    @pytest.mark.parametrize("payload", [
        "not json",
        b"\xff\xfe",
        "[]",
        {"tasks": []},
        {"subjects": {}},
        {"subjects": [], "tests": "none"},
        {"subjects": [{"grades": [7]}]},
        {"subjects": [{"name": "Maths", "grades": [11]}]},
        {"subjects": [], "tasks": [{"text": "Revise", "date": "tomorrow"}]},
        {"subjects": [], "tests": [{"subject_id": 1, "date": "2026-11-02", "kind": "quiz"}]},
        {"subjects": [], "reportCards": [{"period": "trim1", "date": "2026-12-20", "subjects": []}]},
        {"subjects": [], "reportCards": [{"period": "trim1", "date": "2026-12-20", "kind": "predicted",
                                          "subjects": [{"subject_id": 1, "grade": 7}]}]},
    ])
    def test_rejected(self, store, run, payload):
        with pytest.raises(ImportFormatError):
            run(backup.import_data(store, payload))

    def test_failed_save_writes_nothing(self, file_store, data_file, run, monkeypatch):
        run(add_subject(file_store, "Music"))

        def broken_write(payload):
            raise OSError("disk full")

        monkeypatch.setattr(file_store, "_write", broken_write)
        payload = {
            "subjects": [{"id": 1, "name": "Maths", "grades": [7]}],
            "tasks": [{"text": "Revise", "date": "2026-10-19"}],
            "tests": [{"subject_id": 1, "date": "2026-10-28"}],
            "reportCards": [{"period": "trim1", "date": "2026-12-20", "subjects": [{"subject_id": 1, "grade": 7}]}],
        }
        with pytest.raises(StoreError):
            run(backup.import_data(file_store, payload))

        # neither the open store nor the file picked up any part of the import
        assert [s["name"] for s in run(list_subjects(file_store))] == ["Music"]
        assert run(list_tests(file_store)) == []
        reopened = run(open_store(data_file))
        assert [s["name"] for s in run(list_subjects(reopened))] == ["Music"]
        assert run(reopened.get_all("tasks")) == []
        assert run(list_report_cards(reopened)) == []

    def test_several_report_cards_get_distinct_ids(self, store, run):
        card = {"period": "trim1", "date": "2026-12-20", "subjects": [{"subject_id": 1, "grade": 7}]}
        run(backup.import_data(store, {"subjects": [], "reportCards": [card, card, card]}))
        assert len({c["id"] for c in run(list_report_cards(store))}) == 3

    def test_rejection_writes_nothing(self, store, run):
        payload = {
            "subjects": [{"id": 1, "name": "Maths", "grades": [7]}],
            "tasks": [{"text": "Revise", "date": "2026-10-19", "start_time": "7pm"}],
        }
        with pytest.raises(ImportFormatError):
            run(backup.import_data(store, payload))
        assert run(list_subjects(store)) == []
