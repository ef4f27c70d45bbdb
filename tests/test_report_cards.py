import datetime

import pytest

from school_companion.errors import NotFoundError, ValidationError
from school_companion.grades import add_subject, get_subject, list_subjects
from school_companion.report_cards import (
    delete_report_card,
    list_report_cards,
    predict_report_card,
    save_actual_report_card,
)

NOW = 1_760_000_000.0


class TestActualReportCards:
    def test_save_skips_blank_rows(self, store, run, seeded, today):
        card = run(save_actual_report_card(
            store, "trim1", today,
            {seeded["Physics"]: 8, str(seeded["Maths"]): "7", seeded["History"]: " "},
            now=NOW,
        ))

        assert card["id"] == "report-1760000000000"
        assert card["kind"] == "actual"
        assert card["date"] == "2026-10-19"
        # rows follow subject order, not input order
        assert card["subjects"] == [
            {"subject_id": seeded["Maths"], "name": "Maths", "grade": 7.0},
            {"subject_id": seeded["Physics"], "name": "Physics", "grade": 8.0},
        ]
        assert card["average"] == 7.5

    def test_grade_history_untouched(self, store, run, seeded, today):
        run(save_actual_report_card(store, "trim1", today, {seeded["Maths"]: 10}))
        assert len(run(get_subject(store, seeded["Maths"]))["grades"]) == 2

    def test_ids_stay_unique(self, store, run, seeded, today):
        a = run(save_actual_report_card(store, "trim1", today, {seeded["Maths"]: 7}, now=NOW))
        b = run(save_actual_report_card(store, "pent", today, {seeded["Maths"]: 8}, now=NOW))
        assert a["id"] != b["id"]
        assert b["id"] == "report-1760000000001"

    @pytest.mark.parametrize("period,date", [(None, "2026-10-19"), ("trim1", ""), ("q1", "2026-10-19"),
                                             ("trim1", "19/10/2026")])
    def test_period_and_date_required(self, store, run, seeded, period, date):
        with pytest.raises(ValidationError):
            run(save_actual_report_card(store, period, date, {seeded["Maths"]: 7}))

    def test_needs_one_grade(self, store, run, seeded, today):
        with pytest.raises(ValidationError):
            run(save_actual_report_card(store, "trim1", today, {seeded["Maths"]: "", seeded["History"]: None}))

    def test_grade_out_of_range(self, store, run, seeded, today):
        with pytest.raises(ValidationError):
            run(save_actual_report_card(store, "trim1", today, {seeded["Maths"]: 11}))
        assert run(list_report_cards(store)) == []

    def test_unknown_subject(self, store, run, seeded, today):
        with pytest.raises(NotFoundError):
            run(save_actual_report_card(store, "trim1", today, {999: 7}))

    def test_listing_and_delete(self, store, run, seeded):
        old = run(save_actual_report_card(store, "trim1", datetime.date(2025, 12, 20), {seeded["Maths"]: 6}))
        new = run(save_actual_report_card(store, "pent", datetime.date(2026, 6, 10), {seeded["Maths"]: 7}))

        assert [c["id"] for c in run(list_report_cards(store))] == [new["id"], old["id"]]

        run(delete_report_card(store, old["id"]))
        assert [c["id"] for c in run(list_report_cards(store))] == [new["id"]]

        with pytest.raises(NotFoundError):
            run(delete_report_card(store, old["id"]))


class TestPredictedReportCard:
    def test_mean_of_subject_averages(self, store, run, seeded, today):
        run(add_subject(store, "Art"))
        card = predict_report_card(run(list_subjects(store)), "trim1", today)

        assert card["kind"] == "predicted"
        assert [r["name"] for r in card["subjects"]] == ["Maths", "History", "Physics"]
        assert [r["average"] for r in card["subjects"]] == [7.0, 4.5, 9.0]
        # 6.83, unlike the 6.4 grade-weighted figure in the statistics view
        assert card["average"] == 6.83

    def test_empty_period(self, store, run, seeded, today):
        card = predict_report_card(run(list_subjects(store)), "pent", today)
        assert card["subjects"] == []
        assert card["average"] is None

    def test_never_stored(self, store, run, seeded, today):
        predict_report_card(run(list_subjects(store)), "all", today)
        assert run(list_report_cards(store)) == []
