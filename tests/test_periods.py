"""Tests for period resolution."""

import datetime

import pytest

from school_companion.periods import ALL_END, ALL_START, normalize_period, resolve_period


class TestResolvePeriod:
    @pytest.mark.parametrize("today", [
        datetime.date(2026, 1, 1),
        datetime.date(2026, 9, 1),
        datetime.date(2026, 12, 31),
    ])
    def test_first_term_is_fixed_within_the_year(self, today):
        p = resolve_period("trim1", today)
        assert p["start"] == datetime.date(2026, 9, 1)
        assert p["end"] == datetime.date(2026, 12, 31)
        assert p["token"] == "trim1"

    def test_second_term(self):
        p = resolve_period("pent", datetime.date(2027, 3, 15))
        assert (p["start"], p["end"]) == (datetime.date(2027, 1, 1), datetime.date(2027, 6, 30))
        assert "Jan-Jun" in p["label"]

    def test_all_is_a_wide_range(self):
        p = resolve_period("all", datetime.date(2026, 5, 5))
        assert (p["start"], p["end"]) == (ALL_START, ALL_END)
        assert p["label"] == "All statistics"

    @pytest.mark.parametrize("token", ["", None, "trim2", "ALLX"])
    def test_unknown_tokens_fall_back_to_all(self, token):
        p = resolve_period(token, datetime.date(2026, 5, 5))
        assert p["token"] == "all"
        assert (p["start"], p["end"]) == (ALL_START, ALL_END)

    def test_normalize_is_case_insensitive(self):
        assert normalize_period(" PENT ") == "pent"
        assert normalize_period("nope") == "all"
