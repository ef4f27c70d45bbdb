import pytest

from school_companion.errors import NotFoundError, ValidationError
from school_companion.grades import add_grade, add_subject
from school_companion.target import (
    ACHIEVED,
    INFEASIBLE,
    NEEDED,
    describe_target,
    solve_target,
    target_for_subject,
)


class TestSolveTarget:
    def test_out_of_reach(self):
        r = solve_target(7, 3, 8)
        assert r["status"] == INFEASIBLE
        assert r["needed"] == 11.0
        assert "11.00" in describe_target(r)

    def test_same_as_current(self):
        r = solve_target(5, 2, 5)
        assert r["status"] == NEEDED
        assert r["needed"] == 5.0

    def test_lower_target(self):
        r = solve_target(9, 1, 6)
        assert r["status"] == NEEDED
        assert r["needed"] == 3.0
        assert describe_target(r) == "You need at least 3.00 on the next grade."

    def test_already_reached(self):
        r = solve_target(9, 2, 5)
        assert r["status"] == ACHIEVED
        assert r["needed"] == -3.0

    def test_boundaries_are_needed(self):
        # x == 10
        assert solve_target(6, 1, 8)["status"] == NEEDED
        # x == 0
        assert solve_target(6, 1, 3)["status"] == NEEDED

    def test_no_grades_yet(self):
        r = solve_target(0, 0, 7.5)
        assert r["status"] == NEEDED
        assert r["needed"] == 7.5

    @pytest.mark.parametrize("target", [None, "", "abc", -1, 10.5])
    def test_bad_target(self, target):
        with pytest.raises(ValidationError):
            solve_target(7, 3, target)

    def test_negative_count(self):
        with pytest.raises(ValidationError):
            solve_target(7, -1, 8)


class TestTargetForSubject:
    def test_uses_period_grades(self, store, run, today):
        s = run(add_subject(store, "Maths"))
        run(add_grade(store, s["id"], 9, "trim1", on=today))

        r = run(target_for_subject(store, s["id"], 6, period="trim1", today=today))
        assert (r["subject_id"], r["count"], r["current_average"]) == (s["id"], 1, 9.0)
        assert r["needed"] == 3.0

        # nothing graded in the second term yet
        r = run(target_for_subject(store, s["id"], 6, period="pent", today=today))
        assert r["count"] == 0
        assert r["needed"] == 6.0

    def test_missing_subject(self, store, run):
        with pytest.raises(NotFoundError):
            run(target_for_subject(store, 7, 6))
