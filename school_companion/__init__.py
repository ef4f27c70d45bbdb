"""School Companion: grades, statistics, report cards, tasks and tests for one student."""

__version__ = "2.0.0"
