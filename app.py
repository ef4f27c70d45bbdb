import asyncio
import datetime
import logging
from typing import Any, Callable, Dict, List, Optional

import pandas as pd
import streamlit as st

from school_companion import backup, grades, report_cards, schedule, settings
from school_companion.config import Config, MAX_GRADE, MIN_GRADE
from school_companion.errors import ServiceError
from school_companion.logging_config import init_logging
from school_companion.periods import ALL, GRADE_PERIODS, PENT, PERIOD_LABELS, PERIOD_SHORT_LABELS, TRIM1
from school_companion.store import open_store
from school_companion.target import describe_target, target_for_subject

logger = logging.getLogger("school_companion.app")

DARK_CSS = """
<style>
.stApp { background-color: #121212; color: #e8e8e8; }
</style>
"""


# -------------------------------
# Store access
# -------------------------------

def run(fn: Callable, *args, **kwargs) -> Any:
    """Open the store, await one operation against it, return its result."""
    async def _go():
        store = await open_store(Config.DATA_FILE)
        return await fn(store, *args, **kwargs)

    return asyncio.run(_go())


def fetch(fn: Callable, *args, **kwargs) -> Any:
    """
    Run a user action. Errors are shown and logged, never raised: the session
    carries on and the store keeps its previous state.
    Returns the operation's result, or None if it failed.
    """
    try:
        return run(fn, *args, **kwargs)
    except ServiceError as e:
        logger.warning("%s failed: %s", getattr(fn, "__name__", "action"), e)
        st.error(str(e))
        return None


def act(fn: Callable, *args, success: Optional[str] = None, **kwargs) -> bool:
    try:
        run(fn, *args, **kwargs)
    except ServiceError as e:
        logger.warning("%s failed: %s", getattr(fn, "__name__", "action"), e)
        st.error(str(e))
        return False
    if success:
        flash(success)
    return True


def flash(msg: str) -> None:
    st.session_state.setdefault("_flash", []).append(msg)


def show_flash() -> None:
    for msg in st.session_state.pop("_flash", []):
        st.toast(msg)


def load_subjects() -> List[Dict[str, Any]]:
    try:
        return run(grades.list_subjects)
    except ServiceError as e:
        st.error(str(e))
        return []


def _subject_options(subjects: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {f"{s['name']} · #{s['id']}": s["id"] for s in subjects}


# -------------------------------
# UI: Header
# -------------------------------

def header_view() -> None:
    profile = run(settings.load_profile)
    shown = settings.profile_display(profile)

    c1, c2 = st.columns([1, 5])
    with c1:
        if profile.get("photo"):
            st.markdown(f'<img src="{profile["photo"]}" width="72">', unsafe_allow_html=True)
        else:
            st.markdown("## 🎒")
    with c2:
        st.markdown(f"### {shown['name']}")
        st.caption(shown["details"])
        st.caption(datetime.datetime.now().strftime("%A %d %B %Y, %H:%M"))

    if run(settings.get_dark_mode):
        st.markdown(DARK_CSS, unsafe_allow_html=True)


# -------------------------------
# UI: Grades
# -------------------------------

def _grade_emoji(value: float) -> str:
    if value < 5:
        return "😟"
    if value > 7:
        return "🎉"
    return "📊"


def grades_view(subjects: List[Dict[str, Any]]) -> None:
    K = "grades"
    st.header("Grades")

    if not subjects:
        st.info("Add a subject in Settings first.")
        return

    options = _subject_options(subjects)
    chosen = st.selectbox("Subject", list(options.keys()), key=f"{K}_subject")
    subject_id = options[chosen]

    c1, c2 = st.columns([3, 2])
    with c1:
        value = st.slider("Grade", min_value=MIN_GRADE, max_value=MAX_GRADE, value=6.0, step=0.25, key=f"{K}_value")
    with c2:
        period = st.selectbox(
            "Period",
            list(GRADE_PERIODS),
            format_func=lambda p: PERIOD_SHORT_LABELS[p],
            key=f"{K}_period",
        )

    if st.button("➕ Add grade", key=f"{K}_add"):
        if act(grades.add_grade, subject_id, value, period,
               success=f"Grade {value:g} added ({PERIOD_SHORT_LABELS[period]})"):
            st.rerun()

    st.write("---")

    subject = next((s for s in subjects if s["id"] == subject_id), None)
    history = list(enumerate((subject or {}).get("grades") or []))
    if not history:
        st.caption("No grades yet.")
        return

    # newest first; keep the stored position for deletion
    history.sort(key=lambda pair: pair[1]["date"], reverse=True)
    for idx, g in history:
        c1, c2 = st.columns([5, 1])
        period_label = PERIOD_SHORT_LABELS.get(g.get("period") or ALL, "")
        c1.markdown(f"{_grade_emoji(g['value'])} **{g['value']:g}** · {g['date']} · {period_label}")
        if c2.button("🗑️", key=f"{K}_del_{subject_id}_{idx}"):
            if act(grades.delete_grade, subject_id, idx, success="Grade deleted"):
                st.rerun()


# -------------------------------
# UI: Statistics
# -------------------------------

def statistics_view(subjects: List[Dict[str, Any]]) -> None:
    K = "stats"
    st.header("Statistics")

    period = st.radio(
        "Period",
        [TRIM1, PENT, ALL],
        format_func=lambda p: PERIOD_SHORT_LABELS[p],
        horizontal=True,
        key=f"{K}_period",
    )

    if not subjects:
        st.info("No subjects yet.")
        return

    stats = grades.build_statistics(subjects, period)
    st.caption(f"{stats['label']} · {stats['start']} → {stats['end']}")

    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Overall average", grades.format_average(stats["global_average"]))
    c2.metric("Grades", stats["grade_count"])
    c3.metric("Best grade", "N/A" if stats["best_grade"] is None else f"{stats['best_grade']:g}")
    c4.metric("Worst grade", "N/A" if stats["worst_grade"] is None else f"{stats['worst_grade']:g}")

    if stats["grade_count"] == 0:
        st.caption("No grades in this period.")
        return

    best = stats["best_subject"]
    if best:
        st.markdown(f"🏆 **Best subject:** {best['name']} ({best['average']:.2f})")
    worst = stats["worst_subject"]
    if worst:
        st.markdown(f"⚠️ **Needs work:** {worst['name']} ({worst['average']:.2f})")

    df = pd.DataFrame([
        {"Subject": row["name"], "Average": row["average"], "Grades": row["count"]}
        for row in stats["subjects"]
    ])
    st.bar_chart(df.set_index("Subject")["Average"])

    st.write("---")
    st.subheader("By subject")

    for row in stats["subjects"]:
        with st.expander(f"{row['name']} · {row['average']:.2f} ({row['count']} grades)"):
            st.write(", ".join(f"{g['value']:g}" for g in row["grades"]))

            target = st.number_input(
                "Target average",
                min_value=MIN_GRADE,
                max_value=MAX_GRADE,
                value=min(MAX_GRADE, max(MIN_GRADE, round(row["average"]) + 1.0)),
                step=0.5,
                key=f"{K}_target_{row['id']}_{period}",
            )
            if st.button("What do I need?", key=f"{K}_calc_{row['id']}_{period}"):
                result = fetch(target_for_subject, row["id"], target, period)
                if result is not None:
                    msg = describe_target(result)
                    if result["status"] == "infeasible":
                        st.warning(msg)
                    else:
                        st.success(msg)


# -------------------------------
# UI: Report cards
# -------------------------------

def _enter_report_card(subjects: List[Dict[str, Any]]) -> None:
    K = "rc_enter"
    if not subjects:
        st.info("Add some subjects first.")
        return

    c1, c2 = st.columns(2)
    with c1:
        period = st.selectbox("Period", list(GRADE_PERIODS), format_func=lambda p: PERIOD_LABELS[p], key=f"{K}_period")
    with c2:
        date = st.date_input("Date", value=datetime.date.today(), key=f"{K}_date")

    entered: Dict[Any, str] = {}
    for s in subjects:
        entered[s["id"]] = st.text_input(s["name"], value="", placeholder="leave blank to skip", key=f"{K}_g_{s['id']}")

    if st.button("💾 Save report card", key=f"{K}_save"):
        if act(report_cards.save_actual_report_card, period, date, entered, success="Report card saved"):
            st.rerun()


def _report_card_history() -> None:
    K = "rc_history"
    cards = run(report_cards.list_report_cards)
    if not cards:
        st.caption("No report cards saved yet.")
        return

    for card in cards:
        label = PERIOD_LABELS.get(card["period"], card["period"])
        with st.expander(f"{label} · {card['date']} · average {card['average']:.2f}"):
            df = pd.DataFrame([{"Subject": r["name"], "Grade": r["grade"]} for r in card["subjects"]])
            st.dataframe(df, use_container_width=True, hide_index=True)
            if st.button("🗑️ Delete report card", key=f"{K}_del_{card['id']}"):
                if act(report_cards.delete_report_card, card["id"], success="Report card deleted"):
                    st.rerun()


def _report_card_prediction(subjects: List[Dict[str, Any]]) -> None:
    K = "rc_predict"
    period = st.selectbox("Period", list(GRADE_PERIODS), format_func=lambda p: PERIOD_LABELS[p], key=f"{K}_period")

    predicted = report_cards.predict_report_card(subjects, period)
    if not predicted["subjects"]:
        st.caption("No grades in this period to predict from.")
        return

    st.metric("Predicted average", grades.format_average(predicted["average"]))
    df = pd.DataFrame([
        {"Subject": r["name"], "Predicted": r["average"], "Grades": r["count"]}
        for r in predicted["subjects"]
    ])
    st.dataframe(df, use_container_width=True, hide_index=True)


def report_cards_view(subjects: List[Dict[str, Any]]) -> None:
    st.header("Report cards")
    tabs = st.tabs(["History", "Enter", "Prediction"])
    with tabs[0]:
        _report_card_history()
    with tabs[1]:
        _enter_report_card(subjects)
    with tabs[2]:
        _report_card_prediction(subjects)


# -------------------------------
# UI: Today's tasks
# -------------------------------

def tasks_view() -> None:
    K = "tasks"
    today = datetime.date.today()
    st.header(f"Today · {today.isoformat()}")

    c1, c2, c3 = st.columns([4, 2, 1])
    with c1:
        text = st.text_input("Task", key=f"{K}_text")
    with c2:
        start = st.time_input("Start", value=datetime.time(0, 0), step=900, key=f"{K}_start")
    with c3:
        st.write("")
        if st.button("➕ Add", key=f"{K}_add"):
            if act(schedule.add_task, text, start, success="Task added"):
                st.rerun()

    tasks = run(schedule.tasks_for_day, today)
    if not tasks:
        st.caption("No tasks for today.")
        return

    for t in tasks:
        c1, c2 = st.columns([6, 1])
        done = c1.checkbox(f"{t['start_time']} · {t['text']}", value=bool(t["completed"]), key=f"{K}_done_{t['id']}")
        if done != bool(t["completed"]):
            act(schedule.toggle_task, t["id"])
            st.rerun()
        if c2.button("🗑️", key=f"{K}_del_{t['id']}"):
            if act(schedule.delete_task, t["id"], success="Task deleted"):
                st.rerun()


# -------------------------------
# UI: Tests
# -------------------------------

def tests_view(subjects: List[Dict[str, Any]]) -> None:
    K = "tests"
    st.header("Tests")

    today = datetime.date.today()
    subjects_by_id = {s["id"]: s for s in subjects}
    tests = run(schedule.list_tests)

    with st.expander("➕ Add a test", expanded=not tests):
        if not subjects:
            st.info("Add a subject in Settings first.")
        else:
            options = _subject_options(subjects)
            c1, c2, c3 = st.columns(3)
            with c1:
                chosen = st.selectbox("Subject", list(options.keys()), key=f"{K}_subject")
            with c2:
                date = st.date_input("Date", value=today + datetime.timedelta(days=7), key=f"{K}_date")
            with c3:
                kind = st.selectbox("Kind", list(schedule.TEST_KINDS), key=f"{K}_kind")
            note = st.text_input("Note", key=f"{K}_note")
            if st.button("Add test", key=f"{K}_add"):
                if act(schedule.add_test, options[chosen], date, kind, note, success="Test added"):
                    st.rerun()

    tab_list, tab_cal = st.tabs(["Upcoming", "Calendar"])

    with tab_list:
        upcoming = schedule.upcoming_tests(tests, today)
        if not upcoming:
            st.caption("No upcoming tests.")
        for t in upcoming:
            icon = schedule.TEST_KIND_ICONS.get(t["kind"], "📅")
            name = schedule.subject_label(subjects_by_id, t.get("subject_id"))
            line = f"{icon} **{name}** · {t['date']} · {t['kind'].capitalize()}"
            if t.get("note"):
                line += f" • {t['note']}"
            c1, c2 = st.columns([6, 1])
            c1.markdown(line)
            if t["urgent"]:
                c1.markdown(f":red[⚠️ In {t['days_left']} day(s)!]")
            if c2.button("🗑️", key=f"{K}_del_{t['id']}"):
                if act(schedule.delete_test, t["id"], success="Test deleted"):
                    st.rerun()

        if upcoming:
            st.download_button(
                "Download calendar (.ics)",
                data=schedule.export_ics(upcoming, subjects_by_id).encode("utf-8"),
                file_name=f"school_companion_tests_{today.isoformat()}.ics",
                mime="text/calendar",
                key=f"{K}_ics",
            )

    with tab_cal:
        for week in schedule.two_week_view(tests, today):
            st.markdown(f"**{week['label']}**")
            cols = st.columns(7)
            for col, day in zip(cols, week["days"]):
                with col:
                    head = f"{day['weekday'][:3]} {day['date'].day}"
                    st.markdown(f"**:blue[{head}]**" if day["is_today"] else head)
                    for t in day["tests"]:
                        st.caption(schedule.subject_label(subjects_by_id, t.get("subject_id")))


# -------------------------------
# UI: Settings
# -------------------------------

def _subjects_settings(subjects: List[Dict[str, Any]]) -> None:
    K = "settings_subjects"
    st.subheader("Subjects")

    c1, c2 = st.columns([4, 1])
    with c1:
        name = st.text_input("New subject", key=f"{K}_name")
    with c2:
        st.write("")
        if st.button("Add", key=f"{K}_add"):
            if act(grades.add_subject, name, success=f"Subject \"{str(name).strip()}\" added"):
                st.rerun()

    for s in subjects:
        c1, c2 = st.columns([5, 1])
        c1.write(f"{s['name']} · {len(s['grades'])} grade(s)")
        if c2.button("🗑️", key=f"{K}_del_{s['id']}"):
            if act(grades.delete_subject, s["id"], success="Subject deleted"):
                st.rerun()


def _profile_settings() -> None:
    K = "settings_profile"
    st.subheader("Profile")

    profile = run(settings.load_profile)
    with st.form(f"{K}_form"):
        c1, c2 = st.columns(2)
        first = c1.text_input("First name", value=profile.get("first_name", ""))
        last = c2.text_input("Last name", value=profile.get("last_name", ""))
        c3, c4, c5 = st.columns(3)
        year = c3.text_input("Year", value=profile.get("year", ""))
        section = c4.text_input("Section", value=profile.get("section", ""))
        school = c5.text_input("School", value=profile.get("school", ""))
        if st.form_submit_button("Save profile"):
            data = {"first_name": first, "last_name": last, "year": year, "section": section, "school": school}
            if act(settings.save_profile, data, success="Profile saved"):
                st.rerun()

    photo = st.file_uploader("Profile photo", type=["png", "jpg", "jpeg"], key=f"{K}_photo")
    if photo is not None and st.button("Save photo", key=f"{K}_photo_save"):
        if act(settings.save_profile_photo, photo.getvalue(), photo.type, success="Photo saved"):
            st.rerun()


def _theme_settings() -> None:
    K = "settings_theme"
    st.subheader("Theme")
    current = run(settings.get_dark_mode)
    dark = st.toggle("Dark mode", value=current, key=f"{K}_dark")
    if dark != current:
        act(settings.set_dark_mode, dark, success="Dark theme on" if dark else "Light theme on")
        st.rerun()


def _backup_settings(subjects: List[Dict[str, Any]]) -> None:
    K = "settings_backup"
    st.subheader("Backup")

    stamp = datetime.datetime.now().strftime("%Y-%m-%d_%H%M")
    try:
        data = run(backup.export_data)
    except ServiceError as e:
        st.error(str(e))
        data = None

    c1, c2 = st.columns(2)
    with c1:
        if data is not None:
            st.download_button(
                "Download backup (.json)",
                data=backup.export_json(data).encode("utf-8"),
                file_name=f"school-companion-backup-{stamp}.json",
                mime="application/json",
                key=f"{K}_json",
            )
    with c2:
        st.download_button(
            "Download grades (.csv)",
            data=backup.export_grades_csv(subjects),
            file_name=f"grades_{stamp}.csv",
            mime="text/csv",
            key=f"{K}_csv",
        )

    up = st.file_uploader("Restore from backup (appends to existing data)", type=["json"], key=f"{K}_upload")
    if up is not None and st.button("Import now", key=f"{K}_import"):
        counts = fetch(backup.import_data, up.getvalue())
        if counts is not None:
            flash(f"{counts['subjects']} subject(s) imported")
            st.rerun()


def settings_view(subjects: List[Dict[str, Any]]) -> None:
    st.header("Settings")
    _subjects_settings(subjects)
    st.write("---")
    _profile_settings()
    st.write("---")
    _theme_settings()
    st.write("---")
    _backup_settings(subjects)


# -------------------------------
# Main
# -------------------------------

def main():
    st.set_page_config(page_title="School Companion", page_icon="🎒", layout="wide")
    init_logging()
    show_flash()

    try:
        header_view()
    except ServiceError as e:
        st.error(f"Could not open your data: {e}")
        return

    subjects = load_subjects()

    tabs = st.tabs(["Grades", "Statistics", "Report cards", "Today", "Tests", "Settings"])

    with tabs[0]:
        grades_view(subjects)
    with tabs[1]:
        statistics_view(subjects)
    with tabs[2]:
        report_cards_view(subjects)
    with tabs[3]:
        tasks_view()
    with tabs[4]:
        tests_view(subjects)
    with tabs[5]:
        settings_view(subjects)


if __name__ == "__main__":
    main()
