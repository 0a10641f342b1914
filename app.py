import streamlit as st
import numpy as np
import pandas as pd

from report_card.backend_logic import *
from report_card.io_csv import *
from report_card.promotion import *
from report_card.config import settings
from report_card.exceptions import ReportCardException
from report_card.logging_setup import setup_logging
from report_card.schemas import CompetencyDefinition, PromotionAction, StudentForPromotion

logger = setup_logging()

# ------------------------
# Streamlit UI
# ------------------------

st.set_page_config(
    page_title="Report Card Calculator | Continuous Assessment, Grades & Promotion",
    page_icon="📝",
    layout="wide",
)

st.title("📝 Report Card Calculator")
st.write(
    "Enter competence, project and end-of-term marks for a subject. Continuous assessment "
    "is scaled to 20, added to the EOT mark out of 80, and graded against the grade rubric."
)

GRADE_COLOURS = {
    "A*": "#10b981",
    "A": "#22c55e",
    "B": "#3b82f6",
    "C": "#f59e0b",
    "D": "#f97316",
    "F": "#ef4444",
}

TERM_OPTIONS = ["T1", "T2", "T3"]

# ------------------------
# 1. Subject setup
# ------------------------

st.subheader("1. Subject setup")

col_subject, col_term = st.columns([3, 1])
with col_subject:
    subject_name = st.text_input("Subject", value="Mathematics")
with col_term:
    term = st.selectbox("Term", TERM_OPTIONS, format_func=format_term_for_display)

default_competences = pd.DataFrame(
    [
        {"id": "C1", "name": "Number operations", "max_score": 10.0},
        {"id": "C2", "name": "Geometry", "max_score": 10.0},
        {"id": "C3", "name": "Data handling", "max_score": 10.0},
    ]
)

competences_df = st.data_editor(
    default_competences,
    key="competences_df",
    num_rows="dynamic",
    use_container_width=True,
    column_config={
        "id": st.column_config.TextColumn("Id"),
        "name": st.column_config.TextColumn("Competence"),
        "max_score": st.column_config.NumberColumn("Max score", min_value=0, max_value=100, step=1),
    },
)

competency_definitions = []
setup_error = None
try:
    competency_definitions = [
        CompetencyDefinition(id=str(row["id"]).strip(), name=str(row["name"]), max_score=float(row["max_score"]))
        for _, row in competences_df.iterrows()
        if not pd.isna(row["id"]) and not pd.isna(row["max_score"])
    ]
    validate_competency_definitions(competency_definitions)
except (ReportCardException, ValueError) as e:
    setup_error = str(e)

if setup_error:
    st.error(setup_error)
    st.stop()

total_max = sum(comp.max_score for comp in competency_definitions)
st.caption(
    f"Competences out of {total_max:g} + project out of {settings.PROJECT_MAX_SCORE:g}, "
    f"scaled to {settings.CONTINUOUS_SCALE:g}."
)

# ------------------------
# 2. Marks entry
# ------------------------

with st.form("marks_form"):
    st.subheader("2. Enter marks")

    marks_csv = st.file_uploader(
        "Optionally upload a marks sheet CSV (student_id, name, competence ids, project, eot)",
        type=["csv"],
        key="marks_csv",
    )

    default_marks = pd.DataFrame(
        [
            {"student_id": "S001", "name": "Amina Nakato", "c1": 8.0, "c2": 7.0, "c3": 9.0, "project": 8.0, "eot": 70.0},
            {"student_id": "S002", "name": "Brian Okello", "c1": 5.0, "c2": 6.0, "c3": 4.0, "project": 6.0, "eot": 41.0},
        ]
    )

    marks_seed = default_marks
    marks_upload_error = None
    try:
        if marks_csv is not None:
            marks_seed = validate_marks_csv(read_csv_upload(marks_csv), competency_definitions)
        else:
            marks_seed = validate_marks_csv(default_marks, competency_definitions)
    except ReportCardException as e:
        if marks_csv is not None:
            marks_upload_error = str(e)
        # competences changed: start from an empty sheet
        marks_seed = blank_marks_sheet(default_marks["student_id"], competency_definitions)

    if marks_upload_error:
        st.error(f"Marks CSV error: {marks_upload_error}")

    marks_df = st.data_editor(
        marks_seed,
        key="marks_df",
        num_rows="dynamic",
        use_container_width=True,
        column_config={
            **{
                comp.id.lower(): st.column_config.NumberColumn(
                    f"{comp.id} /{comp.max_score:g}", min_value=0, max_value=comp.max_score, step=0.5,
                )
                for comp in competency_definitions
            },
            "project": st.column_config.NumberColumn(
                f"Project /{settings.PROJECT_MAX_SCORE:g}", min_value=0, max_value=settings.PROJECT_MAX_SCORE, step=0.5,
            ),
            "eot": st.column_config.NumberColumn(
                f"EOT /{settings.EOT_MAX_SCORE:g}", min_value=0, max_value=settings.EOT_MAX_SCORE, step=0.5,
            ),
        },
    )

    submitted = st.form_submit_button("Calculate results", type="primary")


if submitted:
    if marks_csv is not None and marks_upload_error:
        st.warning("Please fix the CSV upload errors above (or remove the upload) and try again.")
    else:
        try:
            parsed = parse_marks(marks_df, competency_definitions, subject_name=subject_name)
        except ReportCardException as e:
            st.error(str(e))
            parsed = []

        if len(parsed) == 0:
            st.warning("Please enter marks for at least one student.")
        else:
            results = [
                (student_id, name, subject_report_row(assessment, competency_definitions))
                for student_id, name, assessment in parsed
            ]
            logger.info("Calculated %s results for %d students", subject_name, len(results))

            st.session_state["results"] = results
            st.session_state["competency_definitions"] = competency_definitions
            st.session_state["subject_name"] = subject_name
            st.session_state["term"] = term


# ------------------------
# Results
# ------------------------

if "results" in st.session_state:
    results = st.session_state["results"]
    definitions = st.session_state["competency_definitions"]

    st.markdown("---")
    st.subheader(
        f"{st.session_state['subject_name']} results · {format_term_for_display(st.session_state['term'])}"
    )

    frame = results_frame(results, definitions)
    st.dataframe(
        frame.style.apply(
            lambda col: [f"color: {GRADE_COLOURS.get(g, '#6b7280')}; font-weight: 700" for g in col],
            subset=["Grade"],
        ),
        use_container_width=True,
        hide_index=True,
    )
    st.download_button(
        "Download results CSV",
        data=results_to_csv(frame),
        file_name=f"{st.session_state['subject_name'].lower().replace(' ', '_')}_{st.session_state['term']}.csv",
        mime="text/csv",
    )

    incomplete = [(student_id, row["missing_competencies"]) for student_id, _, row in results if not row["is_complete"]]
    if incomplete:
        st.warning(
            "Some students have ungraded competences (counted as 0): "
            + "; ".join(f"{student_id} ({', '.join(missing)})" for student_id, missing in incomplete)
        )

    averages = {student_id: row["total"] for student_id, _, row in results}
    positions = {item["student_id"]: item for item in rank_students(averages)}

    c1, c2, c3, c4 = st.columns(4)
    totals = np.array([row["total"] for _, _, row in results], dtype=float)
    with c1:
        st.metric("Class average", f"{round_1dp_half_up(float(totals.mean())):.1f}")
    with c2:
        st.metric("Highest total", f"{totals.max():.1f}")
    with c3:
        st.metric("Lowest total", f"{totals.min():.1f}")
    with c4:
        st.metric("Passed", f"{sum(1 for _, _, row in results if row['passed'])}/{len(results)}")

    # ------------------------------
    # Report card for one student
    # ------------------------------
    st.markdown("---")
    st.subheader("Report card")

    labels = {student_id: f"{student_id} · {name}" if name else student_id for student_id, name, _ in results}
    selected = st.selectbox("Student", list(labels.keys()), format_func=lambda sid: labels[sid])
    row = next(r for sid, _, r in results if sid == selected)
    summary = report_card_summary([row])
    position = positions[selected]

    r1, r2, r3, r4 = st.columns(4)
    with r1:
        st.metric("Score /20", f"{row['score_out_of_20']:.1f}")
    with r2:
        st.metric("Total /100", f"{row['total']:.1f}")
    with r3:
        st.metric("Grade", f"{row['grade']} ({row['descriptor']})")
    with r4:
        st.metric("Position", f"{position['rank']} of {position['number_of_students']}")

    if summary["pass_status"] == "PASS":
        st.success(f"✅ {labels[selected]} passed {st.session_state['subject_name']}.")
    else:
        st.error(f"❌ {labels[selected]} is below the pass mark of {settings.PASS_THRESHOLD:g}.")

    st.markdown("**Grade rubric**")
    st.table(pd.DataFrame(grade_rubric()))

    # ------------------------------
    # Promotion
    # ------------------------------
    st.markdown("---")
    st.subheader("Promotion")

    p1, p2 = st.columns(2)
    with p1:
        current_class_id = st.text_input("Current class", value="S1")
    with p2:
        suggested_class_id = st.text_input("Suggested next class", value="S2")

    student_ids = [student_id for student_id, _, _ in results]
    if st.session_state.get("promotion_for") != student_ids:
        st.session_state["promotion_students"] = [
            StudentForPromotion(
                id=student_id,
                full_name=name,
                qualifies_for_promotion=report_card_summary([r])["pass_status"] == "PASS",
            )
            for student_id, name, r in results
        ]
        st.session_state["promotion_for"] = student_ids
    students = st.session_state["promotion_students"]

    # new class ids re-target pending decisions; processed students keep theirs
    decisions_key = (student_ids, current_class_id, suggested_class_id)
    if st.session_state.get("decisions_for") != decisions_key:
        st.session_state["decisions"] = initial_decisions(students, suggested_class_id, current_class_id)
        st.session_state["decisions_for"] = decisions_key
    decisions = st.session_state["decisions"]

    b1, b2 = st.columns(2)
    with b1:
        if st.button("Promote all qualifying"):
            decisions = promote_all_qualifying(students, decisions, suggested_class_id)
            st.session_state["decisions"] = decisions
            st.info("Set all qualifying students to promote")
    with b2:
        if st.button("Repeat all non-qualifying"):
            decisions = repeat_all_non_qualifying(students, decisions, current_class_id)
            st.session_state["decisions"] = decisions
            st.info("Set all non-qualifying students to repeat")

    st.dataframe(
        pd.DataFrame(
            [
                {
                    "Student": labels[s.id],
                    "Status": "PASS" if s.qualifies_for_promotion else "FAIL",
                    "Promotion": s.promotion_status.value,
                    "Decision": decisions[s.id].action.value,
                    "To class": decisions[s.id].to_class_id or "Not selected",
                    "Remarks": decisions[s.id].remarks,
                }
                for s in students
            ]
        ),
        use_container_width=True,
        hide_index=True,
    )

    with st.form("override_form"):
        st.markdown("**Teacher override**")
        override_student = st.selectbox("Student", [s.id for s in students], format_func=lambda sid: labels[sid])
        override_action = st.radio("Action", [PromotionAction.PROMOTE, PromotionAction.REPEAT],
                                   format_func=lambda a: a.value.title(), horizontal=True)
        reason = st.text_area("Reason", placeholder="Explain why this decision is being overridden")
        st.caption(f"{len(reason.strip())}/{settings.MIN_OVERRIDE_REASON_LENGTH} characters minimum")
        override_submitted = st.form_submit_button("Apply override")

    if override_submitted:
        try:
            decisions[override_student] = apply_override(
                decisions[override_student], override_action, reason, suggested_class_id, current_class_id,
            )
            st.session_state["decisions"] = decisions
            st.success("Override applied successfully")
        except ReportCardException as e:
            st.error(e.message)

    if st.button("Process promotions", type="primary"):
        if all(s.is_already_processed for s in students):
            st.info("All students have already been processed for this cycle.")
        else:
            try:
                students = process_promotions(students, decisions)
                st.session_state["promotion_students"] = students
                st.session_state["decisions"] = initial_decisions(students, suggested_class_id, current_class_id)
                stats = promotion_stats(students)
                st.success(f"Processed {stats['promoted']} promotions and {stats['repeated']} repeats")
            except ReportCardException as e:
                st.error(e.message)

else:
    st.info("Set up the subject, enter marks and click **Calculate results** to get started.")
