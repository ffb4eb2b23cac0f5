# tests/test_compute_runs.py

import uuid
from datetime import datetime

import pytest
from fastapi import HTTPException

from sis_app.crud import academics, gradebook
from sis_app.exceptions import GradeValidationError, TransmutationLookupError
from sis_app.models.all_models import ComputedGrade, RunStatus, SchemeType, ScoreStatus
from sis_app.schemas.academics_schemas import SectionCreate, StudentCreate
from sis_app.schemas.gradebook_schemas import (
    ComponentCreate, ComponentWeightsUpsert, ComputeRunCreate, GradedItemCreate, SchemeCreate, ScoreInput,
    ScoresUpsert, WeightProfileCreate
)

YEAR = uuid.uuid4()
TERM = "Q1"


@pytest.fixture
def section(db, admin_context):
    return academics.create_section(db, admin_context, SectionCreate(
        school_year_id=YEAR, name="Grade 7 - Rizal", code="g7-rizal", primary_classification="default",
    ))


@pytest.fixture
def students(db, admin_context, section):
    created = [
        academics.create_student(db, admin_context, StudentCreate(student_number=f"2025-{n:04d}", first_name="Ana", last_name=f"Cruz{n}"))
        for n in range(1, 3)
    ]
    academics.enroll_students(db, admin_context, section.id, [s.id for s in created])
    return created


def publish_deped(db, context):
    scheme = gradebook.create_scheme(db, context, SchemeCreate(
        name="DepEd", scheme_type=SchemeType.DEPED_K12, with_defaults=True,
    ))
    table = gradebook.list_transmutation_tables(db, context, scheme.id)[0]
    gradebook.publish_transmutation_table(db, context, table.id)
    return gradebook.publish_scheme(db, context, scheme.id)


def record_scores(db, context, section, scheme, percents_by_student):
    """percents_by_student: student id -> {component code: points out of 10}"""
    items = {}
    for component in gradebook.list_components(db, context, scheme.id):
        items[component.code] = gradebook.create_graded_item(db, context, GradedItemCreate(
            section_id=section.id, school_year_id=YEAR, term_period=TERM,
            component_id=component.id, title=f"{component.code} 1", max_points=10,
        ))
    for code, item in items.items():
        gradebook.upsert_scores(db, context, item.id, ScoresUpsert(scores=[
            ScoreInput(student_id=student_id, points_earned=points[code])
            for student_id, points in percents_by_student.items()
        ]))
    return items


def start_run(db, context, section, scheme, **kwargs):
    return gradebook.create_compute_run(db, context, ComputeRunCreate(
        section_id=section.id, school_year_id=YEAR, term_period=TERM, scheme_id=scheme.id, **kwargs,
    ))


def test_run_computes_every_enrolled_student(db, admin_context, section, students):
    scheme = publish_deped(db, admin_context)
    record_scores(db, admin_context, section, scheme, {
        students[0].id: {"WW": 9, "PT": 7, "QA": 10},
        students[1].id: {"WW": 10, "PT": 10, "QA": 10},
    })

    run = start_run(db, admin_context, section, scheme)
    assert run.status == RunStatus.CREATED
    assert run.classification_source == gradebook.CLASSIFICATION_SECTION
    assert run.transmutation_version == 1

    run = gradebook.execute_compute_run(db, admin_context, run.id)

    assert run.status == RunStatus.COMPLETED
    grades = {g.student_id: g for g in run.grades}
    assert grades[students[0].id].initial_grade == pytest.approx(82.0)
    assert grades[students[0].id].final_numeric_grade == 87
    assert grades[students[1].id].final_numeric_grade == 100
    breakdown = grades[students[0].id].breakdown
    assert breakdown["initial_grade_key"] == 82
    assert breakdown["transmutation_key"] == 82
    assert breakdown["rounding_mode"] == "floor"
    assert [c["code"] for c in breakdown["components"]] == ["WW", "PT", "QA"]


def test_run_requires_published_scheme(db, admin_context, section):
    scheme = gradebook.create_scheme(db, admin_context, SchemeCreate(name="Draft"))

    with pytest.raises(GradeValidationError, match="published"):
        start_run(db, admin_context, section, scheme)


def test_failed_run_stores_error_and_no_grades(db, admin_context, section, students):
    scheme = publish_deped(db, admin_context)
    record_scores(db, admin_context, section, scheme, {
        students[0].id: {"WW": 10, "PT": 10, "QA": 10},
        students[1].id: {"WW": 5, "PT": 5, "QA": 5},
    })

    run = gradebook.execute_compute_run(db, admin_context, start_run(db, admin_context, section, scheme).id)

    assert run.status == RunStatus.FAILED
    assert "below the lowest transmutation row" in run.error_message
    assert db.query(ComputedGrade).filter(ComputedGrade.compute_run_id == run.id).count() == 0


def test_passthrough_policy_completes_below_range(db, admin_context, section, students, passthrough_below_range):
    scheme = publish_deped(db, admin_context)
    record_scores(db, admin_context, section, scheme, {
        students[0].id: {"WW": 10, "PT": 10, "QA": 10},
        students[1].id: {"WW": 5, "PT": 5, "QA": 5},
    })

    run = gradebook.execute_compute_run(db, admin_context, start_run(db, admin_context, section, scheme).id)

    assert run.status == RunStatus.COMPLETED
    weak = next(g for g in run.grades if g.student_id == students[1].id)
    assert weak.final_numeric_grade == pytest.approx(50.0)
    assert weak.breakdown["below_range"] is True


def test_completed_run_cannot_execute_twice(db, admin_context, section, students):
    scheme = publish_deped(db, admin_context)
    record_scores(db, admin_context, section, scheme, {s.id: {"WW": 9, "PT": 9, "QA": 9} for s in students})
    run = gradebook.execute_compute_run(db, admin_context, start_run(db, admin_context, section, scheme).id)

    with pytest.raises(HTTPException) as excinfo:
        gradebook.execute_compute_run(db, admin_context, run.id)
    assert excinfo.value.status_code == 400


def test_scores_after_as_of_are_ignored(db, admin_context, section, students):
    scheme = gradebook.create_scheme(db, admin_context, SchemeCreate(name="Generic"))
    gradebook.create_component(db, admin_context, scheme.id, ComponentCreate(code="WW", label="Written"))
    component = gradebook.list_components(db, admin_context, scheme.id)[0]
    profile = gradebook.create_weight_profile(
        db, admin_context, scheme.id, WeightProfileCreate(profile_key="default", profile_label="Default", is_default=True)
    )
    gradebook.upsert_component_weights(db, admin_context, scheme.id, profile.id, ComponentWeightsUpsert(
        weights=[{"component_id": component.id, "weight_percent": 100}],
    ))
    gradebook.publish_scheme(db, admin_context, scheme.id)
    item = gradebook.create_graded_item(db, admin_context, GradedItemCreate(
        section_id=section.id, school_year_id=YEAR, term_period=TERM, component_id=component.id, title="Quiz", max_points=10,
    ))
    gradebook.upsert_scores(db, admin_context, item.id, ScoresUpsert(scores=[ScoreInput(student_id=students[0].id, points_earned=8)]))

    early = gradebook.execute_compute_run(
        db, admin_context, start_run(db, admin_context, section, scheme, as_of=datetime(2000, 1, 1)).id
    )
    current = gradebook.execute_compute_run(db, admin_context, start_run(db, admin_context, section, scheme).id)

    assert {g.final_numeric_grade for g in early.grades} == {0}
    assert {g.student_id: g.final_numeric_grade for g in current.grades}[students[0].id] == pytest.approx(80.0)


def test_profile_falls_back_to_default(db, admin_context, students):
    section = academics.create_section(db, admin_context, SectionCreate(
        school_year_id=YEAR, name="Grade 8 - STEM", code="g8", primary_classification="stem",
    ))
    scheme = publish_deped(db, admin_context)

    run = start_run(db, admin_context, section, scheme)

    assert run.classification_source == gradebook.CLASSIFICATION_DEFAULT
    assert run.classification_used == "default"
    assert run.weight_profile_id is not None


def test_recompute_replaces_grades(db, admin_context, section, students, passthrough_below_range):
    scheme = publish_deped(db, admin_context)
    items = record_scores(db, admin_context, section, scheme, {s.id: {"WW": 9, "PT": 7, "QA": 10} for s in students})
    run = gradebook.execute_compute_run(db, admin_context, start_run(db, admin_context, section, scheme).id)
    first_ids = {g.id for g in run.grades}

    gradebook.upsert_scores(db, admin_context, items["PT"].id, ScoresUpsert(scores=[
        ScoreInput(student_id=students[0].id, points_earned=10),
        ScoreInput(student_id=students[1].id, points_earned=None, status=ScoreStatus.EXCUSED),
    ]))
    run = gradebook.recompute_compute_run(db, admin_context, run.id)

    assert run.status == RunStatus.COMPLETED
    assert not first_ids & {g.id for g in run.grades}
    assert db.query(ComputedGrade).filter(ComputedGrade.compute_run_id == run.id).count() == len(students)
    grades = {g.student_id: g for g in run.grades}
    # 27 + 50 + 20
    assert grades[students[0].id].initial_grade == pytest.approx(97.0)
    # PT excused: 27 + 20 without rescaling, below the table
    assert grades[students[1].id].initial_grade == pytest.approx(47.0)
    assert grades[students[1].id].breakdown["below_range"] is True


def test_failed_recompute_keeps_completed_grades(db, admin_context, section, students):
    scheme = publish_deped(db, admin_context)
    items = record_scores(db, admin_context, section, scheme, {s.id: {"WW": 9, "PT": 7, "QA": 10} for s in students})
    run = gradebook.execute_compute_run(db, admin_context, start_run(db, admin_context, section, scheme).id)
    before = {g.student_id: (g.id, g.final_numeric_grade) for g in run.grades}
    as_of = run.as_of

    gradebook.upsert_scores(db, admin_context, items["PT"].id, ScoresUpsert(scores=[
        ScoreInput(student_id=students[0].id, points_earned=0),
    ]))
    with pytest.raises(TransmutationLookupError):
        gradebook.recompute_compute_run(db, admin_context, run.id)

    db.refresh(run)
    assert run.status == RunStatus.COMPLETED
    assert run.as_of == as_of
    assert {g.student_id: (g.id, g.final_numeric_grade) for g in run.grades} == before
    assert db.query(ComputedGrade).filter(ComputedGrade.compute_run_id == run.id).count() == len(students)


def test_failed_recompute_of_failed_run_stays_failed(db, admin_context, section, students):
    scheme = publish_deped(db, admin_context)
    record_scores(db, admin_context, section, scheme, {s.id: {"WW": 5, "PT": 5, "QA": 5} for s in students})
    run = gradebook.execute_compute_run(db, admin_context, start_run(db, admin_context, section, scheme).id)
    assert run.status == RunStatus.FAILED

    run = gradebook.recompute_compute_run(db, admin_context, run.id)

    assert run.status == RunStatus.FAILED
    assert "below the lowest transmutation row" in run.error_message
    assert run.grades == []


def test_unexpected_error_marks_run_failed(db, admin_context, section, students, monkeypatch):
    scheme = publish_deped(db, admin_context)
    run = start_run(db, admin_context, section, scheme)

    def broken(*args, **kwargs):
        raise RuntimeError("connection lost")

    monkeypatch.setattr(gradebook, "compute_grades", broken)
    with pytest.raises(RuntimeError):
        gradebook.execute_compute_run(db, admin_context, run.id)

    db.refresh(run)
    assert run.status == RunStatus.FAILED
    assert "RuntimeError" in run.error_message
    assert run.grades == []
