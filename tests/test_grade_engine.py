# tests/test_grade_engine.py

import uuid
from datetime import datetime

import pytest

from sis_app.exceptions import GradeValidationError, TransmutationLookupError
from sis_app.models.all_models import RoundingMode, SchemeType, ScoreStatus, WeightPolicy
from sis_app.schemas.gradebook_schemas import (
    ComponentSpec, ItemScore, SchemeSpec, StudentScores, TransmutationRowSpec, TransmutationTableSpec,
    WeightProfileSpec
)
from sis_app.services.grade_engine import (
    aggregate_component, compute_grades, generate_standard_transmutation_rows, lookup_transmutation,
    resolve_rounding_mode, round_grade, validate_weight_total
)

WW = ComponentSpec(id=uuid.uuid4(), code="WW", label="Written Works", display_order=1)
PT = ComponentSpec(id=uuid.uuid4(), code="PT", label="Performance Tasks", display_order=2)
QA = ComponentSpec(id=uuid.uuid4(), code="QA", label="Quarterly Assessment", display_order=3)
COMPONENTS = [WW, PT, QA]
COMPUTED_AT = datetime(2025, 8, 1, 12, 0)


def make_profile(ww=30.0, pt=50.0, qa=20.0, is_default=True):
    weights = {}
    for component, weight in ((WW, ww), (PT, pt), (QA, qa)):
        if weight is not None:
            weights[component.id] = weight
    return WeightProfileSpec(id=uuid.uuid4(), profile_key="default", is_default=is_default, weights=weights)


def make_scheme(scheme_type=SchemeType.GENERIC, profile=None, **kwargs):
    return SchemeSpec(
        id=uuid.uuid4(),
        scheme_type=scheme_type,
        version=kwargs.pop("version", 1),
        weight_profiles=[profile or make_profile()],
        **kwargs,
    )


def score(component, earned, max_points=10, status=ScoreStatus.PRESENT):
    return ItemScore(component_id=component.id, max_points=max_points, points_earned=earned, status=status)


def standard_table(published=True):
    return TransmutationTableSpec(id=uuid.uuid4(), version=1, published=published, rows=generate_standard_transmutation_rows())


@pytest.fixture
def scenario_student():
    # WW 90%, PT 70%, QA 100%
    return StudentScores(student_id=uuid.uuid4(), scores=[score(WW, 9), score(PT, 7), score(QA, 10)])


# --- component aggregation ---

def test_status_count_semantics():
    entry = aggregate_component(WW, [
        score(WW, None, status=ScoreStatus.EXCUSED),
        score(WW, None, status=ScoreStatus.MISSING),
        score(WW, 8),
    ], 30.0)

    assert entry.max_total == 20
    assert entry.raw_total == 8
    assert entry.percent == 40
    assert entry.weighted_score == 12
    assert entry.status_counts.excused == 1
    assert entry.status_counts.missing == 1
    assert entry.status_counts.present == 1
    assert entry.counted


def test_absent_counts_like_missing():
    entry = aggregate_component(PT, [score(PT, 5), score(PT, 9, status=ScoreStatus.ABSENT)], 50.0)

    assert entry.raw_total == 5
    assert entry.max_total == 20
    assert entry.status_counts.absent == 1


def test_only_excused_items_give_zero_percent_and_not_counted():
    entry = aggregate_component(QA, [score(QA, None, status=ScoreStatus.EXCUSED)], 20.0)

    assert entry.max_total == 0
    assert entry.percent == 0
    assert not entry.counted


# --- rounding and lookup ---

@pytest.mark.parametrize("value, mode, expected", [
    (82.9, RoundingMode.FLOOR, 82),
    (82.5, RoundingMode.ROUND, 83),
    (81.5, RoundingMode.ROUND, 82),
    (82.4, RoundingMode.ROUND, 82),
    (82.1, RoundingMode.CEIL, 83),
    (82.0, RoundingMode.CEIL, 82),
])
def test_round_grade(value, mode, expected):
    assert round_grade(value, mode) == expected


def test_default_rounding_per_scheme_family():
    assert resolve_rounding_mode(SchemeType.DEPED_K12) == RoundingMode.FLOOR
    assert resolve_rounding_mode(SchemeType.CHED_HEI) == RoundingMode.ROUND
    assert resolve_rounding_mode(SchemeType.GENERIC) == RoundingMode.ROUND
    assert resolve_rounding_mode(SchemeType.DEPED_K12, RoundingMode.CEIL) == RoundingMode.CEIL


def test_transmutation_closest_lower_bound():
    rows = [
        TransmutationRowSpec(initial_grade=85, transmuted_grade=90),
        TransmutationRowSpec(initial_grade=75, transmuted_grade=80),
        TransmutationRowSpec(initial_grade=80, transmuted_grade=85),
    ]

    row = lookup_transmutation(rows, 83)

    assert row.initial_grade == 80
    assert row.transmuted_grade == 85
    assert lookup_transmutation(rows, 85).initial_grade == 85
    assert lookup_transmutation(rows, 74) is None


def test_standard_transmutation_rows():
    rows = {row.initial_grade: row.transmuted_grade for row in generate_standard_transmutation_rows()}

    assert len(rows) == 26
    assert rows[75] == 80
    assert rows[79] == 84
    assert rows[82] == 87
    assert rows[85] == 90
    assert rows[90] == 95
    assert rows[93] == 97
    assert rows[100] == 100


# --- weight validation ---

@pytest.mark.parametrize("ww, pt, qa", [(30.02, 50, 20), (29.5, 50, 20)])
def test_strict_weights_must_sum_to_100(ww, pt, qa):
    with pytest.raises(GradeValidationError):
        validate_weight_total(make_profile(ww, pt, qa), COMPONENTS, WeightPolicy.STRICT)


def test_strict_weights_accept_exactly_100():
    assert validate_weight_total(make_profile(30.0, 50.0, 20.0), COMPONENTS, WeightPolicy.STRICT) == 100


def test_strict_weights_require_every_component():
    with pytest.raises(GradeValidationError, match="QA"):
        validate_weight_total(make_profile(qa=None), COMPONENTS, WeightPolicy.STRICT)


def test_normalize_allows_partial_weights():
    assert validate_weight_total(make_profile(qa=None), COMPONENTS, WeightPolicy.NORMALIZE) == 80


# --- full computation ---

def test_weighted_scenario_generic(scenario_student):
    result = compute_grades(make_scheme(), None, COMPONENTS, None, [scenario_student], computed_at=COMPUTED_AT)[0]

    assert result.initial_grade == pytest.approx(82.0)
    assert result.transmuted_grade is None
    assert result.final_numeric_grade == pytest.approx(82.0)
    assert result.breakdown.total_weight == 100
    assert result.breakdown.rounding_mode == RoundingMode.ROUND
    assert [c.code for c in result.breakdown.components] == ["WW", "PT", "QA"]
    assert [c.weighted_score for c in result.breakdown.components] == pytest.approx([27, 35, 20])


def test_deped_floor_and_transmutation(scenario_student):
    table = standard_table()
    scheme = make_scheme(SchemeType.DEPED_K12, version=3)

    result = compute_grades(scheme, None, COMPONENTS, table, [scenario_student], computed_at=COMPUTED_AT)[0]

    breakdown = result.breakdown
    assert result.initial_grade == pytest.approx(82.0)
    assert result.transmuted_grade == 87
    assert result.final_numeric_grade == 87
    assert breakdown.initial_grade_key == 82
    assert breakdown.transmutation_key == 82
    assert breakdown.rounding_mode == RoundingMode.FLOOR
    assert breakdown.scheme_version == 3
    assert breakdown.transmutation_table_id == table.id
    assert breakdown.transmutation_version == 1
    assert breakdown.breakdown_version == 1
    assert breakdown.computed_at == COMPUTED_AT


def test_floor_display_key():
    student = StudentScores(student_id=uuid.uuid4(), scores=[score(WW, 89, 100), score(PT, 89, 100), score(QA, 90, 100)])
    # 26.7 + 44.5 + 18 = 89.2 -> floor 89
    result = compute_grades(make_scheme(SchemeType.DEPED_K12), None, COMPONENTS, standard_table(), [student])[0]

    assert result.initial_grade == pytest.approx(89.2)
    assert result.breakdown.initial_grade_key == 89
    assert result.final_numeric_grade == 94


def uniform_student(percent):
    return StudentScores(student_id=uuid.uuid4(), scores=[score(c, percent, 100) for c in COMPONENTS])


def test_half_up_key_does_not_lift_the_lookup():
    result = compute_grades(make_scheme(SchemeType.CHED_HEI), None, COMPONENTS, standard_table(), [uniform_student(79.6)])[0]

    assert result.initial_grade == pytest.approx(79.6)
    assert result.breakdown.rounding_mode == RoundingMode.ROUND
    assert result.breakdown.initial_grade_key == 80
    assert result.breakdown.transmutation_key == 79
    assert result.final_numeric_grade == 84


def test_raw_grade_just_below_table_fails_even_if_key_rounds_into_it():
    with pytest.raises(TransmutationLookupError) as excinfo:
        compute_grades(make_scheme(SchemeType.CHED_HEI), None, COMPONENTS, standard_table(), [uniform_student(74.6)])
    assert excinfo.value.initial_grade == pytest.approx(74.6)


def test_raw_grade_just_below_table_passes_through_raw():
    result = compute_grades(
        make_scheme(SchemeType.CHED_HEI), None, COMPONENTS, standard_table(), [uniform_student(74.6)],
        below_range_policy="passthrough",
    )[0]

    assert result.breakdown.below_range
    assert result.breakdown.initial_grade_key == 75
    assert result.final_numeric_grade == pytest.approx(74.6)


def test_closest_lower_row_used_for_sparse_table(scenario_student):
    table = TransmutationTableSpec(id=uuid.uuid4(), published=True, rows=[
        TransmutationRowSpec(initial_grade=75, transmuted_grade=80),
        TransmutationRowSpec(initial_grade=80, transmuted_grade=85),
        TransmutationRowSpec(initial_grade=85, transmuted_grade=90),
    ])

    result = compute_grades(make_scheme(SchemeType.CHED_HEI), None, COMPONENTS, table, [scenario_student])[0]

    assert result.breakdown.transmutation_key == 80
    assert result.final_numeric_grade == 85


def test_strict_policy_does_not_rescale_missing_components():
    student = StudentScores(student_id=uuid.uuid4(), scores=[score(WW, 9), score(PT, 7)])

    result = compute_grades(make_scheme(), None, COMPONENTS, None, [student])[0]

    assert result.breakdown.total_weight == 80
    assert result.initial_grade == pytest.approx(62.0)
    assert not result.breakdown.components[2].counted


def test_normalize_policy_rescales_to_weight_applied():
    student = StudentScores(student_id=uuid.uuid4(), scores=[score(WW, 9), score(PT, 7)])
    scheme = make_scheme(weight_policy=WeightPolicy.NORMALIZE)

    result = compute_grades(scheme, None, COMPONENTS, None, [student])[0]

    assert result.initial_grade == pytest.approx(77.5)
    assert result.breakdown.weight_policy == WeightPolicy.NORMALIZE


def test_explicit_profile_overrides_default(scenario_student):
    profile = WeightProfileSpec(id=uuid.uuid4(), profile_key="stem", weights={WW.id: 40, PT.id: 40, QA.id: 20})

    result = compute_grades(make_scheme(), profile, COMPONENTS, None, [scenario_student])[0]

    # 36 + 28 + 20
    assert result.initial_grade == pytest.approx(84.0)
    assert result.breakdown.weight_profile_id == profile.id


def test_student_without_scores_gets_zero():
    result = compute_grades(make_scheme(), None, COMPONENTS, None, [StudentScores(student_id=uuid.uuid4())])[0]

    assert result.initial_grade == 0
    assert result.breakdown.total_weight == 0


# --- failures ---

def test_no_default_profile_fails(scenario_student):
    scheme = make_scheme(profile=make_profile(is_default=False))

    with pytest.raises(GradeValidationError, match="default profile"):
        compute_grades(scheme, None, COMPONENTS, None, [scenario_student])


def test_profile_not_summing_to_100_fails(scenario_student):
    with pytest.raises(GradeValidationError):
        compute_grades(make_scheme(profile=make_profile(30, 50, 19.5)), None, COMPONENTS, None, [scenario_student])


@pytest.mark.parametrize("table", [None, standard_table(published=False), TransmutationTableSpec(published=True)])
def test_transmuted_schemes_need_published_table(scenario_student, table):
    with pytest.raises(GradeValidationError):
        compute_grades(make_scheme(SchemeType.DEPED_K12), None, COMPONENTS, table, [scenario_student])


def test_below_range_fails_by_default():
    weak = StudentScores(student_id=uuid.uuid4(), scores=[score(WW, 6), score(PT, 6), score(QA, 6)])
    strong = StudentScores(student_id=uuid.uuid4(), scores=[score(WW, 10), score(PT, 10), score(QA, 10)])

    with pytest.raises(TransmutationLookupError) as excinfo:
        compute_grades(make_scheme(SchemeType.DEPED_K12), None, COMPONENTS, standard_table(), [strong, weak])
    assert excinfo.value.initial_grade == pytest.approx(60.0)


def test_below_range_passthrough_keeps_raw_grade():
    weak = StudentScores(student_id=uuid.uuid4(), scores=[score(WW, 6), score(PT, 6), score(QA, 6)])

    result = compute_grades(
        make_scheme(SchemeType.DEPED_K12), None, COMPONENTS, standard_table(), [weak],
        below_range_policy="passthrough",
    )[0]

    assert result.final_numeric_grade == pytest.approx(60.0)
    assert result.transmuted_grade is None
    assert result.breakdown.below_range
    assert result.breakdown.transmutation_key is None


def test_scheme_without_components_fails(scenario_student):
    with pytest.raises(GradeValidationError):
        compute_grades(make_scheme(), None, [], None, [scenario_student])
