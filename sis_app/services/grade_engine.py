# services/grade_engine.py
"""Weighted grade computation with rounding and transmutation.

Everything here works on the pydantic specs in ``gradebook_schemas``; loading
rows and persisting results is done by ``sis_app.crud.gradebook``.
"""
import logging
from datetime import datetime
from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Optional, Sequence

from sis_app.exceptions import GradeValidationError, TransmutationLookupError
from sis_app.models.all_models import RoundingMode, SchemeType, ScoreStatus, WeightPolicy
from sis_app.schemas.gradebook_schemas import (
    ComponentBreakdown,
    ComponentSpec,
    ComputedGradeResult,
    GradeBreakdown,
    ItemScore,
    SchemeSpec,
    StatusCounts,
    StudentScores,
    TransmutationRowSpec,
    TransmutationTableSpec,
    WeightProfileSpec,
)
from sis_app.utils.system_utils import local_now

logger = logging.getLogger(__name__)

WEIGHT_TOLERANCE = 0.01
BREAKDOWN_VERSION = 1

TRANSMUTED_SCHEME_TYPES = (SchemeType.DEPED_K12, SchemeType.CHED_HEI)

BELOW_RANGE_FAIL = "fail"
BELOW_RANGE_PASSTHROUGH = "passthrough"

_DECIMAL_ROUNDING = {
    RoundingMode.FLOOR: ROUND_FLOOR,
    RoundingMode.ROUND: ROUND_HALF_UP,
    RoundingMode.CEIL: ROUND_CEILING,
}


def _decimal(value: float) -> Decimal:
    # repr keeps the shortest round-tripping form, so 82.0 stays 82.0
    return Decimal(repr(float(value)))


def _clean(value: float, places: str = "0.0001") -> float:
    """Trim float noise (81.99999999999999) before it reaches a floor."""
    return float(_decimal(value).quantize(Decimal(places), rounding=ROUND_HALF_UP))


def requires_transmutation(scheme_type: SchemeType) -> bool:
    return scheme_type in TRANSMUTED_SCHEME_TYPES


def resolve_rounding_mode(scheme_type: SchemeType, rounding_mode: Optional[RoundingMode] = None) -> RoundingMode:
    if rounding_mode is not None:
        return RoundingMode(rounding_mode)
    if scheme_type == SchemeType.DEPED_K12:
        return RoundingMode.FLOOR
    return RoundingMode.ROUND


def round_grade(value: float, mode: RoundingMode) -> int:
    """Round to an integer key. ``round`` is half up, not Python's banker's rounding."""
    return int(_decimal(_clean(value)).quantize(Decimal("1"), rounding=_DECIMAL_ROUNDING[RoundingMode(mode)]))


def lookup_transmutation(rows: Sequence[TransmutationRowSpec], initial_grade: float) -> Optional[TransmutationRowSpec]:
    """Closest lower bound: the row with the largest initial_grade <= the raw grade."""
    match = None
    for row in sorted(rows, key=lambda r: r.initial_grade):
        if row.initial_grade <= initial_grade:
            match = row
        else:
            break
    return match


def generate_standard_transmutation_rows() -> List[TransmutationRowSpec]:
    """DepEd K-12 style table for initial grades 75..100.

    75-79 -> 80-84, 80-84 -> 85-89, 85-89 -> 90-94 and 90-100 spread
    linearly over 95-100, rounded half up.
    """
    rows = []
    for initial in range(75, 101):
        if initial >= 90:
            transmuted = Decimal(95) + Decimal(initial - 90) / Decimal(10) * Decimal(5)
        elif initial >= 85:
            transmuted = Decimal(90 + (initial - 85))
        elif initial >= 80:
            transmuted = Decimal(85 + (initial - 80))
        else:
            transmuted = Decimal(80 + (initial - 75))
        rows.append(TransmutationRowSpec(
            initial_grade=float(initial),
            transmuted_grade=float(transmuted.quantize(Decimal("1"), rounding=ROUND_HALF_UP)),
        ))
    return rows


def resolve_weight_profile(scheme: SchemeSpec, weight_profile: Optional[WeightProfileSpec] = None) -> WeightProfileSpec:
    if weight_profile is not None:
        return weight_profile
    for profile in scheme.weight_profiles:
        if profile.is_default:
            return profile
    raise GradeValidationError("No weight profile selected and the scheme has no default profile")


def validate_weight_total(
    profile: WeightProfileSpec,
    components: Sequence[ComponentSpec],
    weight_policy: WeightPolicy = WeightPolicy.STRICT,
) -> float:
    """Return the profile's total over ``components`` or raise GradeValidationError."""
    total = 0.0
    for component in components:
        weight = profile.weights.get(component.id)
        if weight is None:
            if weight_policy == WeightPolicy.STRICT:
                raise GradeValidationError(
                    f"Component '{component.code}' has no weight in profile '{profile.profile_key}'"
                )
            continue
        total += weight
    total = _clean(total)

    if weight_policy == WeightPolicy.STRICT:
        if round(abs(total - 100.0), 6) > WEIGHT_TOLERANCE:
            raise GradeValidationError(
                f"Weights in profile '{profile.profile_key}' sum to {total:g}%, expected 100%"
            )
    elif total <= 0:
        raise GradeValidationError(f"Weights in profile '{profile.profile_key}' have no positive total")
    return total


def aggregate_component(component: ComponentSpec, scores: Iterable[ItemScore], weight_percent: float) -> ComponentBreakdown:
    counts = StatusCounts()
    raw_total = 0.0
    max_total = 0.0

    for score in scores:
        status = ScoreStatus(score.status)
        if status == ScoreStatus.EXCUSED:
            counts.excused += 1
            continue
        if status == ScoreStatus.PRESENT:
            counts.present += 1
            raw_total += score.points_earned or 0.0
        elif status == ScoreStatus.MISSING:
            counts.missing += 1
        else:
            counts.absent += 1
        max_total += score.max_points

    percent = raw_total / max_total * 100 if max_total > 0 else 0.0
    weighted_score = percent * weight_percent / 100

    return ComponentBreakdown(
        component_id=component.id,
        code=component.code,
        label=component.label,
        raw_total=_clean(raw_total),
        max_total=_clean(max_total),
        percent=_clean(percent),
        weight_percent=weight_percent,
        weighted_score=_clean(weighted_score),
        counted=(counts.present + counts.missing + counts.absent) > 0,
        status_counts=counts,
    )


def _required_table(scheme: SchemeSpec, table: Optional[TransmutationTableSpec]) -> TransmutationTableSpec:
    if table is None:
        raise GradeValidationError(f"Transmutation table is required for {scheme.scheme_type.value} schemes")
    if not table.published:
        raise GradeValidationError("Transmutation table must be published before it can be used")
    if not table.rows:
        raise GradeValidationError("Transmutation table has no rows")
    return table


def compute_student_grade(
    scheme: SchemeSpec,
    profile: WeightProfileSpec,
    components: Sequence[ComponentSpec],
    table: Optional[TransmutationTableSpec],
    student: StudentScores,
    rounding_mode: RoundingMode,
    below_range_policy: str,
    computed_at: datetime,
) -> ComputedGradeResult:
    by_component: Dict = {}
    for score in student.scores:
        by_component.setdefault(score.component_id, []).append(score)

    breakdowns = []
    total_weight = 0.0
    weighted_sum = 0.0
    for component in components:
        weight = profile.weights.get(component.id, 0.0)
        entry = aggregate_component(component, by_component.get(component.id, []), weight)
        breakdowns.append(entry)
        if entry.counted:
            total_weight += weight
            weighted_sum += entry.weighted_score

    total_weight = _clean(total_weight)
    if scheme.weight_policy == WeightPolicy.NORMALIZE and total_weight > 0 and total_weight != 100:
        initial_raw = _clean(weighted_sum / total_weight * 100)
    else:
        initial_raw = _clean(weighted_sum)

    # display only; the table is matched on the raw grade
    key = round_grade(initial_raw, rounding_mode)
    transmutation_key = None
    transmuted = None
    below_range = False
    final = initial_raw

    if table is not None:
        row = lookup_transmutation(table.rows, initial_raw)
        if row is None:
            if below_range_policy != BELOW_RANGE_PASSTHROUGH:
                raise TransmutationLookupError(
                    f"Initial grade {initial_raw:g} is below the lowest transmutation row", initial_grade=initial_raw
                )
            below_range = True
        else:
            transmutation_key = row.initial_grade
            transmuted = row.transmuted_grade
            final = transmuted

    breakdown = GradeBreakdown(
        breakdown_version=BREAKDOWN_VERSION,
        initial_grade_raw=initial_raw,
        initial_grade_key=key,
        transmutation_key=transmutation_key,
        transmuted_grade=transmuted,
        below_range=below_range,
        final_numeric_grade=final,
        rounding_mode=rounding_mode,
        weight_policy=scheme.weight_policy,
        total_weight=total_weight,
        components=breakdowns,
        scheme_version=scheme.version,
        weight_profile_id=profile.id,
        transmutation_table_id=table.id if table else None,
        transmutation_version=table.version if table else None,
        computed_at=computed_at,
    )
    return ComputedGradeResult(
        student_id=student.student_id,
        initial_grade=initial_raw,
        transmuted_grade=transmuted,
        final_numeric_grade=final,
        breakdown=breakdown,
    )


def compute_grades(
    scheme: SchemeSpec,
    weight_profile: Optional[WeightProfileSpec],
    components: Sequence[ComponentSpec],
    transmutation_table: Optional[TransmutationTableSpec],
    student_scores: Iterable[StudentScores],
    below_range_policy: str = BELOW_RANGE_FAIL,
    computed_at: Optional[datetime] = None,
) -> List[ComputedGradeResult]:
    """Compute one grade per student, or raise before returning anything.

    Raises GradeValidationError for unusable configuration and
    TransmutationLookupError for a grade below the table under the fail policy.
    """
    if not components:
        raise GradeValidationError("Scheme has no components")

    computed_at = computed_at or local_now()
    profile = resolve_weight_profile(scheme, weight_profile)
    validate_weight_total(profile, components, scheme.weight_policy)
    rounding_mode = resolve_rounding_mode(scheme.scheme_type, scheme.rounding_mode)

    table = None
    if requires_transmutation(scheme.scheme_type):
        table = _required_table(scheme, transmutation_table)

    ordered = sorted(components, key=lambda c: c.display_order)
    results = [
        compute_student_grade(scheme, profile, ordered, table, student, rounding_mode, below_range_policy, computed_at)
        for student in student_scores
    ]
    logger.debug(f"Computed {len(results)} grade(s) with profile '{profile.profile_key}' ({rounding_mode.value})")
    return results
