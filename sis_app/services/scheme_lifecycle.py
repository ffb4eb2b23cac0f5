# services/scheme_lifecycle.py
"""Draft/published rules for grading schemes and transmutation tables."""
from typing import List, Optional, Sequence

from sis_app.exceptions import GradeValidationError, SchemeLockedError
from sis_app.schemas.gradebook_schemas import ComponentSpec, SchemeSpec, TransmutationRowSpec, TransmutationTableSpec
from sis_app.services.grade_engine import requires_transmutation, validate_weight_total


def is_published(record) -> bool:
    return getattr(record, "published_at", None) is not None


def ensure_scheme_draft(scheme):
    if is_published(scheme):
        raise SchemeLockedError(
            f"Scheme '{scheme.name}' v{scheme.version} is published; create a new version to change it"
        )


def ensure_table_draft(table):
    if is_published(table):
        raise SchemeLockedError(f"Transmutation table v{table.version} is published and cannot be edited")


def validate_transmutation_rows(rows: Sequence[TransmutationRowSpec]):
    seen = set()
    for row in rows:
        if row.initial_grade in seen:
            raise GradeValidationError(f"Duplicate initial_grade {row.initial_grade:g} in transmutation rows")
        seen.add(row.initial_grade)


def validate_table_for_publish(table: TransmutationTableSpec):
    if not table.rows:
        raise GradeValidationError("Cannot publish a transmutation table without rows")
    validate_transmutation_rows(table.rows)


def publish_problems(
    scheme: SchemeSpec,
    components: Sequence[ComponentSpec],
    tables: Optional[Sequence[TransmutationTableSpec]] = None,
) -> List[str]:
    """Every reason the scheme cannot be published yet; empty means publishable."""
    problems = []
    if not components:
        problems.append("Scheme has no components")

    if not scheme.weight_profiles:
        problems.append("Scheme has no weight profiles")
    defaults = [p for p in scheme.weight_profiles if p.is_default]
    if len(defaults) > 1:
        problems.append("Only one weight profile can be the default")

    if components:
        for profile in scheme.weight_profiles:
            try:
                validate_weight_total(profile, components, scheme.weight_policy)
            except GradeValidationError as e:
                problems.append(e.message)

    if requires_transmutation(scheme.scheme_type):
        usable = [t for t in (tables or []) if t.published and t.rows]
        if not usable:
            problems.append(
                f"A published transmutation table is required for {scheme.scheme_type.value} schemes"
            )
    return problems


def validate_for_publish(
    scheme: SchemeSpec,
    components: Sequence[ComponentSpec],
    tables: Optional[Sequence[TransmutationTableSpec]] = None,
):
    problems = publish_problems(scheme, components, tables)
    if problems:
        raise GradeValidationError("; ".join(problems))
