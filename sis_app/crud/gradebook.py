# crud/gradebook.py

import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from fastapi import HTTPException
from pytz import timezone
from sqlalchemy import func
from sqlalchemy.orm import Session

from sis_app.config import settings
from sis_app.exceptions import GradebookError, GradeValidationError
from sis_app.models.all_models import (
    ComponentWeight, ComputeRun, ComputedGrade, EnrollmentStatus, GradedItem, GradedScore,
    GradingComponent, GradingScheme, RunStatus, SchemeType, Section, SectionStudent,
    TransmutationRow, TransmutationTable, WeightProfile
)
from sis_app.schemas.auth import RequestContext
from sis_app.schemas.gradebook_schemas import (
    ComponentCreate, ComponentSpec, ComponentUpdate, ComponentWeightsUpsert, ComputedGradeResult, ComputeRunCreate,
    GradedItemCreate, ItemScore, SchemeCreate, SchemeSpec, SchemeUpdate, ScoresUpsert,
    StudentScores, TransmutationRowsUpsert, TransmutationTableCreate, TransmutationTableSpec,
    WeightProfileCreate, WeightProfileSpec
)
from sis_app.services.grade_engine import compute_grades, generate_standard_transmutation_rows, requires_transmutation
from sis_app.services.scheme_lifecycle import (
    ensure_scheme_draft, ensure_table_draft, validate_for_publish, validate_table_for_publish,
    validate_transmutation_rows
)
from sis_app.utils.system_utils import local_now

logger = logging.getLogger(__name__)

DEPED_COMPONENTS = (
    ("WW", "Written Works", 1, 30.0),
    ("PT", "Performance Tasks", 2, 50.0),
    ("QA", "Quarterly Assessment", 3, 20.0),
)
STANDARD_TABLE_DESCRIPTION = "Standard DepEd K-12 transmutation table"

CLASSIFICATION_EXPLICIT = "explicit"
CLASSIFICATION_SECTION = "section"
CLASSIFICATION_DEFAULT = "default_fallback"


# Loaders
def _active(query, model):
    return query.filter(model.archived_at.is_(None))


def get_scheme(db: Session, context: RequestContext, scheme_id: UUID) -> GradingScheme:
    scheme = db.query(GradingScheme).filter(
        GradingScheme.id == scheme_id,
        GradingScheme.organization_id == context.organization_id,
        GradingScheme.archived_at.is_(None),
    ).first()
    if not scheme:
        raise HTTPException(status_code=404, detail="Grading scheme not found")
    return scheme


def _active_components(db: Session, scheme_id: UUID) -> List[GradingComponent]:
    return _active(db.query(GradingComponent), GradingComponent).filter(
        GradingComponent.scheme_id == scheme_id
    ).order_by(GradingComponent.display_order).all()


def _active_profiles(db: Session, scheme_id: UUID) -> List[WeightProfile]:
    return _active(db.query(WeightProfile), WeightProfile).filter(
        WeightProfile.scheme_id == scheme_id
    ).order_by(WeightProfile.created_at).all()


def _active_weights(db: Session, profile_id: UUID) -> List[ComponentWeight]:
    return _active(db.query(ComponentWeight), ComponentWeight).filter(
        ComponentWeight.profile_id == profile_id
    ).all()


def _active_tables(db: Session, scheme_id: UUID) -> List[TransmutationTable]:
    return _active(db.query(TransmutationTable), TransmutationTable).filter(
        TransmutationTable.scheme_id == scheme_id
    ).order_by(TransmutationTable.version).all()


def _active_rows(db: Session, table_id: UUID) -> List[TransmutationRow]:
    return _active(db.query(TransmutationRow), TransmutationRow).filter(
        TransmutationRow.transmutation_table_id == table_id
    ).order_by(TransmutationRow.initial_grade).all()


# ORM -> engine specs
def component_specs(components: List[GradingComponent]) -> List[ComponentSpec]:
    return [
        ComponentSpec(id=c.id, code=c.code, label=c.label, display_order=c.display_order or 0)
        for c in components
    ]


def profile_spec(db: Session, profile: WeightProfile) -> WeightProfileSpec:
    return WeightProfileSpec(
        id=profile.id,
        profile_key=profile.profile_key,
        is_default=bool(profile.is_default),
        weights={w.component_id: w.weight_percent for w in _active_weights(db, profile.id)},
    )


def table_spec(db: Session, table: TransmutationTable) -> TransmutationTableSpec:
    return TransmutationTableSpec(
        id=table.id,
        version=table.version,
        published=table.published_at is not None,
        rows=[{"initial_grade": r.initial_grade, "transmuted_grade": r.transmuted_grade} for r in _active_rows(db, table.id)],
    )


def scheme_spec(db: Session, scheme: GradingScheme) -> SchemeSpec:
    return SchemeSpec(
        id=scheme.id,
        scheme_type=scheme.scheme_type,
        version=scheme.version,
        rounding_mode=scheme.rounding_mode,
        weight_policy=scheme.weight_policy,
        weight_profiles=[profile_spec(db, p) for p in _active_profiles(db, scheme.id)],
    )


# Schemes
def list_schemes(db: Session, context: RequestContext, scheme_type: Optional[SchemeType] = None) -> List[GradingScheme]:
    query = _active(db.query(GradingScheme), GradingScheme).filter(
        GradingScheme.organization_id == context.organization_id
    )
    if scheme_type:
        query = query.filter(GradingScheme.scheme_type == scheme_type)
    return query.order_by(GradingScheme.name, GradingScheme.version).all()


def create_scheme(db: Session, context: RequestContext, data: SchemeCreate) -> GradingScheme:
    scheme = GradingScheme(
        organization_id=context.organization_id,
        created_by=context.actor_id,
        **data.model_dump(exclude={"with_defaults"}),
    )
    db.add(scheme)
    db.flush()

    if data.with_defaults and data.scheme_type == SchemeType.DEPED_K12:
        bootstrap_deped_scheme(db, context, scheme)

    db.commit()
    db.refresh(scheme)
    return scheme


def bootstrap_deped_scheme(db: Session, context: RequestContext, scheme: GradingScheme):
    """Seed WW/PT/QA components, a 30/50/20 default profile and a draft standard table."""
    profile = WeightProfile(
        organization_id=context.organization_id,
        scheme_id=scheme.id,
        profile_key="default",
        profile_label="Default",
        is_default=True,
    )
    db.add(profile)
    db.flush()

    for code, label, order, weight in DEPED_COMPONENTS:
        component = GradingComponent(
            organization_id=context.organization_id,
            scheme_id=scheme.id,
            code=code,
            label=label,
            display_order=order,
        )
        db.add(component)
        db.flush()
        db.add(ComponentWeight(
            organization_id=context.organization_id,
            scheme_id=scheme.id,
            profile_id=profile.id,
            component_id=component.id,
            weight_percent=weight,
        ))

    table = TransmutationTable(
        organization_id=context.organization_id,
        scheme_id=scheme.id,
        version=1,
        description=STANDARD_TABLE_DESCRIPTION,
    )
    db.add(table)
    db.flush()
    _add_rows(db, context, table, generate_standard_transmutation_rows())


def update_scheme(db: Session, context: RequestContext, scheme_id: UUID, data: SchemeUpdate) -> GradingScheme:
    scheme = get_scheme(db, context, scheme_id)
    ensure_scheme_draft(scheme)
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(scheme, field, value)
    db.commit()
    db.refresh(scheme)
    return scheme


def publish_scheme(db: Session, context: RequestContext, scheme_id: UUID) -> GradingScheme:
    scheme = get_scheme(db, context, scheme_id)
    ensure_scheme_draft(scheme)

    validate_for_publish(
        scheme_spec(db, scheme),
        component_specs(_active_components(db, scheme.id)),
        [table_spec(db, t) for t in _active_tables(db, scheme.id)],
    )
    scheme.published_at = local_now()
    db.commit()
    db.refresh(scheme)
    logger.info(f"Published grading scheme {scheme.id} ({scheme.name} v{scheme.version})")
    return scheme


def create_scheme_version(db: Session, context: RequestContext, scheme_id: UUID) -> GradingScheme:
    """Clone a scheme and its structure into a new draft version."""
    source = get_scheme(db, context, scheme_id)
    latest = db.query(func.max(GradingScheme.version)).filter(
        GradingScheme.organization_id == context.organization_id,
        GradingScheme.name == source.name,
        GradingScheme.scheme_type == source.scheme_type,
    ).scalar() or source.version

    scheme = GradingScheme(
        organization_id=context.organization_id,
        scheme_type=source.scheme_type,
        name=source.name,
        description=source.description,
        version=latest + 1,
        parent_scheme_id=source.id,
        rounding_mode=source.rounding_mode,
        weight_policy=source.weight_policy,
        created_by=context.actor_id,
    )
    db.add(scheme)
    db.flush()

    component_map: Dict[UUID, UUID] = {}
    for component in _active_components(db, source.id):
        clone = GradingComponent(
            organization_id=context.organization_id,
            scheme_id=scheme.id,
            code=component.code,
            label=component.label,
            description=component.description,
            display_order=component.display_order,
        )
        db.add(clone)
        db.flush()
        component_map[component.id] = clone.id

    for profile in _active_profiles(db, source.id):
        clone = WeightProfile(
            organization_id=context.organization_id,
            scheme_id=scheme.id,
            profile_key=profile.profile_key,
            profile_label=profile.profile_label,
            is_default=profile.is_default,
            description=profile.description,
        )
        db.add(clone)
        db.flush()
        for weight in _active_weights(db, profile.id):
            if weight.component_id not in component_map:
                continue
            db.add(ComponentWeight(
                organization_id=context.organization_id,
                scheme_id=scheme.id,
                profile_id=clone.id,
                component_id=component_map[weight.component_id],
                weight_percent=weight.weight_percent,
            ))

    for table in _active_tables(db, source.id):
        clone = TransmutationTable(
            organization_id=context.organization_id,
            scheme_id=scheme.id,
            version=table.version,
            description=table.description,
            published_at=table.published_at,
        )
        db.add(clone)
        db.flush()
        for row in _active_rows(db, table.id):
            db.add(TransmutationRow(
                organization_id=context.organization_id,
                transmutation_table_id=clone.id,
                initial_grade=row.initial_grade,
                transmuted_grade=row.transmuted_grade,
            ))

    db.commit()
    db.refresh(scheme)
    logger.info(f"Created version {scheme.version} of grading scheme {source.id}")
    return scheme


def archive_scheme(db: Session, context: RequestContext, scheme_id: UUID):
    scheme = get_scheme(db, context, scheme_id)
    scheme.archived_at = local_now()
    db.commit()


# Components
def list_components(db: Session, context: RequestContext, scheme_id: UUID) -> List[GradingComponent]:
    get_scheme(db, context, scheme_id)
    return _active_components(db, scheme_id)


def _get_component(db: Session, context: RequestContext, component_id: UUID) -> GradingComponent:
    component = _active(db.query(GradingComponent), GradingComponent).filter(
        GradingComponent.id == component_id,
        GradingComponent.organization_id == context.organization_id,
    ).first()
    if not component:
        raise HTTPException(status_code=404, detail="Grading component not found")
    return component


def create_component(db: Session, context: RequestContext, scheme_id: UUID, data: ComponentCreate) -> GradingComponent:
    scheme = get_scheme(db, context, scheme_id)
    ensure_scheme_draft(scheme)
    component = GradingComponent(organization_id=context.organization_id, scheme_id=scheme.id, **data.model_dump())
    db.add(component)
    db.commit()
    db.refresh(component)
    return component


def update_component(db: Session, context: RequestContext, component_id: UUID, data: ComponentUpdate) -> GradingComponent:
    component = _get_component(db, context, component_id)
    ensure_scheme_draft(component.scheme)
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(component, field, value)
    db.commit()
    db.refresh(component)
    return component


def archive_component(db: Session, context: RequestContext, component_id: UUID):
    component = _get_component(db, context, component_id)
    ensure_scheme_draft(component.scheme)
    now = local_now()
    component.archived_at = now
    _active(db.query(ComponentWeight), ComponentWeight).filter(
        ComponentWeight.component_id == component.id
    ).update({ComponentWeight.archived_at: now}, synchronize_session=False)
    db.commit()


# Weight profiles
def list_weight_profiles(db: Session, context: RequestContext, scheme_id: UUID) -> List[WeightProfile]:
    get_scheme(db, context, scheme_id)
    return _active_profiles(db, scheme_id)


def _get_profile(db: Session, context: RequestContext, scheme_id: UUID, profile_id: UUID) -> WeightProfile:
    profile = _active(db.query(WeightProfile), WeightProfile).filter(
        WeightProfile.id == profile_id,
        WeightProfile.scheme_id == scheme_id,
        WeightProfile.organization_id == context.organization_id,
    ).first()
    if not profile:
        raise HTTPException(status_code=404, detail="Weight profile not found")
    return profile


def create_weight_profile(db: Session, context: RequestContext, scheme_id: UUID, data: WeightProfileCreate) -> WeightProfile:
    scheme = get_scheme(db, context, scheme_id)
    ensure_scheme_draft(scheme)

    duplicate = _active(db.query(WeightProfile), WeightProfile).filter(
        WeightProfile.scheme_id == scheme.id,
        WeightProfile.profile_key == data.profile_key,
    ).first()
    if duplicate:
        raise HTTPException(status_code=400, detail=f"Profile key '{data.profile_key}' already exists in this scheme")

    if data.is_default:
        # one default per scheme
        _active(db.query(WeightProfile), WeightProfile).filter(
            WeightProfile.scheme_id == scheme.id
        ).update({WeightProfile.is_default: False}, synchronize_session=False)

    profile = WeightProfile(organization_id=context.organization_id, scheme_id=scheme.id, **data.model_dump())
    db.add(profile)
    db.commit()
    db.refresh(profile)
    return profile


def archive_weight_profile(db: Session, context: RequestContext, scheme_id: UUID, profile_id: UUID):
    scheme = get_scheme(db, context, scheme_id)
    ensure_scheme_draft(scheme)
    profile = _get_profile(db, context, scheme_id, profile_id)
    now = local_now()
    profile.archived_at = now
    _active(db.query(ComponentWeight), ComponentWeight).filter(
        ComponentWeight.profile_id == profile.id
    ).update({ComponentWeight.archived_at: now}, synchronize_session=False)
    db.commit()


def list_component_weights(db: Session, context: RequestContext, scheme_id: UUID, profile_id: UUID) -> List[ComponentWeight]:
    get_scheme(db, context, scheme_id)
    _get_profile(db, context, scheme_id, profile_id)
    return _active_weights(db, profile_id)


def upsert_component_weights(
    db: Session, context: RequestContext, scheme_id: UUID, profile_id: UUID, data: ComponentWeightsUpsert
) -> Tuple[List[ComponentWeight], float]:
    """Replace a profile's weights. Sum checks happen at publish and compute time."""
    scheme = get_scheme(db, context, scheme_id)
    ensure_scheme_draft(scheme)
    profile = _get_profile(db, context, scheme_id, profile_id)

    component_ids = {c.id for c in _active_components(db, scheme.id)}
    seen = set()
    for weight in data.weights:
        if weight.component_id not in component_ids:
            raise HTTPException(status_code=400, detail=f"Component {weight.component_id} is not part of this scheme")
        if weight.component_id in seen:
            raise HTTPException(status_code=400, detail=f"Component {weight.component_id} appears more than once")
        seen.add(weight.component_id)

    _active(db.query(ComponentWeight), ComponentWeight).filter(
        ComponentWeight.profile_id == profile.id
    ).update({ComponentWeight.archived_at: local_now()}, synchronize_session=False)

    weights = []
    for weight in data.weights:
        row = ComponentWeight(
            organization_id=context.organization_id,
            scheme_id=scheme.id,
            profile_id=profile.id,
            component_id=weight.component_id,
            weight_percent=weight.weight_percent,
        )
        db.add(row)
        weights.append(row)
    db.commit()
    for row in weights:
        db.refresh(row)
    return weights, round(sum(w.weight_percent for w in weights), 4)


# Transmutation tables
def list_transmutation_tables(db: Session, context: RequestContext, scheme_id: UUID) -> List[TransmutationTable]:
    get_scheme(db, context, scheme_id)
    return _active_tables(db, scheme_id)


def table_rows(db: Session, table: TransmutationTable) -> List[TransmutationRow]:
    return _active_rows(db, table.id)


def get_transmutation_table(db: Session, context: RequestContext, table_id: UUID) -> TransmutationTable:
    table = _active(db.query(TransmutationTable), TransmutationTable).filter(
        TransmutationTable.id == table_id,
        TransmutationTable.organization_id == context.organization_id,
    ).first()
    if not table:
        raise HTTPException(status_code=404, detail="Transmutation table not found")
    return table


def _add_rows(db: Session, context: RequestContext, table: TransmutationTable, rows) -> List[TransmutationRow]:
    created = []
    for row in rows:
        record = TransmutationRow(
            organization_id=context.organization_id,
            transmutation_table_id=table.id,
            initial_grade=row.initial_grade,
            transmuted_grade=row.transmuted_grade,
        )
        db.add(record)
        created.append(record)
    return created


def create_transmutation_table(db: Session, context: RequestContext, scheme_id: UUID, data: TransmutationTableCreate) -> TransmutationTable:
    scheme = get_scheme(db, context, scheme_id)
    ensure_scheme_draft(scheme)
    latest = db.query(func.max(TransmutationTable.version)).filter(
        TransmutationTable.scheme_id == scheme.id
    ).scalar() or 0

    table = TransmutationTable(
        organization_id=context.organization_id,
        scheme_id=scheme.id,
        version=latest + 1,
        description=data.description,
    )
    db.add(table)
    db.flush()
    if data.use_standard_rows:
        _add_rows(db, context, table, generate_standard_transmutation_rows())
    db.commit()
    db.refresh(table)
    return table


def upsert_transmutation_rows(db: Session, context: RequestContext, table_id: UUID, data: TransmutationRowsUpsert) -> TransmutationTable:
    table = get_transmutation_table(db, context, table_id)
    ensure_table_draft(table)
    validate_transmutation_rows(data.rows)

    _active(db.query(TransmutationRow), TransmutationRow).filter(
        TransmutationRow.transmutation_table_id == table.id
    ).update({TransmutationRow.archived_at: local_now()}, synchronize_session=False)
    _add_rows(db, context, table, data.rows)
    db.commit()
    db.refresh(table)
    return table


def publish_transmutation_table(db: Session, context: RequestContext, table_id: UUID) -> TransmutationTable:
    table = get_transmutation_table(db, context, table_id)
    ensure_table_draft(table)
    validate_table_for_publish(table_spec(db, table))
    table.published_at = local_now()
    db.commit()
    db.refresh(table)
    logger.info(f"Published transmutation table {table.id} v{table.version}")
    return table


def archive_transmutation_table(db: Session, context: RequestContext, table_id: UUID):
    table = get_transmutation_table(db, context, table_id)
    ensure_table_draft(table)
    table.archived_at = local_now()
    db.commit()


# Graded items and scores
def list_graded_items(
    db: Session, context: RequestContext, section_id: UUID, term_period: Optional[str] = None
) -> List[GradedItem]:
    query = _active(db.query(GradedItem), GradedItem).filter(
        GradedItem.organization_id == context.organization_id,
        GradedItem.section_id == section_id,
    )
    if term_period:
        query = query.filter(GradedItem.term_period == term_period)
    return query.order_by(GradedItem.created_at).all()


def _get_item(db: Session, context: RequestContext, item_id: UUID) -> GradedItem:
    item = _active(db.query(GradedItem), GradedItem).filter(
        GradedItem.id == item_id,
        GradedItem.organization_id == context.organization_id,
    ).first()
    if not item:
        raise HTTPException(status_code=404, detail="Graded item not found")
    return item


def create_graded_item(db: Session, context: RequestContext, data: GradedItemCreate) -> GradedItem:
    section = db.query(Section).filter(
        Section.id == data.section_id,
        Section.organization_id == context.organization_id,
    ).first()
    if not section:
        raise HTTPException(status_code=404, detail="Section not found")
    _get_component(db, context, data.component_id)

    item = GradedItem(organization_id=context.organization_id, created_by=context.actor_id, **data.model_dump())
    db.add(item)
    db.commit()
    db.refresh(item)
    return item


def archive_graded_item(db: Session, context: RequestContext, item_id: UUID):
    item = _get_item(db, context, item_id)
    item.archived_at = local_now()
    db.commit()


def list_scores(db: Session, context: RequestContext, item_id: UUID) -> List[GradedScore]:
    _get_item(db, context, item_id)
    return _active(db.query(GradedScore), GradedScore).filter(GradedScore.graded_item_id == item_id).all()


def upsert_scores(db: Session, context: RequestContext, item_id: UUID, data: ScoresUpsert) -> List[GradedScore]:
    item = _get_item(db, context, item_id)
    for entry in data.scores:
        if entry.points_earned is not None and not 0 <= entry.points_earned <= item.max_points:
            raise HTTPException(
                status_code=400,
                detail=f"points_earned must be between 0 and {item.max_points:g}",
            )

    existing = {
        s.student_id: s
        for s in _active(db.query(GradedScore), GradedScore).filter(GradedScore.graded_item_id == item.id).all()
    }
    now = local_now()
    saved = []
    for entry in data.scores:
        score = existing.get(entry.student_id)
        if score is None:
            score = GradedScore(
                organization_id=context.organization_id,
                graded_item_id=item.id,
                student_id=entry.student_id,
            )
            db.add(score)
        score.points_earned = entry.points_earned
        score.status = entry.status
        score.entered_by = context.actor_id
        score.entered_at = now
        saved.append(score)
    db.commit()
    for score in saved:
        db.refresh(score)
    return saved


# Compute runs
def list_compute_runs(db: Session, context: RequestContext, section_id: Optional[UUID] = None) -> List[ComputeRun]:
    query = _active(db.query(ComputeRun), ComputeRun).filter(ComputeRun.organization_id == context.organization_id)
    if section_id:
        query = query.filter(ComputeRun.section_id == section_id)
    return query.order_by(ComputeRun.created_at.desc()).all()


def get_compute_run(db: Session, context: RequestContext, run_id: UUID) -> ComputeRun:
    run = _active(db.query(ComputeRun), ComputeRun).filter(
        ComputeRun.id == run_id,
        ComputeRun.organization_id == context.organization_id,
    ).first()
    if not run:
        raise HTTPException(status_code=404, detail="Compute run not found")
    return run


def resolve_run_profile(
    db: Session, scheme: GradingScheme, section: Section, weight_profile_id: Optional[UUID] = None
) -> Tuple[Optional[WeightProfile], Optional[str], Optional[str]]:
    """Pick the profile for a run: explicit id, then section classification, then the default."""
    profiles = _active_profiles(db, scheme.id)
    if weight_profile_id:
        for profile in profiles:
            if profile.id == weight_profile_id:
                return profile, profile.profile_key, CLASSIFICATION_EXPLICIT
        raise HTTPException(status_code=404, detail="Weight profile not found in this scheme")

    classification = (section.primary_classification or "").strip().lower()
    if classification:
        for profile in profiles:
            if profile.profile_key.lower() == classification:
                return profile, profile.profile_key, CLASSIFICATION_SECTION

    for profile in profiles:
        if profile.is_default:
            logger.info(
                f"Section {section.id} classification '{classification or '-'}' has no profile; "
                f"using default profile '{profile.profile_key}'"
            )
            return profile, profile.profile_key, CLASSIFICATION_DEFAULT
    return None, None, None


def _latest_published_table(db: Session, scheme_id: UUID) -> Optional[TransmutationTable]:
    return _active(db.query(TransmutationTable), TransmutationTable).filter(
        TransmutationTable.scheme_id == scheme_id,
        TransmutationTable.published_at.isnot(None),
    ).order_by(TransmutationTable.version.desc()).first()


def _to_local(value: Optional[datetime]) -> datetime:
    if value is None:
        return local_now()
    if value.tzinfo is None:
        return timezone(settings.TIMEZONE).localize(value)
    return value.astimezone(timezone(settings.TIMEZONE))


def create_compute_run(db: Session, context: RequestContext, data: ComputeRunCreate) -> ComputeRun:
    scheme = get_scheme(db, context, data.scheme_id)
    if scheme.published_at is None:
        raise GradeValidationError("Scheme must be published before computing grades")
    section = db.query(Section).filter(
        Section.id == data.section_id,
        Section.organization_id == context.organization_id,
    ).first()
    if not section:
        raise HTTPException(status_code=404, detail="Section not found")

    profile, classification, source = resolve_run_profile(db, scheme, section, data.weight_profile_id)
    table = _latest_published_table(db, scheme.id) if requires_transmutation(scheme.scheme_type) else None

    run = ComputeRun(
        organization_id=context.organization_id,
        section_id=section.id,
        school_year_id=data.school_year_id,
        term_period=data.term_period,
        scheme_id=scheme.id,
        scheme_version=scheme.version,
        weight_profile_id=profile.id if profile else None,
        transmutation_table_id=table.id if table else None,
        transmutation_version=table.version if table else None,
        classification_used=classification,
        classification_source=source,
        as_of=_to_local(data.as_of),
        run_by=context.actor_id,
        status=RunStatus.CREATED,
    )
    db.add(run)
    db.commit()
    db.refresh(run)
    return run


def _load_student_scores(db: Session, run: ComputeRun, component_ids, as_of: datetime) -> List[StudentScores]:
    items = _active(db.query(GradedItem), GradedItem).filter(
        GradedItem.organization_id == run.organization_id,
        GradedItem.section_id == run.section_id,
        GradedItem.school_year_id == run.school_year_id,
        GradedItem.term_period == run.term_period,
        GradedItem.component_id.in_(component_ids),
    ).all()
    items_by_id = {item.id: item for item in items}

    scores = []
    if items_by_id:
        scores = _active(db.query(GradedScore), GradedScore).filter(
            GradedScore.graded_item_id.in_(list(items_by_id)),
            GradedScore.entered_at <= as_of,
        ).all()

    enrolments = db.query(SectionStudent).filter(
        SectionStudent.section_id == run.section_id,
        SectionStudent.status == EnrollmentStatus.ACTIVE,
    ).order_by(SectionStudent.created_at).all()

    by_student: Dict[UUID, List[ItemScore]] = {e.student_id: [] for e in enrolments}
    for score in scores:
        if score.student_id not in by_student:
            continue
        item = items_by_id[score.graded_item_id]
        by_student[score.student_id].append(ItemScore(
            graded_item_id=item.id,
            component_id=item.component_id,
            max_points=item.max_points,
            points_earned=score.points_earned,
            status=score.status,
        ))
    return [StudentScores(student_id=student_id, scores=entries) for student_id, entries in by_student.items()]


def _compute_run_results(db: Session, run: ComputeRun, as_of: datetime) -> List[ComputedGradeResult]:
    scheme = run.scheme
    components = _active_components(db, scheme.id)
    profile = None
    if run.weight_profile_id:
        profile_row = db.query(WeightProfile).filter(WeightProfile.id == run.weight_profile_id).first()
        profile = profile_spec(db, profile_row) if profile_row else None
    table = None
    if run.transmutation_table_id:
        table_row = db.query(TransmutationTable).filter(TransmutationTable.id == run.transmutation_table_id).first()
        table = table_spec(db, table_row) if table_row else None

    return compute_grades(
        scheme_spec(db, scheme),
        profile,
        component_specs(components),
        table,
        _load_student_scores(db, run, [c.id for c in components], as_of),
        below_range_policy=settings.TRANSMUTATION_BELOW_RANGE,
        computed_at=local_now(),
    )


def _mark_failed(db: Session, run: ComputeRun, message: str) -> ComputeRun:
    db.rollback()
    run.status = RunStatus.FAILED
    run.error_message = message
    db.commit()
    db.refresh(run)
    return run


def _store_results(db: Session, run: ComputeRun, results: List[ComputedGradeResult]):
    for result in results:
        db.add(ComputedGrade(
            organization_id=run.organization_id,
            compute_run_id=run.id,
            student_id=result.student_id,
            section_id=run.section_id,
            school_year_id=run.school_year_id,
            term_period=run.term_period,
            initial_grade=result.initial_grade,
            transmuted_grade=result.transmuted_grade,
            final_numeric_grade=result.final_numeric_grade,
            breakdown=result.breakdown.model_dump(mode="json"),
        ))
    run.status = RunStatus.COMPLETED
    run.error_message = None


def execute_compute_run(db: Session, context: RequestContext, run_id: UUID) -> ComputeRun:
    """Compute and store every grade of a run, or mark it failed and store none."""
    run = get_compute_run(db, context, run_id)
    if run.status != RunStatus.CREATED:
        raise HTTPException(status_code=400, detail=f"Compute run is already {run.status.value}")

    try:
        results = _compute_run_results(db, run, run.as_of)
    except GradebookError as e:
        logger.error(f"Compute run {run.id} failed: {e.message}")
        return _mark_failed(db, run, e.message)
    except Exception as e:
        logger.exception(f"Compute run {run.id} failed unexpectedly")
        _mark_failed(db, run, f"Unexpected error while computing grades: {type(e).__name__}")
        raise

    _store_results(db, run, results)
    db.commit()
    db.refresh(run)
    logger.info(f"Compute run {run.id} completed with {len(results)} grade(s)")
    return run


def recompute_compute_run(db: Session, context: RequestContext, run_id: UUID, as_of: Optional[datetime] = None) -> ComputeRun:
    """Re-run the same section/term/scheme/profile/table combination.

    Earlier grades are replaced only when the new computation succeeds. A
    completed run whose recompute fails keeps its grades and the error is
    raised; a run without grades is marked failed instead.
    """
    run = get_compute_run(db, context, run_id)
    as_of = _to_local(as_of)

    try:
        results = _compute_run_results(db, run, as_of)
    except GradebookError as e:
        if run.status == RunStatus.COMPLETED:
            db.rollback()
            logger.warning(f"Recompute of run {run.id} failed, keeping earlier grades: {e.message}")
            raise
        logger.error(f"Compute run {run.id} failed: {e.message}")
        return _mark_failed(db, run, e.message)
    except Exception as e:
        logger.exception(f"Recompute of run {run.id} failed unexpectedly")
        if run.status == RunStatus.COMPLETED:
            db.rollback()
        else:
            _mark_failed(db, run, f"Unexpected error while computing grades: {type(e).__name__}")
        raise

    run.grades.clear()
    db.flush()
    run.as_of = as_of
    run.run_by = context.actor_id
    _store_results(db, run, results)
    db.commit()
    db.refresh(run)
    logger.info(f"Compute run {run.id} recomputed with {len(results)} grade(s)")
    return run


def archive_compute_run(db: Session, context: RequestContext, run_id: UUID):
    run = get_compute_run(db, context, run_id)
    run.archived_at = local_now()
    db.commit()
