# routers/gradebook.py

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from sis_app.crud import gradebook as crud
from sis_app.database import get_db
from sis_app.models.all_models import SchemeType
from sis_app.schemas.auth import RequestContext
from sis_app.schemas.gradebook_schemas import (
    ComponentCreate, ComponentResponse, ComponentUpdate, ComponentWeightResponse, ComponentWeightsUpsert,
    ComputeRunCreate, ComputeRunDetail, ComputeRunResponse, GradedItemCreate, GradedItemResponse,
    GradedScoreResponse, SchemeCreate, SchemeResponse, SchemeUpdate, ScoresUpsert, TransmutationRowResponse,
    TransmutationRowSpec, TransmutationRowsUpsert, TransmutationTableCreate, TransmutationTableResponse,
    WeightProfileCreate, WeightProfileResponse, WeightsUpsertResponse
)
from sis_app.services.grade_engine import generate_standard_transmutation_rows
from sis_app.utils.auth import GRADEBOOK_ROLES, STAFF_ROLES, get_request_context, require_roles

router = APIRouter(prefix="/api/gradebook", tags=["Gradebook"])

staff_only = require_roles(*STAFF_ROLES)
gradebook_writer = require_roles(*GRADEBOOK_ROLES)


def _table_response(db: Session, table):
    return TransmutationTableResponse(
        id=table.id,
        scheme_id=table.scheme_id,
        version=table.version,
        description=table.description,
        published_at=table.published_at,
        rows=[TransmutationRowResponse.model_validate(r) for r in crud.table_rows(db, table)],
    )


# Schemes
@router.get("/schemes", response_model=List[SchemeResponse])
def list_schemes(
    scheme_type: Optional[SchemeType] = None,
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
):
    return crud.list_schemes(db, context, scheme_type)


@router.post("/schemes", response_model=SchemeResponse, status_code=status.HTTP_201_CREATED)
def create_scheme(data: SchemeCreate, db: Session = Depends(get_db), context: RequestContext = Depends(staff_only)):
    return crud.create_scheme(db, context, data)


@router.get("/schemes/{scheme_id}", response_model=SchemeResponse)
def get_scheme(scheme_id: UUID, db: Session = Depends(get_db), context: RequestContext = Depends(get_request_context)):
    return crud.get_scheme(db, context, scheme_id)


@router.patch("/schemes/{scheme_id}", response_model=SchemeResponse)
def update_scheme(scheme_id: UUID, data: SchemeUpdate, db: Session = Depends(get_db), context: RequestContext = Depends(staff_only)):
    return crud.update_scheme(db, context, scheme_id, data)


@router.post("/schemes/{scheme_id}/publish", response_model=SchemeResponse)
def publish_scheme(scheme_id: UUID, db: Session = Depends(get_db), context: RequestContext = Depends(staff_only)):
    return crud.publish_scheme(db, context, scheme_id)


@router.post("/schemes/{scheme_id}/versions", response_model=SchemeResponse, status_code=status.HTTP_201_CREATED)
def create_scheme_version(scheme_id: UUID, db: Session = Depends(get_db), context: RequestContext = Depends(staff_only)):
    return crud.create_scheme_version(db, context, scheme_id)


@router.delete("/schemes/{scheme_id}", status_code=status.HTTP_204_NO_CONTENT)
def archive_scheme(scheme_id: UUID, db: Session = Depends(get_db), context: RequestContext = Depends(staff_only)):
    crud.archive_scheme(db, context, scheme_id)


# Components
@router.get("/schemes/{scheme_id}/components", response_model=List[ComponentResponse])
def list_components(scheme_id: UUID, db: Session = Depends(get_db), context: RequestContext = Depends(get_request_context)):
    return crud.list_components(db, context, scheme_id)


@router.post("/schemes/{scheme_id}/components", response_model=ComponentResponse, status_code=status.HTTP_201_CREATED)
def create_component(scheme_id: UUID, data: ComponentCreate, db: Session = Depends(get_db), context: RequestContext = Depends(staff_only)):
    return crud.create_component(db, context, scheme_id, data)


@router.patch("/components/{component_id}", response_model=ComponentResponse)
def update_component(component_id: UUID, data: ComponentUpdate, db: Session = Depends(get_db), context: RequestContext = Depends(staff_only)):
    return crud.update_component(db, context, component_id, data)


@router.delete("/components/{component_id}", status_code=status.HTTP_204_NO_CONTENT)
def archive_component(component_id: UUID, db: Session = Depends(get_db), context: RequestContext = Depends(staff_only)):
    crud.archive_component(db, context, component_id)


# Weight profiles
@router.get("/schemes/{scheme_id}/profiles", response_model=List[WeightProfileResponse])
def list_profiles(scheme_id: UUID, db: Session = Depends(get_db), context: RequestContext = Depends(get_request_context)):
    return crud.list_weight_profiles(db, context, scheme_id)


@router.post("/schemes/{scheme_id}/profiles", response_model=WeightProfileResponse, status_code=status.HTTP_201_CREATED)
def create_profile(scheme_id: UUID, data: WeightProfileCreate, db: Session = Depends(get_db), context: RequestContext = Depends(staff_only)):
    return crud.create_weight_profile(db, context, scheme_id, data)


@router.delete("/schemes/{scheme_id}/profiles/{profile_id}", status_code=status.HTTP_204_NO_CONTENT)
def archive_profile(scheme_id: UUID, profile_id: UUID, db: Session = Depends(get_db), context: RequestContext = Depends(staff_only)):
    crud.archive_weight_profile(db, context, scheme_id, profile_id)


@router.get("/schemes/{scheme_id}/profiles/{profile_id}/weights", response_model=List[ComponentWeightResponse])
def list_weights(scheme_id: UUID, profile_id: UUID, db: Session = Depends(get_db), context: RequestContext = Depends(get_request_context)):
    return crud.list_component_weights(db, context, scheme_id, profile_id)


@router.put("/schemes/{scheme_id}/profiles/{profile_id}/weights", response_model=WeightsUpsertResponse)
def upsert_weights(
    scheme_id: UUID,
    profile_id: UUID,
    data: ComponentWeightsUpsert,
    db: Session = Depends(get_db),
    context: RequestContext = Depends(staff_only),
):
    weights, total = crud.upsert_component_weights(db, context, scheme_id, profile_id, data)
    return {"weights": weights, "total_weight": total}


# Transmutation tables
@router.get("/transmutation/standard-rows", response_model=List[TransmutationRowSpec])
def standard_rows(context: RequestContext = Depends(get_request_context)):
    return generate_standard_transmutation_rows()


@router.get("/schemes/{scheme_id}/transmutation-tables", response_model=List[TransmutationTableResponse])
def list_tables(scheme_id: UUID, db: Session = Depends(get_db), context: RequestContext = Depends(get_request_context)):
    return [_table_response(db, t) for t in crud.list_transmutation_tables(db, context, scheme_id)]


@router.post("/schemes/{scheme_id}/transmutation-tables", response_model=TransmutationTableResponse, status_code=status.HTTP_201_CREATED)
def create_table(
    scheme_id: UUID,
    data: TransmutationTableCreate,
    db: Session = Depends(get_db),
    context: RequestContext = Depends(staff_only),
):
    return _table_response(db, crud.create_transmutation_table(db, context, scheme_id, data))


@router.get("/transmutation-tables/{table_id}", response_model=TransmutationTableResponse)
def get_table(table_id: UUID, db: Session = Depends(get_db), context: RequestContext = Depends(get_request_context)):
    return _table_response(db, crud.get_transmutation_table(db, context, table_id))


@router.put("/transmutation-tables/{table_id}/rows", response_model=TransmutationTableResponse)
def upsert_rows(table_id: UUID, data: TransmutationRowsUpsert, db: Session = Depends(get_db), context: RequestContext = Depends(staff_only)):
    return _table_response(db, crud.upsert_transmutation_rows(db, context, table_id, data))


@router.post("/transmutation-tables/{table_id}/publish", response_model=TransmutationTableResponse)
def publish_table(table_id: UUID, db: Session = Depends(get_db), context: RequestContext = Depends(staff_only)):
    return _table_response(db, crud.publish_transmutation_table(db, context, table_id))


@router.delete("/transmutation-tables/{table_id}", status_code=status.HTTP_204_NO_CONTENT)
def archive_table(table_id: UUID, db: Session = Depends(get_db), context: RequestContext = Depends(staff_only)):
    crud.archive_transmutation_table(db, context, table_id)


# Graded items and scores
@router.get("/items", response_model=List[GradedItemResponse])
def list_items(
    section_id: UUID,
    term_period: Optional[str] = None,
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
):
    return crud.list_graded_items(db, context, section_id, term_period)


@router.post("/items", response_model=GradedItemResponse, status_code=status.HTTP_201_CREATED)
def create_item(data: GradedItemCreate, db: Session = Depends(get_db), context: RequestContext = Depends(gradebook_writer)):
    return crud.create_graded_item(db, context, data)


@router.delete("/items/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
def archive_item(item_id: UUID, db: Session = Depends(get_db), context: RequestContext = Depends(gradebook_writer)):
    crud.archive_graded_item(db, context, item_id)


@router.get("/items/{item_id}/scores", response_model=List[GradedScoreResponse])
def list_scores(item_id: UUID, db: Session = Depends(get_db), context: RequestContext = Depends(get_request_context)):
    return crud.list_scores(db, context, item_id)


@router.put("/items/{item_id}/scores", response_model=List[GradedScoreResponse])
def upsert_scores(item_id: UUID, data: ScoresUpsert, db: Session = Depends(get_db), context: RequestContext = Depends(gradebook_writer)):
    return crud.upsert_scores(db, context, item_id, data)


# Compute runs
@router.get("/compute-runs", response_model=List[ComputeRunResponse])
def list_runs(
    section_id: Optional[UUID] = None,
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
):
    return crud.list_compute_runs(db, context, section_id)


@router.post("/compute-runs", response_model=ComputeRunDetail, status_code=status.HTTP_201_CREATED)
def create_run(data: ComputeRunCreate, db: Session = Depends(get_db), context: RequestContext = Depends(gradebook_writer)):
    run = crud.create_compute_run(db, context, data)
    if data.execute:
        run = crud.execute_compute_run(db, context, run.id)
    return run


@router.get("/compute-runs/{run_id}", response_model=ComputeRunDetail)
def get_run(run_id: UUID, db: Session = Depends(get_db), context: RequestContext = Depends(get_request_context)):
    return crud.get_compute_run(db, context, run_id)


@router.post("/compute-runs/{run_id}/execute", response_model=ComputeRunDetail)
def execute_run(run_id: UUID, db: Session = Depends(get_db), context: RequestContext = Depends(gradebook_writer)):
    return crud.execute_compute_run(db, context, run_id)


@router.post("/compute-runs/{run_id}/recompute", response_model=ComputeRunDetail)
def recompute_run(
    run_id: UUID,
    as_of: Optional[datetime] = None,
    db: Session = Depends(get_db),
    context: RequestContext = Depends(gradebook_writer),
):
    return crud.recompute_compute_run(db, context, run_id, as_of)


@router.delete("/compute-runs/{run_id}", status_code=status.HTTP_204_NO_CONTENT)
def archive_run(run_id: UUID, db: Session = Depends(get_db), context: RequestContext = Depends(gradebook_writer)):
    crud.archive_compute_run(db, context, run_id)
