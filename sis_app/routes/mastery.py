# routers/mastery.py

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from sis_app.crud import mastery as crud
from sis_app.database import get_db
from sis_app.schemas.auth import RequestContext
from sis_app.schemas.mastery_schemas import (
    MasteryLevelCreate, MasteryLevelResponse, ProposalDetail, ProposalDraft, ProposalResponse,
    ProposalUpdate, ReviewAction
)
from sis_app.utils.auth import STAFF_ROLES, get_request_context, require_roles

router = APIRouter(prefix="/api/mastery", tags=["Mastery"])


@router.get("/levels", response_model=List[MasteryLevelResponse])
def list_levels(db: Session = Depends(get_db), context: RequestContext = Depends(get_request_context)):
    return crud.list_levels(db, context)


@router.post("/levels", response_model=MasteryLevelResponse, status_code=status.HTTP_201_CREATED)
def create_level(
    data: MasteryLevelCreate,
    db: Session = Depends(get_db),
    context: RequestContext = Depends(require_roles(*STAFF_ROLES)),
):
    return crud.create_level(db, context, data)


@router.get("/proposals/review-queue", response_model=List[ProposalResponse])
def review_queue(db: Session = Depends(get_db), context: RequestContext = Depends(get_request_context)):
    return crud.review_queue(db, context)


@router.get("/proposals/drafts", response_model=List[ProposalResponse])
def my_drafts(db: Session = Depends(get_db), context: RequestContext = Depends(get_request_context)):
    return crud.my_drafts(db, context)


@router.get("/learners/{learner_id}/proposals", response_model=List[ProposalResponse])
def learner_proposals(learner_id: UUID, db: Session = Depends(get_db), context: RequestContext = Depends(get_request_context)):
    return crud.learner_proposals(db, context, learner_id)


@router.post("/proposals", response_model=ProposalResponse, status_code=status.HTTP_201_CREATED)
def create_draft(data: ProposalDraft, db: Session = Depends(get_db), context: RequestContext = Depends(get_request_context)):
    return crud.create_draft(db, context, data)


@router.get("/proposals/{proposal_id}", response_model=ProposalDetail)
def get_proposal(proposal_id: UUID, db: Session = Depends(get_db), context: RequestContext = Depends(get_request_context)):
    return crud.get_proposal(db, context, proposal_id)


@router.patch("/proposals/{proposal_id}", response_model=ProposalResponse)
def update_draft(
    proposal_id: UUID,
    data: ProposalUpdate,
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
):
    return crud.update_draft(db, context, proposal_id, data)


@router.post("/proposals/{proposal_id}/submit", response_model=ProposalResponse)
def submit_proposal(proposal_id: UUID, db: Session = Depends(get_db), context: RequestContext = Depends(get_request_context)):
    return crud.submit_proposal(db, context, proposal_id)


@router.post("/proposals/{proposal_id}/review", response_model=ProposalDetail)
def review_proposal(
    proposal_id: UUID,
    data: ReviewAction,
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
):
    return crud.review_proposal(db, context, proposal_id, data)


@router.delete("/proposals/{proposal_id}", status_code=status.HTTP_204_NO_CONTENT)
def archive_proposal(proposal_id: UUID, db: Session = Depends(get_db), context: RequestContext = Depends(get_request_context)):
    crud.archive_proposal(db, context, proposal_id)
