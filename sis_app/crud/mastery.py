# crud/mastery.py

import logging
from typing import List
from uuid import UUID

from fastapi import HTTPException
from sqlalchemy.orm import Session

from sis_app.exceptions import InvalidTransitionError
from sis_app.models.all_models import MasteryLevel, MasteryOverrideLog, MasteryProposal, ProposalStatus, Student
from sis_app.schemas.auth import RequestContext
from sis_app.schemas.mastery_schemas import MasteryLevelCreate, ProposalDraft, ProposalUpdate, ReviewAction
from sis_app.services.mastery_workflow import ProposalAction, can_act, is_editable, next_status
from sis_app.utils.system_utils import local_now

logger = logging.getLogger(__name__)


def _forbidden():
    raise HTTPException(status_code=403, detail="You do not have permission to perform this action")


# Levels
def list_levels(db: Session, context: RequestContext) -> List[MasteryLevel]:
    return db.query(MasteryLevel).filter(
        MasteryLevel.organization_id == context.organization_id,
        MasteryLevel.archived_at.is_(None),
    ).order_by(MasteryLevel.sort_order).all()


def create_level(db: Session, context: RequestContext, data: MasteryLevelCreate) -> MasteryLevel:
    level = MasteryLevel(organization_id=context.organization_id, **data.model_dump())
    db.add(level)
    db.commit()
    db.refresh(level)
    return level


def _get_level(db: Session, context: RequestContext, level_id: UUID) -> MasteryLevel:
    level = db.query(MasteryLevel).filter(
        MasteryLevel.id == level_id,
        MasteryLevel.organization_id == context.organization_id,
        MasteryLevel.archived_at.is_(None),
    ).first()
    if not level:
        raise HTTPException(status_code=404, detail="Mastery level not found")
    return level


# Proposals
def get_proposal(db: Session, context: RequestContext, proposal_id: UUID) -> MasteryProposal:
    proposal = db.query(MasteryProposal).filter(
        MasteryProposal.id == proposal_id,
        MasteryProposal.organization_id == context.organization_id,
        MasteryProposal.archived_at.is_(None),
    ).first()
    if not proposal:
        raise HTTPException(status_code=404, detail="Proposal not found")
    return proposal


def create_draft(db: Session, context: RequestContext, data: ProposalDraft) -> MasteryProposal:
    if not can_act(context, None, ProposalAction.SAVE_DRAFT):
        _forbidden()
    learner = db.query(Student).filter(
        Student.id == data.learner_id,
        Student.organization_id == context.organization_id,
    ).first()
    if not learner:
        raise HTTPException(status_code=404, detail="Learner not found")
    _get_level(db, context, data.mastery_level_id)

    proposal = MasteryProposal(
        organization_id=context.organization_id,
        teacher_id=context.actor_id,
        status=next_status(None, ProposalAction.SAVE_DRAFT),
        **data.model_dump(),
    )
    db.add(proposal)
    db.commit()
    db.refresh(proposal)
    return proposal


def update_draft(db: Session, context: RequestContext, proposal_id: UUID, data: ProposalUpdate) -> MasteryProposal:
    proposal = get_proposal(db, context, proposal_id)
    if not can_act(context, proposal.teacher_id, ProposalAction.SAVE_DRAFT):
        _forbidden()
    proposal.status = next_status(proposal.status, ProposalAction.SAVE_DRAFT)

    changes = data.model_dump(exclude_unset=True)
    if changes.get("mastery_level_id"):
        _get_level(db, context, changes["mastery_level_id"])
    for field, value in changes.items():
        setattr(proposal, field, value)
    db.commit()
    db.refresh(proposal)
    return proposal


def submit_proposal(db: Session, context: RequestContext, proposal_id: UUID) -> MasteryProposal:
    proposal = get_proposal(db, context, proposal_id)
    if not can_act(context, proposal.teacher_id, ProposalAction.SUBMIT):
        _forbidden()
    proposal.status = next_status(proposal.status, ProposalAction.SUBMIT)
    proposal.submitted_at = local_now()
    db.commit()
    db.refresh(proposal)
    return proposal


def review_proposal(db: Session, context: RequestContext, proposal_id: UUID, data: ReviewAction) -> MasteryProposal:
    """Approve, request changes on, or override a submitted proposal."""
    proposal = get_proposal(db, context, proposal_id)
    if not can_act(context, proposal.teacher_id, data.action):
        _forbidden()
    target = next_status(proposal.status, data.action)

    if data.action == ProposalAction.OVERRIDE:
        _get_level(db, context, data.mastery_level_id)
        db.add(MasteryOverrideLog(
            organization_id=context.organization_id,
            proposal_id=proposal.id,
            previous_mastery_level_id=proposal.mastery_level_id,
            new_mastery_level_id=data.mastery_level_id,
            justification_text=data.justification.strip(),
            created_by=context.actor_id,
        ))
        proposal.mastery_level_id = data.mastery_level_id
        logger.info(f"Proposal {proposal.id} overridden by {context.actor_id}")

    proposal.status = target
    proposal.reviewer_notes = data.notes if data.action == ProposalAction.REQUEST_CHANGES else proposal.reviewer_notes
    proposal.reviewed_by = context.actor_id
    proposal.reviewed_at = local_now()
    db.commit()
    db.refresh(proposal)
    return proposal


def archive_proposal(db: Session, context: RequestContext, proposal_id: UUID):
    """Soft delete; the workflow status is left as it was."""
    proposal = get_proposal(db, context, proposal_id)
    if proposal.teacher_id != context.actor_id and not context.is_reviewer:
        _forbidden()
    if not is_editable(proposal.status) and not context.is_reviewer:
        raise InvalidTransitionError(proposal.status.value, "archive")
    proposal.archived_at = local_now()
    db.commit()


def review_queue(db: Session, context: RequestContext) -> List[MasteryProposal]:
    if not context.is_reviewer:
        _forbidden()
    return db.query(MasteryProposal).filter(
        MasteryProposal.organization_id == context.organization_id,
        MasteryProposal.status == ProposalStatus.SUBMITTED,
        MasteryProposal.archived_at.is_(None),
    ).order_by(MasteryProposal.submitted_at).all()


def my_drafts(db: Session, context: RequestContext) -> List[MasteryProposal]:
    return db.query(MasteryProposal).filter(
        MasteryProposal.organization_id == context.organization_id,
        MasteryProposal.teacher_id == context.actor_id,
        MasteryProposal.status.in_([ProposalStatus.DRAFT, ProposalStatus.CHANGES_REQUESTED]),
        MasteryProposal.archived_at.is_(None),
    ).order_by(MasteryProposal.updated_at.desc()).all()


def learner_proposals(db: Session, context: RequestContext, learner_id: UUID) -> List[MasteryProposal]:
    return db.query(MasteryProposal).filter(
        MasteryProposal.organization_id == context.organization_id,
        MasteryProposal.learner_id == learner_id,
        MasteryProposal.archived_at.is_(None),
    ).order_by(MasteryProposal.created_at.desc()).all()
