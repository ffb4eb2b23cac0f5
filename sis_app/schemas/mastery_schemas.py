from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from sis_app.models.all_models import ProposalStatus
from sis_app.services.mastery_workflow import ProposalAction


class MasteryLevelCreate(BaseModel):
    label: str
    sort_order: int = 0

class MasteryLevelResponse(MasteryLevelCreate):
    id: UUID

    class Config:
        from_attributes = True


class ProposalDraft(BaseModel):
    learner_id: UUID
    competency_id: UUID
    mastery_level_id: UUID
    rationale_text: Optional[str] = None

class ProposalUpdate(BaseModel):
    mastery_level_id: Optional[UUID] = None
    rationale_text: Optional[str] = None

class ReviewAction(BaseModel):
    action: ProposalAction
    notes: Optional[str] = None
    mastery_level_id: Optional[UUID] = None
    justification: Optional[str] = Field(default=None, max_length=2000)

    @model_validator(mode='after')
    def check_action_fields(self):
        if self.action == ProposalAction.REQUEST_CHANGES and not (self.notes or "").strip():
            raise ValueError('notes are required when requesting changes')
        if self.action == ProposalAction.OVERRIDE:
            if self.mastery_level_id is None:
                raise ValueError('mastery_level_id is required for an override')
            if not (self.justification or "").strip():
                raise ValueError('justification is required for an override')
        if self.action not in (ProposalAction.APPROVE, ProposalAction.REQUEST_CHANGES, ProposalAction.OVERRIDE):
            raise ValueError('action must be approve, request_changes or override')
        return self


class OverrideLogResponse(BaseModel):
    id: UUID
    previous_mastery_level_id: UUID
    new_mastery_level_id: UUID
    justification_text: str
    created_by: UUID
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class ProposalResponse(BaseModel):
    id: UUID
    learner_id: UUID
    competency_id: UUID
    mastery_level_id: UUID
    rationale_text: Optional[str] = None
    teacher_id: UUID
    status: ProposalStatus
    reviewer_notes: Optional[str] = None
    reviewed_by: Optional[UUID] = None
    reviewed_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class ProposalDetail(ProposalResponse):
    override_logs: List[OverrideLogResponse] = []
