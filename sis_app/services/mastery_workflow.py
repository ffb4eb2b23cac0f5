# services/mastery_workflow.py
"""Status transitions for mastery proposals.

A proposal is owned by the teacher who drafted it; only that teacher saves and
submits it, and only a reviewer who is not the owner decides on it.
"""
from enum import Enum
from typing import Optional
from uuid import UUID

from sis_app.exceptions import InvalidTransitionError
from sis_app.models.all_models import ProposalStatus
from sis_app.schemas.auth import RequestContext


class ProposalAction(str, Enum):
    SAVE_DRAFT = "save_draft"
    SUBMIT = "submit"
    APPROVE = "approve"
    REQUEST_CHANGES = "request_changes"
    OVERRIDE = "override"


# action -> (allowed current statuses, resulting status); None is a proposal not yet saved
TRANSITIONS = {
    ProposalAction.SAVE_DRAFT: ((None, ProposalStatus.DRAFT, ProposalStatus.CHANGES_REQUESTED), ProposalStatus.DRAFT),
    ProposalAction.SUBMIT: ((ProposalStatus.DRAFT, ProposalStatus.CHANGES_REQUESTED), ProposalStatus.SUBMITTED),
    ProposalAction.APPROVE: ((ProposalStatus.SUBMITTED,), ProposalStatus.APPROVED),
    ProposalAction.REQUEST_CHANGES: ((ProposalStatus.SUBMITTED,), ProposalStatus.CHANGES_REQUESTED),
    ProposalAction.OVERRIDE: ((ProposalStatus.SUBMITTED,), ProposalStatus.APPROVED),
}

OWNER_ACTIONS = (ProposalAction.SAVE_DRAFT, ProposalAction.SUBMIT)
REVIEW_ACTIONS = (ProposalAction.APPROVE, ProposalAction.REQUEST_CHANGES, ProposalAction.OVERRIDE)

EDITABLE_STATUSES = (ProposalStatus.DRAFT, ProposalStatus.CHANGES_REQUESTED)


def next_status(current: Optional[ProposalStatus], action: ProposalAction) -> ProposalStatus:
    allowed, target = TRANSITIONS[ProposalAction(action)]
    if current is not None:
        current = ProposalStatus(current)
    if current not in allowed:
        label = current.value if current is not None else "new"
        raise InvalidTransitionError(label, ProposalAction(action).value.replace("_", " "))
    return target


def can_act(context: RequestContext, owner_id: Optional[UUID], action: ProposalAction) -> bool:
    action = ProposalAction(action)
    if action in OWNER_ACTIONS:
        return owner_id is None or owner_id == context.actor_id
    return context.is_reviewer and owner_id != context.actor_id


def is_editable(status: Optional[ProposalStatus]) -> bool:
    return status is None or ProposalStatus(status) in EDITABLE_STATUSES
