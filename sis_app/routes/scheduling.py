# routers/scheduling.py

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from sis_app.crud import scheduling as crud
from sis_app.database import get_db
from sis_app.schemas.auth import RequestContext
from sis_app.schemas.scheduling_schemas import (
    ConflictCheckRequest, ConflictCheckResponse, MeetingWriteResponse, PeriodCreate, PeriodResponse,
    RoomCreate, RoomResponse, RoomUpdate, SectionMeetingCreate, SectionMeetingResponse,
    SectionMeetingUpdate, SectionTeacherCreate, SectionTeacherResponse
)
from sis_app.utils.auth import STAFF_ROLES, get_request_context, require_roles

router = APIRouter(prefix="/api/scheduling", tags=["Scheduling"])

staff_only = require_roles(*STAFF_ROLES)


# Rooms
@router.get("/rooms", response_model=List[RoomResponse])
def list_rooms(
    include_archived: bool = False,
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
):
    return crud.list_rooms(db, context, include_archived)


@router.post("/rooms", response_model=RoomResponse, status_code=status.HTTP_201_CREATED)
def create_room(data: RoomCreate, db: Session = Depends(get_db), context: RequestContext = Depends(staff_only)):
    return crud.create_room(db, context, data)


@router.patch("/rooms/{room_id}", response_model=RoomResponse)
def update_room(room_id: UUID, data: RoomUpdate, db: Session = Depends(get_db), context: RequestContext = Depends(staff_only)):
    return crud.update_room(db, context, room_id, data)


@router.delete("/rooms/{room_id}", status_code=status.HTTP_204_NO_CONTENT)
def archive_room(room_id: UUID, db: Session = Depends(get_db), context: RequestContext = Depends(staff_only)):
    crud.archive_room(db, context, room_id)


# Periods
@router.get("/periods", response_model=List[PeriodResponse])
def list_periods(
    school_year_id: Optional[UUID] = None,
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
):
    return crud.list_periods(db, context, school_year_id)


@router.post("/periods", response_model=PeriodResponse, status_code=status.HTTP_201_CREATED)
def create_period(data: PeriodCreate, db: Session = Depends(get_db), context: RequestContext = Depends(staff_only)):
    return crud.create_period(db, context, data)


@router.delete("/periods/{period_id}", status_code=status.HTTP_204_NO_CONTENT)
def archive_period(period_id: UUID, db: Session = Depends(get_db), context: RequestContext = Depends(staff_only)):
    crud.archive_period(db, context, period_id)


# Section teachers
@router.get("/sections/{section_id}/teachers", response_model=List[SectionTeacherResponse])
def list_section_teachers(section_id: UUID, db: Session = Depends(get_db), context: RequestContext = Depends(get_request_context)):
    return crud.list_section_teachers(db, context, section_id)


@router.post("/section-teachers", response_model=SectionTeacherResponse, status_code=status.HTTP_201_CREATED)
def assign_teacher(data: SectionTeacherCreate, db: Session = Depends(get_db), context: RequestContext = Depends(staff_only)):
    return crud.assign_teacher(db, context, data)


@router.delete("/section-teachers/{assignment_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_section_teacher(assignment_id: UUID, db: Session = Depends(get_db), context: RequestContext = Depends(staff_only)):
    crud.remove_section_teacher(db, context, assignment_id)


# Meetings
@router.get("/meetings", response_model=List[SectionMeetingResponse])
def list_meetings(
    section_id: Optional[UUID] = None,
    school_year_id: Optional[UUID] = None,
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
):
    return crud.list_meetings(db, context, section_id, school_year_id)


@router.post("/meetings/check-conflicts", response_model=ConflictCheckResponse)
def check_conflicts(data: ConflictCheckRequest, db: Session = Depends(get_db), context: RequestContext = Depends(get_request_context)):
    """Speculative check; nothing is written."""
    conflicts = crud.check_meeting_conflicts(db, context, data)
    return {"conflicts": conflicts, "has_conflicts": bool(conflicts)}


@router.post("/meetings", response_model=MeetingWriteResponse, status_code=status.HTTP_201_CREATED)
def create_meeting(data: SectionMeetingCreate, db: Session = Depends(get_db), context: RequestContext = Depends(staff_only)):
    meeting, conflicts = crud.create_meeting(db, context, data)
    return {"meeting": meeting, "conflicts": conflicts}


@router.get("/meetings/{meeting_id}", response_model=SectionMeetingResponse)
def get_meeting(meeting_id: UUID, db: Session = Depends(get_db), context: RequestContext = Depends(get_request_context)):
    return crud.get_meeting(db, context, meeting_id)


@router.patch("/meetings/{meeting_id}", response_model=MeetingWriteResponse)
def update_meeting(
    meeting_id: UUID,
    data: SectionMeetingUpdate,
    db: Session = Depends(get_db),
    context: RequestContext = Depends(staff_only),
):
    meeting, conflicts = crud.update_meeting(db, context, meeting_id, data)
    return {"meeting": meeting, "conflicts": conflicts}


@router.delete("/meetings/{meeting_id}", status_code=status.HTTP_204_NO_CONTENT)
def archive_meeting(meeting_id: UUID, db: Session = Depends(get_db), context: RequestContext = Depends(staff_only)):
    crud.archive_meeting(db, context, meeting_id)
