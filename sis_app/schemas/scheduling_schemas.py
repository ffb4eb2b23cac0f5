from datetime import datetime, time
from enum import Enum
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, field_validator, model_validator

from sis_app.models.all_models import MeetingStatus, RoomStatus, TeacherRole


def _validate_days(v):
    if v is None:
        return v
    for day in v:
        if day < 1 or day > 7:
            raise ValueError('Days of week must be between 1 (Monday) and 7 (Sunday)')
    return sorted(set(v))


# Conflict detector inputs/outputs
class MeetingCandidate(BaseModel):
    """A proposed weekly slot. Incomplete candidates simply produce no conflicts."""
    id: Optional[UUID] = None
    section_id: Optional[UUID] = None
    school_year_id: Optional[UUID] = None
    days_of_week: List[int] = []
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    room_id: Optional[UUID] = None

class ScheduledMeeting(BaseModel):
    id: UUID
    section_id: UUID
    school_year_id: UUID
    days_of_week: List[int]
    start_time: time
    end_time: time
    room_id: Optional[UUID] = None
    status: MeetingStatus = MeetingStatus.ACTIVE
    archived: bool = False
    section_name: Optional[str] = None
    room_label: Optional[str] = None

class ConflictKind(str, Enum):
    TEACHER = "teacher"
    ROOM = "room"

class Conflict(BaseModel):
    kind: ConflictKind
    entity_id: UUID
    entity_label: str
    conflicting_meeting_id: UUID
    section_name: str
    time_window: str


# Rooms
class RoomCreate(BaseModel):
    code: str
    name: str
    capacity: Optional[int] = None
    status: RoomStatus = RoomStatus.ACTIVE

class RoomUpdate(BaseModel):
    code: Optional[str] = None
    name: Optional[str] = None
    capacity: Optional[int] = None
    status: Optional[RoomStatus] = None

class RoomResponse(RoomCreate):
    id: UUID
    organization_id: UUID

    class Config:
        from_attributes = True


# Periods
class PeriodCreate(BaseModel):
    school_year_id: UUID
    name: str
    start_time: time
    end_time: time
    sort_order: int = 0

class PeriodResponse(PeriodCreate):
    id: UUID

    class Config:
        from_attributes = True


# Section teachers
class SectionTeacherCreate(BaseModel):
    section_id: UUID
    teacher_id: UUID
    role: TeacherRole = TeacherRole.PRIMARY

class SectionTeacherResponse(SectionTeacherCreate):
    id: UUID

    class Config:
        from_attributes = True


# Section meetings
class SectionMeetingCreate(BaseModel):
    section_id: UUID
    school_year_id: UUID
    days_of_week: List[int]
    start_time: time
    end_time: time
    period_id: Optional[UUID] = None
    room_id: Optional[UUID] = None
    status: MeetingStatus = MeetingStatus.ACTIVE

    @field_validator('days_of_week')
    @classmethod
    def validate_days(cls, v):
        return _validate_days(v)

    @model_validator(mode='after')
    def validate_window(self):
        if self.start_time >= self.end_time:
            raise ValueError('start_time must be before end_time')
        return self

class SectionMeetingUpdate(BaseModel):
    days_of_week: Optional[List[int]] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    period_id: Optional[UUID] = None
    room_id: Optional[UUID] = None
    status: Optional[MeetingStatus] = None

    @field_validator('days_of_week')
    @classmethod
    def validate_days(cls, v):
        return _validate_days(v)

class SectionMeetingResponse(BaseModel):
    id: UUID
    section_id: UUID
    school_year_id: UUID
    days_of_week: List[int]
    start_time: time
    end_time: time
    period_id: Optional[UUID] = None
    room_id: Optional[UUID] = None
    status: MeetingStatus
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class MeetingWriteResponse(BaseModel):
    meeting: SectionMeetingResponse
    conflicts: List[Conflict] = []

class ConflictCheckRequest(BaseModel):
    """Payload for a speculative check; `meeting_id` marks an update of an existing meeting."""
    meeting_id: Optional[UUID] = None
    section_id: Optional[UUID] = None
    school_year_id: Optional[UUID] = None
    days_of_week: Optional[List[int]] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    room_id: Optional[UUID] = None

class ConflictCheckResponse(BaseModel):
    conflicts: List[Conflict]
    has_conflicts: bool
