# crud/scheduling.py

import logging
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy.orm import Session, joinedload

from sis_app.config import settings
from sis_app.models.all_models import (
    MeetingStatus, Period, Room, Section, SectionMeeting, SectionTeacher, Teacher
)
from sis_app.schemas.auth import RequestContext
from sis_app.schemas.scheduling_schemas import (
    Conflict, ConflictCheckRequest, MeetingCandidate, PeriodCreate, RoomCreate, RoomUpdate,
    ScheduledMeeting, SectionMeetingCreate, SectionMeetingUpdate, SectionTeacherCreate
)
from sis_app.services.conflicts import check_conflicts
from sis_app.utils.system_utils import local_now

logger = logging.getLogger(__name__)


def get_fullname(staff: Teacher) -> str:
    return f"{staff.first_name} {staff.last_name}"


def room_label(room: Room) -> str:
    return f"{room.code} - {room.name}"


def _get_section(db: Session, context: RequestContext, section_id: UUID) -> Section:
    section = db.query(Section).filter(
        Section.id == section_id,
        Section.organization_id == context.organization_id,
        Section.archived_at.is_(None),
    ).first()
    if not section:
        raise HTTPException(status_code=404, detail="Section not found")
    return section


# Rooms
def list_rooms(db: Session, context: RequestContext, include_archived: bool = False) -> List[Room]:
    query = db.query(Room).filter(Room.organization_id == context.organization_id)
    if not include_archived:
        query = query.filter(Room.archived_at.is_(None))
    return query.order_by(Room.code).all()


def get_room(db: Session, context: RequestContext, room_id: UUID) -> Room:
    room = db.query(Room).filter(
        Room.id == room_id,
        Room.organization_id == context.organization_id,
        Room.archived_at.is_(None),
    ).first()
    if not room:
        raise HTTPException(status_code=404, detail="Room not found")
    return room


def create_room(db: Session, context: RequestContext, data: RoomCreate) -> Room:
    room = Room(organization_id=context.organization_id, **data.model_dump())
    db.add(room)
    db.commit()
    db.refresh(room)
    return room


def update_room(db: Session, context: RequestContext, room_id: UUID, data: RoomUpdate) -> Room:
    room = get_room(db, context, room_id)
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(room, field, value)
    db.commit()
    db.refresh(room)
    return room


def archive_room(db: Session, context: RequestContext, room_id: UUID):
    room = get_room(db, context, room_id)
    room.archived_at = local_now()
    db.commit()


# Periods
def list_periods(db: Session, context: RequestContext, school_year_id: Optional[UUID] = None) -> List[Period]:
    query = db.query(Period).filter(
        Period.organization_id == context.organization_id,
        Period.archived_at.is_(None),
    )
    if school_year_id:
        query = query.filter(Period.school_year_id == school_year_id)
    return query.order_by(Period.sort_order, Period.start_time).all()


def create_period(db: Session, context: RequestContext, data: PeriodCreate) -> Period:
    if data.start_time >= data.end_time:
        raise HTTPException(status_code=400, detail="Period start_time must be before end_time")
    period = Period(organization_id=context.organization_id, **data.model_dump())
    db.add(period)
    db.commit()
    db.refresh(period)
    return period


def archive_period(db: Session, context: RequestContext, period_id: UUID):
    period = db.query(Period).filter(
        Period.id == period_id,
        Period.organization_id == context.organization_id,
        Period.archived_at.is_(None),
    ).first()
    if not period:
        raise HTTPException(status_code=404, detail="Period not found")
    period.archived_at = local_now()
    db.commit()


# Section teachers
def list_section_teachers(db: Session, context: RequestContext, section_id: UUID) -> List[SectionTeacher]:
    return db.query(SectionTeacher).filter(
        SectionTeacher.organization_id == context.organization_id,
        SectionTeacher.section_id == section_id,
        SectionTeacher.archived_at.is_(None),
    ).all()


def assign_teacher(db: Session, context: RequestContext, data: SectionTeacherCreate) -> SectionTeacher:
    _get_section(db, context, data.section_id)
    teacher = db.query(Teacher).filter(
        Teacher.id == data.teacher_id,
        Teacher.organization_id == context.organization_id,
    ).first()
    if not teacher:
        raise HTTPException(status_code=404, detail="Teacher not found")

    existing = db.query(SectionTeacher).filter(
        SectionTeacher.section_id == data.section_id,
        SectionTeacher.teacher_id == data.teacher_id,
        SectionTeacher.archived_at.is_(None),
    ).first()
    if existing:
        raise HTTPException(status_code=400, detail="Teacher is already assigned to this section")

    assignment = SectionTeacher(organization_id=context.organization_id, **data.model_dump())
    db.add(assignment)
    db.commit()
    db.refresh(assignment)
    return assignment


def remove_section_teacher(db: Session, context: RequestContext, assignment_id: UUID):
    assignment = db.query(SectionTeacher).filter(
        SectionTeacher.id == assignment_id,
        SectionTeacher.organization_id == context.organization_id,
        SectionTeacher.archived_at.is_(None),
    ).first()
    if not assignment:
        raise HTTPException(status_code=404, detail="Teacher assignment not found")
    assignment.archived_at = local_now()
    db.commit()


# Conflict detection inputs
def _load_conflict_inputs(
    db: Session, context: RequestContext, school_year_id: UUID
) -> Tuple[List[ScheduledMeeting], Dict[UUID, List[UUID]], Dict[UUID, str]]:
    rows = db.query(SectionMeeting).options(
        joinedload(SectionMeeting.section),
        joinedload(SectionMeeting.room),
    ).filter(
        SectionMeeting.organization_id == context.organization_id,
        SectionMeeting.school_year_id == school_year_id,
        SectionMeeting.status == MeetingStatus.ACTIVE,
        SectionMeeting.archived_at.is_(None),
    ).all()

    meetings = [
        ScheduledMeeting(
            id=m.id,
            section_id=m.section_id,
            school_year_id=m.school_year_id,
            days_of_week=m.days_of_week or [],
            start_time=m.start_time,
            end_time=m.end_time,
            room_id=m.room_id,
            status=m.status,
            section_name=m.section.name if m.section else None,
            room_label=room_label(m.room) if m.room else None,
        )
        for m in rows
    ]

    assignments: Dict[UUID, List[UUID]] = {}
    labels: Dict[UUID, str] = {}
    teacher_rows = db.query(SectionTeacher).options(joinedload(SectionTeacher.teacher)).filter(
        SectionTeacher.organization_id == context.organization_id,
        SectionTeacher.archived_at.is_(None),
    ).all()
    for assignment in teacher_rows:
        assignments.setdefault(assignment.section_id, []).append(assignment.teacher_id)
        if assignment.teacher:
            labels[assignment.teacher_id] = get_fullname(assignment.teacher)

    return meetings, assignments, labels


def detect_conflicts(db: Session, context: RequestContext, candidate: MeetingCandidate) -> List[Conflict]:
    if candidate.school_year_id is None:
        return []
    meetings, assignments, labels = _load_conflict_inputs(db, context, candidate.school_year_id)
    return check_conflicts(candidate, meetings, assignments, labels)


def _enforce_conflict_policy(conflicts: List[Conflict]):
    if conflicts and settings.BLOCK_ON_SCHEDULE_CONFLICTS:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "message": f"Meeting conflicts with {len(conflicts)} existing assignment(s)",
                "conflicts": [c.model_dump(mode="json") for c in conflicts],
            },
        )


# Section meetings
def list_meetings(
    db: Session,
    context: RequestContext,
    section_id: Optional[UUID] = None,
    school_year_id: Optional[UUID] = None,
) -> List[SectionMeeting]:
    query = db.query(SectionMeeting).filter(
        SectionMeeting.organization_id == context.organization_id,
        SectionMeeting.archived_at.is_(None),
    )
    if section_id:
        query = query.filter(SectionMeeting.section_id == section_id)
    if school_year_id:
        query = query.filter(SectionMeeting.school_year_id == school_year_id)
    return query.order_by(SectionMeeting.start_time).all()


def get_meeting(db: Session, context: RequestContext, meeting_id: UUID) -> SectionMeeting:
    meeting = db.query(SectionMeeting).filter(
        SectionMeeting.id == meeting_id,
        SectionMeeting.organization_id == context.organization_id,
        SectionMeeting.archived_at.is_(None),
    ).first()
    if not meeting:
        raise HTTPException(status_code=404, detail="Meeting not found")
    return meeting


def create_meeting(db: Session, context: RequestContext, data: SectionMeetingCreate) -> Tuple[SectionMeeting, List[Conflict]]:
    _get_section(db, context, data.section_id)
    if data.room_id:
        get_room(db, context, data.room_id)

    conflicts = []
    if data.status == MeetingStatus.ACTIVE:
        conflicts = detect_conflicts(db, context, MeetingCandidate(**data.model_dump(exclude={"period_id", "status"})))
        _enforce_conflict_policy(conflicts)

    meeting = SectionMeeting(
        organization_id=context.organization_id,
        created_by=context.actor_id,
        updated_by=context.actor_id,
        **data.model_dump(),
    )
    db.add(meeting)
    db.commit()
    db.refresh(meeting)
    if conflicts:
        logger.warning(f"Meeting {meeting.id} saved with {len(conflicts)} conflict(s)")
    return meeting, conflicts


def update_meeting(
    db: Session, context: RequestContext, meeting_id: UUID, data: SectionMeetingUpdate
) -> Tuple[SectionMeeting, List[Conflict]]:
    meeting = get_meeting(db, context, meeting_id)
    changes = data.model_dump(exclude_unset=True)

    start_time = changes.get("start_time", meeting.start_time)
    end_time = changes.get("end_time", meeting.end_time)
    if start_time >= end_time:
        raise HTTPException(status_code=400, detail="start_time must be before end_time")
    if changes.get("room_id"):
        get_room(db, context, changes["room_id"])

    conflicts = []
    if changes.get("status", meeting.status) == MeetingStatus.ACTIVE:
        candidate = MeetingCandidate(
            id=meeting.id,
            section_id=meeting.section_id,
            school_year_id=meeting.school_year_id,
            days_of_week=changes.get("days_of_week", meeting.days_of_week) or [],
            start_time=start_time,
            end_time=end_time,
            room_id=changes.get("room_id", meeting.room_id),
        )
        conflicts = detect_conflicts(db, context, candidate)
        _enforce_conflict_policy(conflicts)

    for field, value in changes.items():
        setattr(meeting, field, value)
    meeting.updated_by = context.actor_id
    db.commit()
    db.refresh(meeting)
    return meeting, conflicts


def archive_meeting(db: Session, context: RequestContext, meeting_id: UUID):
    meeting = get_meeting(db, context, meeting_id)
    meeting.archived_at = local_now()
    meeting.updated_by = context.actor_id
    db.commit()


def check_meeting_conflicts(db: Session, context: RequestContext, request: ConflictCheckRequest) -> List[Conflict]:
    """Run the detector without writing; an existing meeting fills fields the request leaves out."""
    # an explicit null (e.g. room_id) clears the stored value; omitted fields keep it
    fields = request.model_dump(exclude={"meeting_id"}, exclude_unset=True)
    if fields.get("days_of_week") is None:
        fields.pop("days_of_week", None)
    if request.meeting_id:
        meeting = get_meeting(db, context, request.meeting_id)
        base = {
            "section_id": meeting.section_id,
            "school_year_id": meeting.school_year_id,
            "days_of_week": meeting.days_of_week or [],
            "start_time": meeting.start_time,
            "end_time": meeting.end_time,
            "room_id": meeting.room_id,
        }
        base.update(fields)
        fields = base
        fields["id"] = meeting.id
    return detect_conflicts(db, context, MeetingCandidate(**fields))
