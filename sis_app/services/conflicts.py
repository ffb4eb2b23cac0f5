# sis_app/services/conflicts.py
"""Teacher and room double-booking detection for weekly section meetings.

Pure function: callers load the meetings and teacher assignments, this module
only compares them. It never raises on incomplete input.
"""
import logging
from datetime import time
from typing import Dict, Iterable, List, Mapping, Optional, Sequence
from uuid import UUID

from sis_app.models.all_models import MeetingStatus
from sis_app.schemas.scheduling_schemas import Conflict, ConflictKind, MeetingCandidate, ScheduledMeeting
from sis_app.utils.system_utils import format_time_window

logger = logging.getLogger(__name__)


def windows_overlap(start_a: time, end_a: time, start_b: time, end_b: time) -> bool:
    """Half-open overlap: [a, b) and [c, d) overlap iff a < d and c < b."""
    return start_a < end_b and start_b < end_a


def _is_candidate_complete(candidate: MeetingCandidate) -> bool:
    return bool(
        candidate.section_id
        and candidate.school_year_id
        and candidate.start_time
        and candidate.end_time
    )


def find_overlapping(candidate: MeetingCandidate, day: int, existing_meetings: Sequence[ScheduledMeeting]) -> List[ScheduledMeeting]:
    overlapping = []
    for other in existing_meetings:
        if other.archived or other.status != MeetingStatus.ACTIVE:
            continue
        if candidate.id is not None and other.id == candidate.id:
            continue
        if other.school_year_id != candidate.school_year_id:
            continue
        if day not in other.days_of_week:
            continue
        if windows_overlap(candidate.start_time, candidate.end_time, other.start_time, other.end_time):
            overlapping.append(other)
    return overlapping


def check_conflicts(
    candidate: MeetingCandidate,
    existing_meetings: Iterable[ScheduledMeeting],
    teacher_assignments_by_section: Mapping[UUID, Sequence[UUID]],
    teacher_labels: Optional[Dict[UUID, str]] = None,
) -> List[Conflict]:
    """Return teacher and room conflicts for `candidate`, one entry per
    (kind, entity, conflicting meeting) however many weekdays are shared."""
    if not _is_candidate_complete(candidate) or not candidate.days_of_week:
        return []

    teacher_labels = teacher_labels or {}
    meetings = list(existing_meetings)
    candidate_teachers = list(teacher_assignments_by_section.get(candidate.section_id, []))
    time_window = format_time_window(candidate.start_time, candidate.end_time)

    conflicts: List[Conflict] = []
    seen = set()

    def _add(conflict: Conflict):
        key = (conflict.kind, conflict.entity_id, conflict.conflicting_meeting_id)
        if key in seen:
            return
        seen.add(key)
        conflicts.append(conflict)

    for day in candidate.days_of_week:
        overlapping = find_overlapping(candidate, day, meetings)

        for other in overlapping:
            other_teachers = set(teacher_assignments_by_section.get(other.section_id, []))
            for teacher_id in candidate_teachers:
                if teacher_id in other_teachers:
                    _add(Conflict(
                        kind=ConflictKind.TEACHER,
                        entity_id=teacher_id,
                        entity_label=teacher_labels.get(teacher_id, "Unknown"),
                        conflicting_meeting_id=other.id,
                        section_name=other.section_name or "Unknown",
                        time_window=time_window,
                    ))

        if candidate.room_id is None:
            continue
        for other in overlapping:
            if other.room_id == candidate.room_id:
                _add(Conflict(
                    kind=ConflictKind.ROOM,
                    entity_id=candidate.room_id,
                    entity_label=other.room_label or "Unknown",
                    conflicting_meeting_id=other.id,
                    section_name=other.section_name or "Unknown",
                    time_window=time_window,
                ))

    if conflicts:
        logger.info(f"Found {len(conflicts)} scheduling conflict(s) for section {candidate.section_id}")
    return conflicts
