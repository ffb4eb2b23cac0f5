from sqlalchemy import Column, String, Integer, Float, Time, DateTime, Boolean, Text, ForeignKey, Enum as SQLEnum, JSON, UniqueConstraint, Uuid
from sqlalchemy.orm import declarative_base, relationship
from enum import Enum
import uuid

from sis_app.utils.system_utils import local_now

Base = declarative_base()

# Enum Classes
class UserRole(str, Enum):
    ADMIN = "admin"
    PRINCIPAL = "principal"
    REGISTRAR = "registrar"
    TEACHER = "teacher"
    MENTOR = "mentor"

class TeacherRole(str, Enum):
    PRIMARY = "primary"
    CO = "co"

class RoomStatus(str, Enum):
    ACTIVE = "active"
    MAINTENANCE = "maintenance"
    INACTIVE = "inactive"

class MeetingStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"

class EnrollmentStatus(str, Enum):
    ACTIVE = "active"
    DROPPED = "dropped"
    COMPLETED = "completed"

class SchemeType(str, Enum):
    GENERIC = "generic"
    DEPED_K12 = "deped_k12"
    CHED_HEI = "ched_hei"

class RoundingMode(str, Enum):
    FLOOR = "floor"
    ROUND = "round"
    CEIL = "ceil"

class WeightPolicy(str, Enum):
    STRICT = "strict"
    NORMALIZE = "normalize"

class ScoreStatus(str, Enum):
    PRESENT = "present"
    MISSING = "missing"
    ABSENT = "absent"
    EXCUSED = "excused"

class RunStatus(str, Enum):
    CREATED = "created"
    COMPLETED = "completed"
    FAILED = "failed"

class ProposalStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    CHANGES_REQUESTED = "changes_requested"


# Scheduling
class Section(Base):
    __tablename__ = "sections"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, nullable=False, index=True)
    school_year_id = Column(Uuid, nullable=False)
    name = Column(String(100), nullable=False)
    code = Column(String(20), nullable=False)
    # matched against weight profile keys when a compute run has no explicit profile
    primary_classification = Column(String(50))
    created_at = Column(DateTime(timezone=True), default=local_now)
    archived_at = Column(DateTime(timezone=True))

    teachers = relationship("SectionTeacher", back_populates="section")
    meetings = relationship("SectionMeeting", back_populates="section")
    students = relationship("SectionStudent", back_populates="section")

class Teacher(Base):
    __tablename__ = "teachers"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, nullable=False, index=True)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    email = Column(String(100))
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), default=local_now)

    sections = relationship("SectionTeacher", back_populates="teacher")

class SectionTeacher(Base):
    __tablename__ = "section_teachers"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, nullable=False, index=True)
    section_id = Column(Uuid, ForeignKey("sections.id"), nullable=False)
    teacher_id = Column(Uuid, ForeignKey("teachers.id"), nullable=False)
    role = Column(SQLEnum(TeacherRole), nullable=False, default=TeacherRole.PRIMARY)
    created_at = Column(DateTime(timezone=True), default=local_now)
    archived_at = Column(DateTime(timezone=True))

    section = relationship("Section", back_populates="teachers")
    teacher = relationship("Teacher", back_populates="sections")

class Room(Base):
    __tablename__ = "rooms"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, nullable=False, index=True)
    code = Column(String(20), nullable=False)
    name = Column(String(100), nullable=False)
    capacity = Column(Integer)
    status = Column(SQLEnum(RoomStatus), nullable=False, default=RoomStatus.ACTIVE)
    created_at = Column(DateTime(timezone=True), default=local_now)
    archived_at = Column(DateTime(timezone=True))

class Period(Base):
    __tablename__ = "periods"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, nullable=False, index=True)
    school_year_id = Column(Uuid, nullable=False)
    name = Column(String(50), nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    sort_order = Column(Integer, default=0)
    created_at = Column(DateTime(timezone=True), default=local_now)
    archived_at = Column(DateTime(timezone=True))

class SectionMeeting(Base):
    __tablename__ = "section_meetings"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, nullable=False, index=True)
    section_id = Column(Uuid, ForeignKey("sections.id"), nullable=False)
    school_year_id = Column(Uuid, nullable=False, index=True)
    days_of_week = Column(JSON, nullable=False)  # 1=Monday .. 7=Sunday
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    period_id = Column(Uuid, ForeignKey("periods.id"))
    room_id = Column(Uuid, ForeignKey("rooms.id"))
    status = Column(SQLEnum(MeetingStatus), nullable=False, default=MeetingStatus.ACTIVE)
    created_by = Column(Uuid)
    updated_by = Column(Uuid)
    created_at = Column(DateTime(timezone=True), default=local_now)
    updated_at = Column(DateTime(timezone=True), default=local_now, onupdate=local_now)
    archived_at = Column(DateTime(timezone=True))

    section = relationship("Section", back_populates="meetings")
    room = relationship("Room")
    period = relationship("Period")


# Enrolment
class Student(Base):
    __tablename__ = "students"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, nullable=False, index=True)
    student_number = Column(String(20), nullable=False)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    created_at = Column(DateTime(timezone=True), default=local_now)

    sections = relationship("SectionStudent", back_populates="student")

class SectionStudent(Base):
    __tablename__ = "section_students"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, nullable=False, index=True)
    section_id = Column(Uuid, ForeignKey("sections.id"), nullable=False)
    student_id = Column(Uuid, ForeignKey("students.id"), nullable=False)
    status = Column(SQLEnum(EnrollmentStatus), nullable=False, default=EnrollmentStatus.ACTIVE)
    end_date = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=local_now)

    __table_args__ = (
        UniqueConstraint('section_id', 'student_id', name='unique_section_student'),
    )
    section = relationship("Section", back_populates="students")
    student = relationship("Student", back_populates="sections")


# Gradebook
class GradingScheme(Base):
    __tablename__ = "grading_schemes"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, nullable=False, index=True)
    scheme_type = Column(SQLEnum(SchemeType), nullable=False, default=SchemeType.GENERIC)
    name = Column(String(100), nullable=False)
    description = Column(Text)
    version = Column(Integer, nullable=False, default=1)
    parent_scheme_id = Column(Uuid, ForeignKey("grading_schemes.id"))
    # NULL means the family default (floor for deped_k12, round otherwise)
    rounding_mode = Column(SQLEnum(RoundingMode))
    weight_policy = Column(SQLEnum(WeightPolicy), nullable=False, default=WeightPolicy.STRICT)
    published_at = Column(DateTime(timezone=True))
    created_by = Column(Uuid)
    created_at = Column(DateTime(timezone=True), default=local_now)
    updated_at = Column(DateTime(timezone=True), default=local_now, onupdate=local_now)
    archived_at = Column(DateTime(timezone=True))

    components = relationship("GradingComponent", back_populates="scheme", order_by="GradingComponent.display_order")
    weight_profiles = relationship("WeightProfile", back_populates="scheme")
    transmutation_tables = relationship("TransmutationTable", back_populates="scheme")

class GradingComponent(Base):
    __tablename__ = "grading_components"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, nullable=False, index=True)
    scheme_id = Column(Uuid, ForeignKey("grading_schemes.id"), nullable=False)
    code = Column(String(20), nullable=False)
    label = Column(String(100), nullable=False)
    description = Column(Text)
    display_order = Column(Integer, default=0)
    created_at = Column(DateTime(timezone=True), default=local_now)
    archived_at = Column(DateTime(timezone=True))

    scheme = relationship("GradingScheme", back_populates="components")

class WeightProfile(Base):
    __tablename__ = "weight_profiles"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, nullable=False, index=True)
    scheme_id = Column(Uuid, ForeignKey("grading_schemes.id"), nullable=False)
    profile_key = Column(String(50), nullable=False)
    profile_label = Column(String(100), nullable=False)
    is_default = Column(Boolean, default=False)
    description = Column(Text)
    created_at = Column(DateTime(timezone=True), default=local_now)
    archived_at = Column(DateTime(timezone=True))

    scheme = relationship("GradingScheme", back_populates="weight_profiles")
    weights = relationship("ComponentWeight", back_populates="profile")

class ComponentWeight(Base):
    __tablename__ = "component_weights"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, nullable=False, index=True)
    scheme_id = Column(Uuid, ForeignKey("grading_schemes.id"), nullable=False)
    profile_id = Column(Uuid, ForeignKey("weight_profiles.id"), nullable=False)
    component_id = Column(Uuid, ForeignKey("grading_components.id"), nullable=False)
    weight_percent = Column(Float, nullable=False)
    created_at = Column(DateTime(timezone=True), default=local_now)
    archived_at = Column(DateTime(timezone=True))

    profile = relationship("WeightProfile", back_populates="weights")

class TransmutationTable(Base):
    __tablename__ = "transmutation_tables"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, nullable=False, index=True)
    scheme_id = Column(Uuid, ForeignKey("grading_schemes.id"), nullable=False)
    version = Column(Integer, nullable=False, default=1)
    description = Column(Text)
    published_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=local_now)
    archived_at = Column(DateTime(timezone=True))

    scheme = relationship("GradingScheme", back_populates="transmutation_tables")
    rows = relationship("TransmutationRow", back_populates="table", order_by="TransmutationRow.initial_grade")

class TransmutationRow(Base):
    __tablename__ = "transmutation_rows"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, nullable=False, index=True)
    transmutation_table_id = Column(Uuid, ForeignKey("transmutation_tables.id"), nullable=False)
    initial_grade = Column(Float, nullable=False)
    transmuted_grade = Column(Float, nullable=False)
    archived_at = Column(DateTime(timezone=True))

    table = relationship("TransmutationTable", back_populates="rows")

class GradedItem(Base):
    __tablename__ = "graded_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, nullable=False, index=True)
    section_id = Column(Uuid, ForeignKey("sections.id"), nullable=False)
    school_year_id = Column(Uuid, nullable=False)
    term_period = Column(String(20), nullable=False)
    component_id = Column(Uuid, ForeignKey("grading_components.id"), nullable=False)
    title = Column(String(200), nullable=False)
    description = Column(Text)
    max_points = Column(Float, nullable=False)
    due_at = Column(DateTime(timezone=True))
    created_by = Column(Uuid)
    created_at = Column(DateTime(timezone=True), default=local_now)
    archived_at = Column(DateTime(timezone=True))

    component = relationship("GradingComponent")
    scores = relationship("GradedScore", back_populates="graded_item")

class GradedScore(Base):
    __tablename__ = "graded_scores"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, nullable=False, index=True)
    graded_item_id = Column(Uuid, ForeignKey("graded_items.id"), nullable=False)
    student_id = Column(Uuid, ForeignKey("students.id"), nullable=False)
    points_earned = Column(Float)
    status = Column(SQLEnum(ScoreStatus), nullable=False, default=ScoreStatus.PRESENT)
    entered_by = Column(Uuid)
    entered_at = Column(DateTime(timezone=True), default=local_now)
    archived_at = Column(DateTime(timezone=True))

    graded_item = relationship("GradedItem", back_populates="scores")

class ComputeRun(Base):
    __tablename__ = "compute_runs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, nullable=False, index=True)
    section_id = Column(Uuid, ForeignKey("sections.id"), nullable=False)
    school_year_id = Column(Uuid, nullable=False)
    term_period = Column(String(20), nullable=False)
    scheme_id = Column(Uuid, ForeignKey("grading_schemes.id"), nullable=False)
    scheme_version = Column(Integer, nullable=False)
    weight_profile_id = Column(Uuid, ForeignKey("weight_profiles.id"))
    transmutation_table_id = Column(Uuid, ForeignKey("transmutation_tables.id"))
    transmutation_version = Column(Integer)
    classification_used = Column(String(50))
    classification_source = Column(String(30))
    as_of = Column(DateTime(timezone=True), nullable=False)
    run_by = Column(Uuid)
    status = Column(SQLEnum(RunStatus), nullable=False, default=RunStatus.CREATED)
    error_message = Column(Text)
    created_at = Column(DateTime(timezone=True), default=local_now)
    updated_at = Column(DateTime(timezone=True), default=local_now, onupdate=local_now)
    archived_at = Column(DateTime(timezone=True))

    scheme = relationship("GradingScheme")
    grades = relationship("ComputedGrade", back_populates="compute_run", cascade="all, delete-orphan")

class ComputedGrade(Base):
    __tablename__ = "computed_grades"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, nullable=False, index=True)
    compute_run_id = Column(Uuid, ForeignKey("compute_runs.id"), nullable=False)
    student_id = Column(Uuid, ForeignKey("students.id"), nullable=False)
    section_id = Column(Uuid, ForeignKey("sections.id"), nullable=False)
    school_year_id = Column(Uuid, nullable=False)
    term_period = Column(String(20), nullable=False)
    initial_grade = Column(Float)
    transmuted_grade = Column(Float)
    final_numeric_grade = Column(Float, nullable=False)
    breakdown = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), default=local_now)

    compute_run = relationship("ComputeRun", back_populates="grades")
    student = relationship("Student")


# Mastery
class MasteryLevel(Base):
    __tablename__ = "mastery_levels"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, nullable=False, index=True)
    label = Column(String(50), nullable=False)
    sort_order = Column(Integer, default=0)
    archived_at = Column(DateTime(timezone=True))

class MasteryProposal(Base):
    __tablename__ = "mastery_proposals"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, nullable=False, index=True)
    learner_id = Column(Uuid, ForeignKey("students.id"), nullable=False)
    competency_id = Column(Uuid, nullable=False)
    mastery_level_id = Column(Uuid, ForeignKey("mastery_levels.id"), nullable=False)
    rationale_text = Column(Text)
    teacher_id = Column(Uuid, nullable=False)
    status = Column(SQLEnum(ProposalStatus), nullable=False, default=ProposalStatus.DRAFT)
    reviewer_notes = Column(Text)
    reviewed_by = Column(Uuid)
    reviewed_at = Column(DateTime(timezone=True))
    submitted_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=local_now)
    updated_at = Column(DateTime(timezone=True), default=local_now, onupdate=local_now)
    # soft delete only; workflow state lives in status
    archived_at = Column(DateTime(timezone=True))

    learner = relationship("Student")
    mastery_level = relationship("MasteryLevel")
    override_logs = relationship("MasteryOverrideLog", back_populates="proposal")

class MasteryOverrideLog(Base):
    __tablename__ = "mastery_override_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, nullable=False, index=True)
    proposal_id = Column(Uuid, ForeignKey("mastery_proposals.id"), nullable=False)
    previous_mastery_level_id = Column(Uuid, nullable=False)
    new_mastery_level_id = Column(Uuid, nullable=False)
    justification_text = Column(Text, nullable=False)
    created_by = Column(Uuid, nullable=False)
    created_at = Column(DateTime(timezone=True), default=local_now)

    proposal = relationship("MasteryProposal", back_populates="override_logs")
