import logging
import random
import uuid
from datetime import time

from faker import Faker

from sis_app.database import SessionLocal, engine
from sis_app.crud import gradebook
from sis_app.crud.scheduling import create_meeting
from sis_app.models.all_models import (
    Base, Room, Section, SectionStudent, SectionTeacher, Student, Teacher, TeacherRole, UserRole
)
from sis_app.schemas.auth import RequestContext
from sis_app.schemas.gradebook_schemas import ComputeRunCreate, GradedItemCreate, SchemeCreate, ScoreInput, ScoresUpsert
from sis_app.schemas.scheduling_schemas import SectionMeetingCreate
from sis_app.utils.auth import create_access_token

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

fake = Faker(['en_US'])

SECTION_NAMES = ["Grade 7 - Rizal", "Grade 7 - Bonifacio", "Grade 8 - Mabini"]
TERM = "Q1"


def seed_organization(session, context: RequestContext, school_year_id):
    teachers = []
    for _ in range(4):
        first_name, last_name = fake.first_name(), fake.last_name()
        teacher = Teacher(
            organization_id=context.organization_id,
            first_name=first_name,
            last_name=last_name,
            email=f"{first_name.lower()}.{last_name.lower()}@school.example",
        )
        session.add(teacher)
        teachers.append(teacher)

    rooms = [
        Room(organization_id=context.organization_id, code=f"R{100 + i}", name=f"Room {100 + i}", capacity=40)
        for i in range(1, 4)
    ]
    session.add_all(rooms)

    sections = []
    for index, name in enumerate(SECTION_NAMES):
        section = Section(
            organization_id=context.organization_id,
            school_year_id=school_year_id,
            name=name,
            code=f"S{index + 1}",
            primary_classification="default",
        )
        session.add(section)
        sections.append(section)
    session.flush()

    # the first teacher handles two sections so the demo schedule has a conflict
    for section, teacher in zip(sections, [teachers[0], teachers[0], teachers[1]]):
        session.add(SectionTeacher(
            organization_id=context.organization_id,
            section_id=section.id,
            teacher_id=teacher.id,
            role=TeacherRole.PRIMARY,
        ))

    students = []
    for number in range(1, 11):
        student = Student(
            organization_id=context.organization_id,
            student_number=f"2025-{number:04d}",
            first_name=fake.first_name(),
            last_name=fake.last_name(),
        )
        session.add(student)
        students.append(student)
    session.flush()
    for student in students:
        session.add(SectionStudent(
            organization_id=context.organization_id,
            section_id=sections[0].id,
            student_id=student.id,
        ))
    session.commit()
    return teachers, rooms, sections, students


def seed_schedule(session, context: RequestContext, school_year_id, rooms, sections):
    slots = [
        (sections[0], [1, 3, 5], time(8, 0), time(9, 0), rooms[0]),
        (sections[1], [3], time(8, 30), time(9, 30), rooms[1]),
        (sections[2], [2, 4], time(9, 0), time(10, 0), rooms[0]),
    ]
    for section, days, start, end, room in slots:
        _, conflicts = create_meeting(session, context, SectionMeetingCreate(
            section_id=section.id,
            school_year_id=school_year_id,
            days_of_week=days,
            start_time=start,
            end_time=end,
            room_id=room.id,
        ))
        for conflict in conflicts:
            print(f"   ⚠️  {section.name}: {conflict.kind.value} conflict with {conflict.section_name} ({conflict.time_window})")


def seed_gradebook(session, context: RequestContext, school_year_id, section, students):
    scheme = gradebook.create_scheme(session, context, SchemeCreate(
        name="DepEd K-12 Junior High", scheme_type="deped_k12", with_defaults=True,
    ))
    for table in gradebook.list_transmutation_tables(session, context, scheme.id):
        gradebook.publish_transmutation_table(session, context, table.id)
    scheme = gradebook.publish_scheme(session, context, scheme.id)

    for component in gradebook.list_components(session, context, scheme.id):
        for number in range(1, 3):
            item = gradebook.create_graded_item(session, context, GradedItemCreate(
                section_id=section.id,
                school_year_id=school_year_id,
                term_period=TERM,
                component_id=component.id,
                title=f"{component.label} {number}",
                max_points=50,
            ))
            gradebook.upsert_scores(session, context, item.id, ScoresUpsert(scores=[
                ScoreInput(
                    student_id=student.id,
                    points_earned=random.randint(30, 50),
                    status=random.choice(["present"] * 8 + ["missing", "excused"]),
                )
                for student in students
            ]))

    run = gradebook.create_compute_run(session, context, ComputeRunCreate(
        section_id=section.id,
        school_year_id=school_year_id,
        term_period=TERM,
        scheme_id=scheme.id,
    ))
    return gradebook.execute_compute_run(session, context, run.id)


def seed_database():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    context = RequestContext(organization_id=uuid.uuid4(), actor_id=uuid.uuid4(), role=UserRole.ADMIN)
    school_year_id = uuid.uuid4()

    try:
        print("🏫 Seeding demo organization...")
        teachers, rooms, sections, students = seed_organization(session, context, school_year_id)
        print(f"   ✅ {len(teachers)} teachers, {len(sections)} sections, {len(students)} students")

        print("📅 Seeding schedule...")
        seed_schedule(session, context, school_year_id, rooms, sections)

        print("📝 Seeding gradebook...")
        run = seed_gradebook(session, context, school_year_id, sections[0], students)
        print(f"   ✅ Compute run {run.id}: {run.status.value}")

        print("\n🔑 Admin token for local requests:")
        print(create_access_token(context.actor_id, context.organization_id, context.role))
    except Exception as e:
        session.rollback()
        logger.critical(f"Fatal error in seeding process: {str(e)}", exc_info=True)
        raise
    finally:
        session.close()


if __name__ == "__main__":
    seed_database()
