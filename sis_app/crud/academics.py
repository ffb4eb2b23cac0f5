# crud/academics.py

from typing import List, Optional
from uuid import UUID

from fastapi import HTTPException
from sqlalchemy.orm import Session

from sis_app.models.all_models import EnrollmentStatus, Section, SectionStudent, Student, Teacher
from sis_app.schemas.academics_schemas import SectionCreate, SectionUpdate, StudentCreate, TeacherCreate
from sis_app.schemas.auth import RequestContext
from sis_app.utils.system_utils import local_now


def list_sections(db: Session, context: RequestContext, school_year_id: Optional[UUID] = None) -> List[Section]:
    query = db.query(Section).filter(
        Section.organization_id == context.organization_id,
        Section.archived_at.is_(None),
    )
    if school_year_id:
        query = query.filter(Section.school_year_id == school_year_id)
    return query.order_by(Section.name).all()


def get_section(db: Session, context: RequestContext, section_id: UUID) -> Section:
    section = db.query(Section).filter(
        Section.id == section_id,
        Section.organization_id == context.organization_id,
        Section.archived_at.is_(None),
    ).first()
    if not section:
        raise HTTPException(status_code=404, detail="Section not found")
    return section


def create_section(db: Session, context: RequestContext, data: SectionCreate) -> Section:
    existing = db.query(Section).filter(
        Section.organization_id == context.organization_id,
        Section.school_year_id == data.school_year_id,
        Section.code == data.code,
        Section.archived_at.is_(None),
    ).first()
    if existing:
        raise HTTPException(status_code=400, detail="Section code already exists for this school year")

    section = Section(organization_id=context.organization_id, **data.model_dump())
    db.add(section)
    db.commit()
    db.refresh(section)
    return section


def update_section(db: Session, context: RequestContext, section_id: UUID, data: SectionUpdate) -> Section:
    section = get_section(db, context, section_id)
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(section, field, value)
    db.commit()
    db.refresh(section)
    return section


def archive_section(db: Session, context: RequestContext, section_id: UUID):
    section = get_section(db, context, section_id)
    section.archived_at = local_now()
    db.commit()


def list_teachers(db: Session, context: RequestContext) -> List[Teacher]:
    return db.query(Teacher).filter(
        Teacher.organization_id == context.organization_id,
        Teacher.is_active.is_(True),
    ).order_by(Teacher.last_name, Teacher.first_name).all()


def create_teacher(db: Session, context: RequestContext, data: TeacherCreate) -> Teacher:
    teacher = Teacher(organization_id=context.organization_id, **data.model_dump())
    db.add(teacher)
    db.commit()
    db.refresh(teacher)
    return teacher


def list_students(db: Session, context: RequestContext) -> List[Student]:
    return db.query(Student).filter(
        Student.organization_id == context.organization_id
    ).order_by(Student.last_name, Student.first_name).all()


def create_student(db: Session, context: RequestContext, data: StudentCreate) -> Student:
    existing = db.query(Student).filter(
        Student.organization_id == context.organization_id,
        Student.student_number == data.student_number,
    ).first()
    if existing:
        raise HTTPException(status_code=400, detail="Student number already exists")

    student = Student(organization_id=context.organization_id, **data.model_dump())
    db.add(student)
    db.commit()
    db.refresh(student)
    return student


def enroll_students(db: Session, context: RequestContext, section_id: UUID, student_ids: List[UUID]) -> List[SectionStudent]:
    section = get_section(db, context, section_id)
    found = db.query(Student).filter(
        Student.organization_id == context.organization_id,
        Student.id.in_(student_ids),
    ).all()
    if len(found) != len(set(student_ids)):
        raise HTTPException(status_code=404, detail="One or more students not found")

    existing = {
        e.student_id: e
        for e in db.query(SectionStudent).filter(SectionStudent.section_id == section.id).all()
    }
    enrolled = []
    for student_id in dict.fromkeys(student_ids):
        enrolment = existing.get(student_id)
        if enrolment is None:
            enrolment = SectionStudent(
                organization_id=context.organization_id,
                section_id=section.id,
                student_id=student_id,
            )
            db.add(enrolment)
        enrolment.status = EnrollmentStatus.ACTIVE
        enrolment.end_date = None
        enrolled.append(enrolment)
    db.commit()
    for enrolment in enrolled:
        db.refresh(enrolment)
    return enrolled


def drop_student(db: Session, context: RequestContext, section_id: UUID, student_id: UUID) -> SectionStudent:
    enrolment = db.query(SectionStudent).filter(
        SectionStudent.organization_id == context.organization_id,
        SectionStudent.section_id == section_id,
        SectionStudent.student_id == student_id,
    ).first()
    if not enrolment:
        raise HTTPException(status_code=404, detail="Enrolment not found")
    enrolment.status = EnrollmentStatus.DROPPED
    enrolment.end_date = local_now()
    db.commit()
    db.refresh(enrolment)
    return enrolment
