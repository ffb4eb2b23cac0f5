# routers/academics.py

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from sis_app.crud import academics as crud
from sis_app.database import get_db
from sis_app.schemas.academics_schemas import (
    EnrollmentCreate, EnrollmentResponse, SectionCreate, SectionResponse, SectionUpdate,
    StudentCreate, StudentResponse, TeacherCreate, TeacherResponse
)
from sis_app.schemas.auth import RequestContext
from sis_app.utils.auth import STAFF_ROLES, get_request_context, require_roles

router = APIRouter(prefix="/api/academics", tags=["Academics"])

staff_only = require_roles(*STAFF_ROLES)


@router.get("/sections", response_model=List[SectionResponse])
def list_sections(
    school_year_id: Optional[UUID] = None,
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
):
    return crud.list_sections(db, context, school_year_id)


@router.post("/sections", response_model=SectionResponse, status_code=status.HTTP_201_CREATED)
def create_section(data: SectionCreate, db: Session = Depends(get_db), context: RequestContext = Depends(staff_only)):
    return crud.create_section(db, context, data)


@router.get("/sections/{section_id}", response_model=SectionResponse)
def get_section(section_id: UUID, db: Session = Depends(get_db), context: RequestContext = Depends(get_request_context)):
    return crud.get_section(db, context, section_id)


@router.patch("/sections/{section_id}", response_model=SectionResponse)
def update_section(section_id: UUID, data: SectionUpdate, db: Session = Depends(get_db), context: RequestContext = Depends(staff_only)):
    return crud.update_section(db, context, section_id, data)


@router.delete("/sections/{section_id}", status_code=status.HTTP_204_NO_CONTENT)
def archive_section(section_id: UUID, db: Session = Depends(get_db), context: RequestContext = Depends(staff_only)):
    crud.archive_section(db, context, section_id)


@router.post("/sections/{section_id}/students", response_model=List[EnrollmentResponse])
def enroll_students(
    section_id: UUID,
    data: EnrollmentCreate,
    db: Session = Depends(get_db),
    context: RequestContext = Depends(staff_only),
):
    return crud.enroll_students(db, context, section_id, data.student_ids)


@router.delete("/sections/{section_id}/students/{student_id}", response_model=EnrollmentResponse)
def drop_student(section_id: UUID, student_id: UUID, db: Session = Depends(get_db), context: RequestContext = Depends(staff_only)):
    return crud.drop_student(db, context, section_id, student_id)


@router.get("/teachers", response_model=List[TeacherResponse])
def list_teachers(db: Session = Depends(get_db), context: RequestContext = Depends(get_request_context)):
    return crud.list_teachers(db, context)


@router.post("/teachers", response_model=TeacherResponse, status_code=status.HTTP_201_CREATED)
def create_teacher(data: TeacherCreate, db: Session = Depends(get_db), context: RequestContext = Depends(staff_only)):
    return crud.create_teacher(db, context, data)


@router.get("/students", response_model=List[StudentResponse])
def list_students(db: Session = Depends(get_db), context: RequestContext = Depends(get_request_context)):
    return crud.list_students(db, context)


@router.post("/students", response_model=StudentResponse, status_code=status.HTTP_201_CREATED)
def create_student(data: StudentCreate, db: Session = Depends(get_db), context: RequestContext = Depends(staff_only)):
    return crud.create_student(db, context, data)
