from typing import List, Optional
from pydantic import BaseModel, field_validator
from datetime import datetime
from uuid import UUID

from sis_app.models.all_models import EnrollmentStatus


class SectionBase(BaseModel):
    school_year_id: UUID
    name: str
    code: str
    primary_classification: Optional[str] = None

    @field_validator('code')
    def validate_code(cls, v):
        if not v.strip():
            raise ValueError('Section code cannot be blank')
        return v.strip().upper()

class SectionCreate(SectionBase):
    pass

class SectionUpdate(BaseModel):
    name: Optional[str] = None
    code: Optional[str] = None
    primary_classification: Optional[str] = None

class SectionResponse(SectionBase):
    id: UUID
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TeacherCreate(BaseModel):
    first_name: str
    last_name: str
    email: Optional[str] = None

class TeacherResponse(TeacherCreate):
    id: UUID
    is_active: bool

    class Config:
        from_attributes = True


class StudentCreate(BaseModel):
    student_number: str
    first_name: str
    last_name: str

class StudentResponse(StudentCreate):
    id: UUID

    class Config:
        from_attributes = True


class EnrollmentCreate(BaseModel):
    student_ids: List[UUID]

class EnrollmentResponse(BaseModel):
    id: UUID
    section_id: UUID
    student_id: UUID
    status: EnrollmentStatus

    class Config:
        from_attributes = True
