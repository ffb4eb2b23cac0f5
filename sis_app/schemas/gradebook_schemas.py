# schemas/gradebook_schemas.py

from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from sis_app.models.all_models import RoundingMode, RunStatus, SchemeType, ScoreStatus, WeightPolicy


# Grade engine inputs
class ComponentSpec(BaseModel):
    id: UUID
    code: str
    label: str
    display_order: int = 0

class WeightProfileSpec(BaseModel):
    id: Optional[UUID] = None
    profile_key: str
    is_default: bool = False
    weights: Dict[UUID, float] = {}  # component id -> weight percent

class TransmutationRowSpec(BaseModel):
    initial_grade: float
    transmuted_grade: float

class TransmutationTableSpec(BaseModel):
    id: Optional[UUID] = None
    version: int = 1
    published: bool = False
    rows: List[TransmutationRowSpec] = []

class SchemeSpec(BaseModel):
    id: Optional[UUID] = None
    scheme_type: SchemeType = SchemeType.GENERIC
    version: int = 1
    rounding_mode: Optional[RoundingMode] = None
    weight_policy: WeightPolicy = WeightPolicy.STRICT
    weight_profiles: List[WeightProfileSpec] = []

class ItemScore(BaseModel):
    graded_item_id: Optional[UUID] = None
    component_id: UUID
    max_points: float
    points_earned: Optional[float] = None
    status: ScoreStatus = ScoreStatus.PRESENT

class StudentScores(BaseModel):
    student_id: UUID
    scores: List[ItemScore] = []


# Grade engine outputs
class StatusCounts(BaseModel):
    present: int = 0
    missing: int = 0
    absent: int = 0
    excused: int = 0

class ComponentBreakdown(BaseModel):
    component_id: UUID
    code: str
    label: str
    raw_total: float
    max_total: float
    percent: float
    weight_percent: float
    weighted_score: float
    counted: bool
    status_counts: StatusCounts

class GradeBreakdown(BaseModel):
    """Versioned audit record stored beside each computed grade."""
    breakdown_version: int = 1
    initial_grade_raw: float
    initial_grade_key: int
    transmutation_key: Optional[float] = None
    transmuted_grade: Optional[float] = None
    below_range: bool = False
    final_numeric_grade: float
    rounding_mode: RoundingMode
    weight_policy: WeightPolicy
    total_weight: float
    components: List[ComponentBreakdown]
    scheme_version: int
    weight_profile_id: Optional[UUID] = None
    transmutation_table_id: Optional[UUID] = None
    transmutation_version: Optional[int] = None
    computed_at: datetime

class ComputedGradeResult(BaseModel):
    student_id: UUID
    initial_grade: float
    transmuted_grade: Optional[float] = None
    final_numeric_grade: float
    breakdown: GradeBreakdown


# Schemes
class SchemeCreate(BaseModel):
    name: str
    scheme_type: SchemeType = SchemeType.GENERIC
    description: Optional[str] = None
    rounding_mode: Optional[RoundingMode] = None
    weight_policy: WeightPolicy = WeightPolicy.STRICT
    with_defaults: bool = False

class SchemeUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    rounding_mode: Optional[RoundingMode] = None
    weight_policy: Optional[WeightPolicy] = None

class SchemeResponse(BaseModel):
    id: UUID
    organization_id: UUID
    name: str
    scheme_type: SchemeType
    description: Optional[str] = None
    version: int
    parent_scheme_id: Optional[UUID] = None
    rounding_mode: Optional[RoundingMode] = None
    weight_policy: WeightPolicy
    published_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Components
class ComponentCreate(BaseModel):
    code: str
    label: str
    description: Optional[str] = None
    display_order: int = 0

class ComponentUpdate(BaseModel):
    code: Optional[str] = None
    label: Optional[str] = None
    description: Optional[str] = None
    display_order: Optional[int] = None

class ComponentResponse(ComponentCreate):
    id: UUID
    scheme_id: UUID

    class Config:
        from_attributes = True


# Weight profiles
class WeightProfileCreate(BaseModel):
    profile_key: str
    profile_label: str
    is_default: bool = False
    description: Optional[str] = None

class WeightProfileResponse(WeightProfileCreate):
    id: UUID
    scheme_id: UUID

    class Config:
        from_attributes = True

class ComponentWeightInput(BaseModel):
    component_id: UUID
    weight_percent: float = Field(ge=0, le=100)

class ComponentWeightsUpsert(BaseModel):
    weights: List[ComponentWeightInput]

class ComponentWeightResponse(BaseModel):
    id: UUID
    profile_id: UUID
    component_id: UUID
    weight_percent: float

    class Config:
        from_attributes = True

class WeightsUpsertResponse(BaseModel):
    weights: List[ComponentWeightResponse]
    total_weight: float


# Transmutation tables
class TransmutationTableCreate(BaseModel):
    description: Optional[str] = None
    use_standard_rows: bool = False

class TransmutationRowResponse(TransmutationRowSpec):
    id: UUID

    class Config:
        from_attributes = True

class TransmutationRowsUpsert(BaseModel):
    rows: List[TransmutationRowSpec]

    @field_validator('rows')
    @classmethod
    def reject_duplicate_grades(cls, v):
        grades = [row.initial_grade for row in v]
        if len(grades) != len(set(grades)):
            raise ValueError('Duplicate initial_grade values in transmutation rows')
        return v

class TransmutationTableResponse(BaseModel):
    id: UUID
    scheme_id: UUID
    version: int
    description: Optional[str] = None
    published_at: Optional[datetime] = None
    rows: List[TransmutationRowResponse] = []

    class Config:
        from_attributes = True


# Graded items and scores
class GradedItemCreate(BaseModel):
    section_id: UUID
    school_year_id: UUID
    term_period: str
    component_id: UUID
    title: str
    description: Optional[str] = None
    max_points: float = Field(gt=0)
    due_at: Optional[datetime] = None

class GradedItemResponse(GradedItemCreate):
    id: UUID

    class Config:
        from_attributes = True

class ScoreInput(BaseModel):
    student_id: UUID
    points_earned: Optional[float] = None
    status: ScoreStatus = ScoreStatus.PRESENT

class ScoresUpsert(BaseModel):
    scores: List[ScoreInput]

class GradedScoreResponse(BaseModel):
    id: UUID
    graded_item_id: UUID
    student_id: UUID
    points_earned: Optional[float] = None
    status: ScoreStatus
    entered_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Compute runs
class ComputeRunCreate(BaseModel):
    section_id: UUID
    school_year_id: UUID
    term_period: str
    scheme_id: UUID
    weight_profile_id: Optional[UUID] = None
    as_of: Optional[datetime] = None
    execute: bool = True

class ComputeRunResponse(BaseModel):
    id: UUID
    section_id: UUID
    school_year_id: UUID
    term_period: str
    scheme_id: UUID
    scheme_version: int
    weight_profile_id: Optional[UUID] = None
    transmutation_table_id: Optional[UUID] = None
    transmutation_version: Optional[int] = None
    classification_used: Optional[str] = None
    classification_source: Optional[str] = None
    as_of: datetime
    status: RunStatus
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class ComputedGradeResponse(BaseModel):
    id: UUID
    student_id: UUID
    initial_grade: Optional[float] = None
    transmuted_grade: Optional[float] = None
    final_numeric_grade: float
    breakdown: dict

    class Config:
        from_attributes = True

class ComputeRunDetail(ComputeRunResponse):
    grades: List[ComputedGradeResponse] = []
