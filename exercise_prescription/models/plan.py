"""세션 플랜 모델"""

from typing import List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from exercise_prescription.config import settings
from exercise_prescription.models.instance import DenialReason, ExerciseInstance


class PlanBudget(BaseModel):
    """세션 예산"""

    model_config = ConfigDict(frozen=True)

    max_exercises: int = Field(default_factory=lambda: settings.max_exercises, ge=1)
    max_minutes: float = Field(default_factory=lambda: settings.max_session_minutes, gt=0)
    max_equipment_items: int = Field(
        default_factory=lambda: settings.max_equipment_items, ge=0,
        description="세션당 최대 장비 종류 (맨몸 제외)",
    )
    min_exercises: int = Field(default_factory=lambda: settings.min_exercises, ge=0)


class ExcludedExercise(BaseModel):
    """제외된 운동"""

    model_config = ConfigDict(frozen=True)

    template_id: str = Field(..., description="템플릿 ID")
    name: str = Field(default="", description="운동명")
    reason: str = Field(..., description="제외 사유")
    exclusion_type: Literal["safety", "variant", "budget", "context"] = Field(
        ..., description="제외 유형"
    )
    denial_reason: Optional[DenialReason] = None


class SessionPlan(BaseModel):
    """세션 플랜"""

    model_config = ConfigDict(frozen=True)

    patient_id: str
    exercises: Tuple[ExerciseInstance, ...] = ()
    excluded: Tuple[ExcludedExercise, ...] = ()
    requires_clinician_review: bool = False
    estimated_minutes: float = Field(default=0.0, ge=0)
    equipment: Tuple[str, ...] = Field(default=(), description="사용 장비 (맨몸 제외)")
    warnings: Tuple[str, ...] = ()

    @property
    def exercise_ids(self) -> List[str]:
        return [e.template_id for e in self.exercises]
