"""처방 결과 모델

ExerciseInstance는 템플릿 + 컨텍스트로부터 결정되는 불변 결과다.
거부된 인스턴스는 변형/파라미터 없이 판정만 가진다.
"""

from enum import Enum
from typing import List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from shared.models import Difficulty, Equipment, Laterality, LoadLevel, Position


class DenialReason(str, Enum):
    """거부 사유 (고정 열거형)"""

    UNRESOLVABLE_VARIANT = "UnresolvableVariant"
    INVALID_CONTEXT = "InvalidContext"
    SURGERY_MISMATCH = "SurgeryMismatch"
    PHASE_NOT_ALLOWED = "PhaseNotAllowed"
    PHASE_UNKNOWN = "PhaseUnknown"
    PAIN_CEILING_EXCEEDED = "PainCeilingExceeded"
    RED_FLAG_TRIGGERED = "RedFlagTriggered"
    CONTRAINDICATED = "Contraindicated"


ScalingTier = Literal["reduced", "base", "advanced"]


class ResolvedVariant(BaseModel):
    """구체 변형 (자세 × 장비 × 편측성 × 난이도)"""

    model_config = ConfigDict(frozen=True)

    position: Position
    equipment: Equipment
    laterality: Laterality
    difficulty: Difficulty


class VariantResolution(BaseModel):
    """변형 해석 결과 (선호 순서, 비어 있을 수 있음)"""

    model_config = ConfigDict(frozen=True)

    variants: Tuple[ResolvedVariant, ...] = ()
    reason: Optional[DenialReason] = Field(
        default=None, description="해석 실패 사유 (UnresolvableVariant / InvalidContext)"
    )
    detail: str = ""

    @property
    def resolved(self) -> bool:
        return bool(self.variants)

    @property
    def best(self) -> Optional[ResolvedVariant]:
        return self.variants[0] if self.variants else None


class PrescribedParameters(BaseModel):
    """구체 처방 파라미터"""

    model_config = ConfigDict(frozen=True)

    reps: int = Field(..., ge=1)
    sets: int = Field(..., ge=1)
    hold_seconds: int = Field(default=0, ge=0)
    rest_seconds: int = Field(default=0, ge=0)
    tier: ScalingTier = "base"


class SafetyVerdict(BaseModel):
    """안전 게이트 판정"""

    model_config = ConfigDict(frozen=True)

    admitted: bool
    reason: Optional[DenialReason] = None
    detail: Optional[str] = Field(default=None, description="통증 축 또는 매칭된 태그")
    message: str = ""
    requires_clinician_review: bool = False

    # 허용 시
    warnings: Tuple[str, ...] = Field(default=(), description="해당 주의사항 태그")
    phase: Optional[int] = Field(default=None, description="허용한 수술 후 단계")
    modifications: Tuple[str, ...] = Field(default=(), description="단계 수정사항 태그")
    max_load: Optional[LoadLevel] = Field(default=None, description="단계 최대 외부 부하")
    max_rom: Optional[float] = Field(default=None, description="단계 최대 ROM (정상 대비 %)")

    @classmethod
    def admit(
        cls,
        warnings: Tuple[str, ...] = (),
        phase: Optional[int] = None,
        modifications: Tuple[str, ...] = (),
        max_load: Optional[str] = None,
        max_rom: Optional[float] = None,
    ) -> "SafetyVerdict":
        return cls(
            admitted=True,
            warnings=warnings,
            phase=phase,
            modifications=modifications,
            max_load=max_load,
            max_rom=max_rom,
        )

    @classmethod
    def deny(
        cls,
        reason: DenialReason,
        message: str,
        detail: Optional[str] = None,
        requires_clinician_review: bool = False,
    ) -> "SafetyVerdict":
        return cls(
            admitted=False,
            reason=reason,
            detail=detail,
            message=message,
            requires_clinician_review=requires_clinician_review,
        )


class ExerciseInstance(BaseModel):
    """처방된 운동 인스턴스"""

    model_config = ConfigDict(frozen=True)

    template_id: str
    name: str = ""
    variant: Optional[ResolvedVariant] = None
    parameters: Optional[PrescribedParameters] = None
    verdict: SafetyVerdict
    alternatives: Tuple[ResolvedVariant, ...] = Field(
        default=(), description="차순위 변형"
    )

    @property
    def admitted(self) -> bool:
        return self.verdict.admitted

    @property
    def denial_reason(self) -> Optional[DenialReason]:
        return self.verdict.reason

    @property
    def equipment_used(self) -> List[str]:
        """사용 장비 (맨몸 제외)"""
        if self.variant is None or self.variant.equipment == "none":
            return []
        return [self.variant.equipment]
