"""환자 임상 컨텍스트 모델

안전 게이트가 모호함 없이 판단할 수 있도록 선택 필드는
'값 없음' 대신 명시적 표식(unspecified, not_applicable, none)을 사용한다.
"""

from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Literal, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from shared.models import Difficulty, Laterality, PainResponse, Position, normalize_term, to_tag

UNSPECIFIED = "unspecified"
NOT_APPLICABLE = "not_applicable"
NO_SURGERY = "none"

Unspecified = Literal["unspecified"]


def _tag_set(values: Any) -> FrozenSet[str]:
    if values is None:
        return frozenset()
    if isinstance(values, str):
        values = [values]
    return frozenset(tag for tag in (to_tag(str(v)) for v in values) if tag)


class SessionOutcome(BaseModel):
    """완료된 세션 결과 (진행 추적 입력)"""

    model_config = ConfigDict(frozen=True)

    session_id: str = Field(..., min_length=1, description="세션 ID (중복 처리 방지 키)")
    template_id: str = Field(..., min_length=1, description="템플릿 ID")
    completed_at: datetime = Field(..., description="완료 시각")

    pain_before: Optional[int] = Field(default=None, ge=0, le=10, description="운동 전 통증")
    pain_during: int = Field(..., ge=0, le=10, description="운동 중 통증")
    pain_after: int = Field(..., ge=0, le=10, description="운동 직후 통증")
    pain_next_day: Optional[int] = Field(default=None, ge=0, le=10, description="다음날 통증")

    pain_free_reps: int = Field(..., ge=0, description="통증 없이 수행한 반복 수")
    form_score: Optional[float] = Field(default=None, ge=0, le=100, description="자세 점수")
    adherence: float = Field(default=1.0, ge=0, le=1, description="처방 대비 수행률")

    swelling: bool = Field(default=False, description="부종 발생")
    form_breakdown: bool = Field(default=False, description="자세 붕괴")
    compensations: FrozenSet[str] = Field(default=frozenset(), description="관찰된 보상 패턴 태그")

    @field_validator("compensations", mode="before")
    @classmethod
    def _normalize_compensations(cls, v: Any) -> FrozenSet[str]:
        return _tag_set(v)

    @property
    def pain_response(self) -> PainResponse:
        return PainResponse(
            during=self.pain_during,
            after=self.pain_after,
            next_day=self.pain_next_day,
        )


class PatientContext(BaseModel):
    """환자 임상 컨텍스트

    Attributes:
        weeks_post_op: 수술 후 주차, 또는 not_applicable / unspecified
        surgery_type: 수술 태그, 또는 none / unspecified
        available_equipment: 보유 장비 집합, 또는 unspecified
    """

    model_config = ConfigDict(frozen=True)

    patient_id: str = Field(..., min_length=1, description="환자 ID")

    # 통증 (NRS 0-10)
    pain_during: int = Field(..., ge=0, le=10, description="운동 중 통증")
    pain_after_24h: int = Field(..., ge=0, le=10, description="24시간 후 통증")

    # 수술 정보 (명시적 표식 필수)
    weeks_post_op: Union[float, Literal["not_applicable", "unspecified"]] = Field(
        ..., description="수술 후 주차"
    )
    surgery_type: str = Field(..., min_length=1, description="수술 유형 태그")

    # 선호/가용
    available_equipment: Union[Unspecified, FrozenSet[str]] = Field(
        default=UNSPECIFIED, description="보유 장비"
    )
    preferred_laterality: Union[Unspecified, Laterality] = UNSPECIFIED
    preferred_position: Union[Unspecified, Position] = UNSPECIFIED
    current_tiers: Dict[str, Difficulty] = Field(
        default_factory=dict, description="템플릿별 현재 난이도"
    )

    # 태그 매칭 입력
    reported_symptoms: FrozenSet[str] = Field(default=frozenset(), description="보고된 증상 태그")
    conditions: FrozenSet[str] = Field(default=frozenset(), description="동반 질환 태그")

    recent_sessions: Tuple[SessionOutcome, ...] = Field(
        default=(), description="최근 세션 결과 (진행 추적 동기화, 통증 신호등)"
    )

    @field_validator("weeks_post_op", mode="before")
    @classmethod
    def _normalize_weeks(cls, v: Any) -> Any:
        if isinstance(v, str):
            return normalize_term(v)
        return v

    @field_validator("weeks_post_op")
    @classmethod
    def _non_negative_weeks(cls, v: Any) -> Any:
        if not isinstance(v, str) and v < 0:
            raise ValueError("수술 후 주차는 0 이상이어야 합니다")
        return v

    @field_validator("surgery_type", mode="before")
    @classmethod
    def _normalize_surgery(cls, v: Any) -> Any:
        if not isinstance(v, str):
            return v
        term = normalize_term(v)
        if term in (UNSPECIFIED, NO_SURGERY):
            return term
        return to_tag(v)

    @field_validator("available_equipment", mode="before")
    @classmethod
    def _normalize_equipment(cls, v: Any) -> Any:
        if isinstance(v, str):
            return normalize_term(v)
        if v is None:
            return v
        return frozenset(normalize_term(str(item)) for item in v)

    @field_validator("preferred_laterality", "preferred_position", mode="before")
    @classmethod
    def _normalize_preference(cls, v: Any) -> Any:
        return normalize_term(v) if isinstance(v, str) else v

    @field_validator("reported_symptoms", "conditions", mode="before")
    @classmethod
    def _normalize_tags(cls, v: Any) -> FrozenSet[str]:
        return _tag_set(v)

    @property
    def is_post_op(self) -> bool:
        """수술 후 주차가 숫자로 주어졌는지"""
        return not isinstance(self.weeks_post_op, str)

    @property
    def equipment_specified(self) -> bool:
        return self.available_equipment != UNSPECIFIED

    def tier_for(self, template_id: str) -> Optional[str]:
        """템플릿의 현재 난이도 (없으면 None)"""
        return self.current_tiers.get(template_id)

    def sessions_for(self, template_id: str) -> List[SessionOutcome]:
        """템플릿의 최근 세션 결과 (완료 시각순)"""
        return sorted(
            (s for s in self.recent_sessions if s.template_id == template_id),
            key=lambda s: s.completed_at,
        )


def coerce_context(
    raw: Union[PatientContext, Mapping[str, Any]],
) -> Tuple[Optional[PatientContext], Optional[str]]:
    """원본 입력 → PatientContext

    실패는 예외가 아니라 (None, 오류 메시지)로 반환한다.

    Returns:
        (컨텍스트, 오류 메시지)
    """
    if isinstance(raw, PatientContext):
        return raw, None
    if not isinstance(raw, Mapping):
        return None, f"컨텍스트는 객체여야 합니다: {type(raw).__name__}"

    try:
        return PatientContext.model_validate(dict(raw)), None
    except ValidationError as e:
        messages = [
            f"{'.'.join(str(part) for part in err['loc']) or 'context'}: {err['msg']}"
            for err in e.errors()
        ]
        return None, "; ".join(messages)
