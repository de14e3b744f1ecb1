"""운동 템플릿 모델

원본 레코드(camelCase JSON)를 정규화된 불변 모델로 변환한다.
레거시 표기('0-2', '12+', 문자열 수정사항, 문자열 기준 목록)도 수용한다.
"""

import re
from bisect import bisect_right
from typing import Any, ClassVar, Dict, FrozenSet, List, Literal, Mapping, Optional, Tuple

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    ValidationError,
    field_validator,
    model_validator,
)

from shared.models import (
    BodyRegion,
    ClinicalTag,
    Difficulty,
    DIFFICULTY_ORDER,
    Equipment,
    ExerciseType,
    JointType,
    LoadLevel,
    Laterality,
    Position,
    difficulty_index,
    normalize_term,
    to_tag,
)
from shared.models.vocabulary import EQUIPMENT, LATERALITIES, POSITIONS
from exercise_prescription.config import PrescriptionSettings, settings
from exercise_prescription.exceptions import TemplateRecordError

LANGUAGES = ("en", "sv")

REQUIRED_FIELDS = (
    "id",
    "bodyRegion",
    "exerciseType",
    "allowedPositions",
    "allowedEquipment",
    "allowedDifficulties",
    "allowedLateralities",
    "safetyData",
)


class CountRange(BaseModel):
    """반복/세트 범위"""

    model_config = ConfigDict(frozen=True)

    min: int = Field(..., ge=1, description="최소")
    max: int = Field(..., ge=1, description="최대")

    @model_validator(mode="after")
    def _check_order(self) -> "CountRange":
        if self.min > self.max:
            raise ValueError(f"min({self.min}) > max({self.max})")
        return self

    @property
    def midpoint(self) -> int:
        """중간값 (반올림)"""
        return (self.min + self.max + 1) // 2

    @property
    def quarter(self) -> int:
        """범위의 1/4 지점 (반올림)"""
        return self.min + (self.max - self.min + 2) // 4


class _VariabilityAxis(BaseModel):
    """변형 축: 기본값 + 허용 집합 (기본값 ∈ 허용 집합)"""

    model_config = ConfigDict(frozen=True)

    vocabulary_order: ClassVar[Tuple[str, ...]] = ()

    @model_validator(mode="after")
    def _base_in_allowed(self):
        if not self.allowed:
            raise ValueError("허용 값이 비어 있습니다")
        if self.base not in self.allowed:
            raise ValueError(f"기본값 '{self.base}'이 허용 집합에 없습니다")
        return self

    def ordered(self, preferred: Optional[str] = None) -> List[str]:
        """선호값 → 기본값 → 어휘 순서로 정렬된 허용 값"""
        order = self.vocabulary_order

        def rank(value: str) -> tuple:
            return (
                value != preferred,
                value != self.base,
                order.index(value) if value in order else len(order),
                value,
            )

        return sorted(self.allowed, key=rank)


class PositionAxis(_VariabilityAxis):
    vocabulary_order: ClassVar[Tuple[str, ...]] = POSITIONS

    base: Position
    allowed: FrozenSet[Position]


class EquipmentAxis(_VariabilityAxis):
    vocabulary_order: ClassVar[Tuple[str, ...]] = EQUIPMENT

    base: Equipment
    allowed: FrozenSet[Equipment]


class DifficultyAxis(_VariabilityAxis):
    vocabulary_order: ClassVar[Tuple[str, ...]] = DIFFICULTY_ORDER

    base: Difficulty
    allowed: FrozenSet[Difficulty]

    @property
    def lowest(self) -> str:
        return min(self.allowed, key=difficulty_index)

    @property
    def highest(self) -> str:
        return max(self.allowed, key=difficulty_index)


class LateralityAxis(_VariabilityAxis):
    vocabulary_order: ClassVar[Tuple[str, ...]] = LATERALITIES

    base: Laterality
    allowed: FrozenSet[Laterality]


class PostOpPhase(BaseModel):
    """수술 후 단계 (주차 구간 [weeks_min, weeks_max), 마지막 단계는 weeks_max 포함)"""

    model_config = ConfigDict(frozen=True)

    phase: int = Field(..., ge=1, le=4, description="단계 번호")
    weeks_min: float = Field(..., ge=0, description="시작 주차 (포함)")
    weeks_max: Optional[float] = Field(
        default=None, description="종료 주차 (None이면 상한 없음)"
    )
    allowed: bool = Field(default=True, description="해당 단계 허용 여부")
    modifications: Tuple[ClinicalTag, ...] = Field(
        default=(), description="허용 시 적용할 수정사항"
    )
    max_load: Optional[LoadLevel] = Field(default=None, description="최대 외부 부하")
    max_rom: Optional[float] = Field(default=None, ge=0, description="최대 ROM (정상 대비 %)")

    @model_validator(mode="after")
    def _check_weeks(self) -> "PostOpPhase":
        if self.weeks_max is not None and self.weeks_max <= self.weeks_min:
            raise ValueError(
                f"phase {self.phase}: weeks_max({self.weeks_max}) <= weeks_min({self.weeks_min})"
            )
        return self

    def contains(self, weeks: float, include_max: bool = False) -> bool:
        """주차 포함 여부 (include_max: 종료 주차 포함, 마지막 단계용)"""
        if weeks < self.weeks_min:
            return False
        if self.weeks_max is None or weeks < self.weeks_max:
            return True
        return include_max and weeks == self.weeks_max


class ProgressionCriteria(BaseModel):
    """진행 기준

    레거시 문자열 목록은 notes로만 보존되며 자동 평가할 수 없다.
    """

    model_config = ConfigDict(frozen=True)

    min_pain_free_reps: Optional[int] = Field(default=None, ge=0)
    min_consecutive_days: Optional[int] = Field(default=None, ge=1)
    max_pain_during: Optional[int] = Field(default=None, ge=0, le=10)
    max_pain_after: Optional[int] = Field(default=None, ge=0, le=10)
    form_score: Optional[float] = Field(default=None, ge=0, le=100)
    prerequisite_exercises: Tuple[str, ...] = ()
    notes: Tuple[str, ...] = ()

    @property
    def evaluable(self) -> bool:
        """자동 평가 가능 여부"""
        return None not in (
            self.min_pain_free_reps,
            self.min_consecutive_days,
            self.max_pain_during,
            self.max_pain_after,
        )


class RegressionTriggers(BaseModel):
    """퇴행 트리거"""

    model_config = ConfigDict(frozen=True)

    pain_increase: int = Field(
        ..., ge=0, le=10, description="통증 증가 임계값 (0이면 어떤 증가든 트리거)"
    )
    swelling_present: bool = Field(default=False, description="부종 시 퇴행")
    form_breakdown: bool = Field(default=False, description="자세 붕괴 시 퇴행")
    compensation_patterns: FrozenSet[ClinicalTag] = frozenset()
    notes: Tuple[str, ...] = ()

    @property
    def compensation_tags(self) -> FrozenSet[str]:
        return frozenset(c.tag for c in self.compensation_patterns)


class SafetyData(BaseModel):
    """안전 데이터"""

    model_config = ConfigDict(frozen=True)

    contraindications: FrozenSet[ClinicalTag] = frozenset()
    precautions: FrozenSet[ClinicalTag] = frozenset()
    red_flags: FrozenSet[ClinicalTag] = frozenset()
    max_pain_during: int = Field(..., ge=0, le=10)
    max_pain_after_24h: int = Field(..., ge=0, le=10)
    healing_tissue: Optional[str] = None
    target_structure: Optional[str] = None
    post_op_phases: Tuple[PostOpPhase, ...] = ()
    compatible_surgeries: FrozenSet[ClinicalTag] = frozenset()
    progression_criteria: ProgressionCriteria = ProgressionCriteria()
    regression_triggers: RegressionTriggers

    _phase_starts: List[float] = PrivateAttr(default_factory=list)

    @field_validator("post_op_phases")
    @classmethod
    def _check_partition(cls, phases: Tuple[PostOpPhase, ...]) -> Tuple[PostOpPhase, ...]:
        ordered = tuple(sorted(phases, key=lambda p: p.weeks_min))
        for prev, nxt in zip(ordered, ordered[1:]):
            if prev.weeks_max is None or nxt.weeks_min < prev.weeks_max:
                raise ValueError(
                    f"수술 후 단계 구간 중복: phase {prev.phase} / phase {nxt.phase}"
                )
        return ordered

    def model_post_init(self, __context: Any) -> None:
        self._phase_starts = [p.weeks_min for p in self.post_op_phases]

    def phase_for(self, weeks_post_op: float) -> Optional[PostOpPhase]:
        """주차가 속한 단계 (없으면 None)

        단계 경계는 다음 단계에 속하고, 마지막 단계는 종료 주차까지 포함한다.
        """
        idx = bisect_right(self._phase_starts, weeks_post_op) - 1
        if idx < 0:
            return None
        phase = self.post_op_phases[idx]
        is_last = idx == len(self.post_op_phases) - 1
        return phase if phase.contains(weeks_post_op, include_max=is_last) else None

    @property
    def surgery_tags(self) -> FrozenSet[str]:
        return frozenset(s.tag for s in self.compatible_surgeries)


class EvidenceBase(BaseModel):
    """근거 정보 (참고용)"""

    model_config = ConfigDict(frozen=True)

    level: Literal["A", "B", "C", "D"]
    source: str = ""
    study_type: str = ""


class ExerciseTemplate(BaseModel):
    """운동 템플릿"""

    model_config = ConfigDict(frozen=True, extra="ignore")

    # 식별
    id: str = Field(..., min_length=1, description="템플릿 ID")
    names: Dict[str, str] = Field(default_factory=dict, description="언어별 이름")
    descriptions: Dict[str, str] = Field(default_factory=dict, description="언어별 설명")

    # 분류
    body_region: BodyRegion
    joint_type: Optional[JointType] = None
    muscle_groups: Tuple[str, ...] = ()
    exercise_type: ExerciseType

    # 변형 축
    position: PositionAxis
    equipment: EquipmentAxis
    difficulty: DifficultyAxis
    laterality: LateralityAxis

    # 파라미터 범위
    reps: CountRange
    sets: CountRange
    hold_seconds: int = Field(default=0, ge=0)
    rest_seconds: int = Field(..., ge=0)

    # 언어별 지시사항
    instructions: Dict[str, Tuple[str, ...]] = Field(default_factory=dict)
    technique_points: Dict[str, Tuple[str, ...]] = Field(default_factory=dict)

    safety: SafetyData
    evidence: Optional[EvidenceBase] = None

    @field_validator("instructions", "technique_points")
    @classmethod
    def _check_step_counts(cls, value: Dict[str, Tuple[str, ...]]) -> Dict[str, Tuple[str, ...]]:
        counts = {lang: len(steps) for lang, steps in value.items()}
        if len(set(counts.values())) > 1:
            raise ValueError(f"언어별 단계 수 불일치: {counts}")
        return value

    def name(self, lang: str = "en") -> str:
        """언어별 이름 (없으면 영어 → ID)"""
        return self.names.get(lang) or self.names.get("en") or self.id


# ============================================
# 원본 레코드 정규화
# ============================================

_RANGE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(?:-\s*(\d+(?:\.\d+)?)|(\+))?")


def _require_list(record: Mapping, key: str, template_id: str) -> List[str]:
    value = record.get(key)
    if not isinstance(value, list) or not value:
        raise TemplateRecordError(template_id, key, "비어 있지 않은 목록이 필요합니다")
    return [normalize_term(str(v)) for v in value]


def _axis(record: Mapping, base_key: str, allowed_key: str, template_id: str) -> Dict:
    allowed = _require_list(record, allowed_key, template_id)
    base = record.get(base_key)
    return {
        "base": normalize_term(str(base)) if base else allowed[0],
        "allowed": allowed,
    }


def _count_range(value: Any, field: str, template_id: str, default: Tuple[int, int]) -> Dict:
    if value is None:
        return {"min": default[0], "max": default[1]}
    if isinstance(value, Mapping):
        return {"min": value.get("min"), "max": value.get("max")}
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return {"min": int(value), "max": int(value)}
    if isinstance(value, str):
        match = _RANGE.match(value)
        if match:
            low = int(float(match.group(1)))
            high = int(float(match.group(2))) if match.group(2) else low
            return {"min": low, "max": high}
    raise TemplateRecordError(template_id, field, f"해석할 수 없는 범위: {value!r}")


def _weeks(value: Any, template_id: str) -> Tuple[float, Optional[float]]:
    if isinstance(value, Mapping):
        return value.get("min"), value.get("max")
    if isinstance(value, str):
        match = _RANGE.match(value)
        if match:
            low = float(match.group(1))
            if match.group(3):
                return low, None
            return low, float(match.group(2)) if match.group(2) else low + 1
    raise TemplateRecordError(
        template_id, "safetyData.postOpRestrictions.weeksPostOp",
        f"해석할 수 없는 주차: {value!r}",
    )


def _texts(value: Any, template_id: str, field: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if not isinstance(value, list):
        raise TemplateRecordError(
            template_id, field, f"문자열 또는 목록이 필요합니다: {value!r}"
        )
    return [str(v) for v in value if str(v).strip()]


# "None - very gentle exercise" 같은 자리표시 항목
_PLACEHOLDER_TAGS = {"none", "n_a", "na"}


def _tags(value: Any, template_id: str, field: str) -> List[ClinicalTag]:
    texts = [
        text for text in _texts(value, template_id, field)
        if to_tag(text) not in _PLACEHOLDER_TAGS
    ]
    return [ClinicalTag.from_text(text) for text in texts if to_tag(text)]


def _safety_tags(safety: Mapping, key: str, template_id: str) -> List[ClinicalTag]:
    return _tags(safety.get(key), template_id, f"safetyData.{key}")


def _phase(raw: Mapping, template_id: str) -> Dict:
    weeks_min, weeks_max = _weeks(raw.get("weeksPostOp"), template_id)
    return {
        "phase": raw.get("phase"),
        "weeks_min": weeks_min,
        "weeks_max": weeks_max,
        "allowed": raw.get("allowed", True),
        "modifications": _tags(
            raw.get("modifications"), template_id,
            "safetyData.postOpRestrictions.modifications",
        ),
        "max_load": raw.get("maxLoad"),
        "max_rom": raw.get("maxROM"),
    }


def _criteria(value: Any, template_id: str) -> Dict:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        return {"notes": _texts(value, template_id, "safetyData.progressionCriteria")}
    return {
        "min_pain_free_reps": value.get("minPainFreeReps"),
        "min_consecutive_days": value.get("minConsecutiveDays"),
        "max_pain_during": value.get("maxPainDuring"),
        "max_pain_after": value.get("maxPainAfter"),
        "form_score": value.get("formScore"),
        "prerequisite_exercises": _texts(
            value.get("prerequisiteExercises"), template_id,
            "safetyData.progressionCriteria.prerequisiteExercises",
        ),
    }


def _triggers(value: Any, template_id: str, defaults: PrescriptionSettings) -> Dict:
    field = "safetyData.regressionTriggers"
    if not isinstance(value, Mapping):
        return {
            "pain_increase": defaults.default_pain_increase_trigger,
            "notes": _texts(value, template_id, field),
        }
    return {
        "pain_increase": value.get("painIncrease", defaults.default_pain_increase_trigger),
        "swelling_present": value.get("swellingPresent", False),
        "form_breakdown": value.get("formBreakdown", False),
        "compensation_patterns": _tags(
            value.get("compensationPatterns"), template_id, f"{field}.compensationPatterns"
        ),
    }


def _bilingual(record: Mapping, en_keys: Tuple[str, ...], sv_key: str) -> Dict[str, Any]:
    result = {}
    for key in en_keys:
        if record.get(key):
            result["en"] = record[key]
            break
    if record.get(sv_key):
        result["sv"] = record[sv_key]
    return result


def _normalize(record: Mapping, template_id: str, defaults: PrescriptionSettings) -> Dict:
    for key in REQUIRED_FIELDS:
        if key not in record or record[key] in (None, "", []):
            raise TemplateRecordError(template_id, key, "필수 필드 누락")

    safety = record["safetyData"]
    if not isinstance(safety, Mapping):
        raise TemplateRecordError(template_id, "safetyData", "객체가 필요합니다")

    phases = safety.get("postOpRestrictions") or []
    if not isinstance(phases, list) or not all(isinstance(p, Mapping) for p in phases):
        raise TemplateRecordError(
            template_id, "safetyData.postOpRestrictions", "단계 객체 목록이 필요합니다"
        )

    return {
        "id": template_id,
        "names": _bilingual(record, ("baseName", "baseNameEn"), "baseNameSv") or {"en": template_id},
        "descriptions": _bilingual(record, ("description",), "descriptionSv"),
        "body_region": normalize_term(str(record["bodyRegion"])),
        "joint_type": normalize_term(str(record["jointType"])) if record.get("jointType") else None,
        "muscle_groups": record.get("muscleGroups") or record.get("primaryMuscles") or [],
        "exercise_type": normalize_term(str(record["exerciseType"])),
        "position": _axis(record, "basePosition", "allowedPositions", template_id),
        "equipment": _axis(record, "baseEquipment", "allowedEquipment", template_id),
        "difficulty": _axis(record, "baseDifficulty", "allowedDifficulties", template_id),
        "laterality": _axis(record, "laterality", "allowedLateralities", template_id),
        "reps": _count_range(
            record.get("baseReps"), "baseReps", template_id,
            (defaults.default_reps_min, defaults.default_reps_max),
        ),
        "sets": _count_range(
            record.get("baseSets"), "baseSets", template_id,
            (defaults.default_sets_min, defaults.default_sets_max),
        ),
        "hold_seconds": record.get("baseHoldSeconds", 0),
        "rest_seconds": record.get("baseRestSeconds", defaults.default_rest_seconds),
        "instructions": _bilingual(record, ("instructions",), "instructionsSv"),
        "technique_points": _bilingual(record, ("techniquePoints",), "techniquePointsSv"),
        "safety": {
            "contraindications": _safety_tags(safety, "contraindications", template_id),
            "precautions": _safety_tags(safety, "precautions", template_id),
            "red_flags": _safety_tags(safety, "redFlags", template_id),
            "max_pain_during": safety.get("maxPainDuring", defaults.default_max_pain_during),
            "max_pain_after_24h": safety.get(
                "maxPainAfter24h", defaults.default_max_pain_after_24h
            ),
            "healing_tissue": safety.get("healingTissue"),
            "target_structure": safety.get("targetStructure"),
            "post_op_phases": [_phase(p, template_id) for p in phases],
            "compatible_surgeries": _safety_tags(safety, "appropriateForSurgeries", template_id),
            "progression_criteria": _criteria(safety.get("progressionCriteria"), template_id),
            "regression_triggers": _triggers(
                safety.get("regressionTriggers"), template_id, defaults
            ),
        },
        "evidence": (
            {
                "level": record["evidenceBase"].get("level"),
                "source": record["evidenceBase"].get("source", ""),
                "study_type": record["evidenceBase"].get("studyType", ""),
            }
            if isinstance(record.get("evidenceBase"), Mapping)
            else None
        ),
    }


def parse_template_record(
    record: Mapping,
    defaults: Optional[PrescriptionSettings] = None,
    fallback_id: str = "<unknown>",
) -> ExerciseTemplate:
    """원본 템플릿 레코드 → ExerciseTemplate

    Args:
        record: 원본 레코드 (camelCase)
        defaults: 기본값 설정 (기본값: 전역 설정)
        fallback_id: ID가 없는 레코드의 식별자 (오류 보고용)

    Returns:
        ExerciseTemplate

    Raises:
        TemplateRecordError: 필수 필드 누락 또는 값 오류 (필드명과 ID 포함)
    """
    defaults = defaults or settings

    if not isinstance(record, Mapping):
        raise TemplateRecordError(fallback_id, "record", "객체가 필요합니다")

    template_id = str(record.get("id") or fallback_id)
    normalized = _normalize(record, template_id, defaults)

    try:
        return ExerciseTemplate.model_validate(normalized)
    except ValidationError as e:
        error = e.errors()[0]
        field = ".".join(str(part) for part in error["loc"]) or "record"
        raise TemplateRecordError(template_id, field, error["msg"]) from e
