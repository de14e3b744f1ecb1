"""닫힌 임상 어휘 (공유)

템플릿과 환자 컨텍스트가 공유하는 고정 어휘:
- 부위, 관절, 운동 유형
- 자세, 장비, 난이도, 편측성
- 자유 텍스트 → 태그 정규화 (ClinicalTag)
"""

import re
from typing import Literal, Tuple, get_args

from pydantic import BaseModel, ConfigDict, Field


BodyRegion = Literal[
    "neck", "shoulder", "elbow", "wrist_hand", "thoracic",
    "lumbar", "hip", "knee", "ankle", "core",
]

Difficulty = Literal["beginner", "intermediate", "advanced", "elite"]

Laterality = Literal["bilateral", "unilateral_left", "unilateral_right", "alternating"]

Position = Literal[
    "standing", "sitting", "supine", "prone", "side_lying",
    "quadruped", "kneeling", "half_kneeling", "tall_kneeling",
    "wall_supported", "bridging", "lying", "single_leg_stance",
    "seated_machine",
]

Equipment = Literal[
    "none", "mat", "towel", "towel_roll", "pillow", "strap", "wall", "chair",
    "table", "bench", "bed", "step", "stairs", "box", "plyo_box",
    "resistance_band", "resistance_band_light", "resistance_band_medium",
    "resistance_band_heavy", "mobilization_band", "dumbbell", "dumbbell_light",
    "dumbbell_medium", "dumbbell_heavy", "kettlebell", "barbell", "weight",
    "weight_plate", "ankle_weight", "ankle_weight_light", "ankle_weight_medium",
    "medicine_ball", "ball", "tennis_ball", "stability_ball", "foam_roller",
    "balance_pad", "foam_pad", "wobble_board", "bosu", "cable_machine",
    "leg_press_machine", "stationary_bike", "treadmill", "pool", "putty",
    "flexbar", "dowel", "stick_dowel", "hammer", "cones", "partner", "anchor",
    "slider", "biofeedback", "walking_aid", "handrail", "parallel_bars",
]

ExerciseType = Literal[
    "activation", "aerobic", "agility", "balance", "breathing", "cardio",
    "concentric", "corrective", "dual_task", "eccentric", "functional",
    "isometric", "mobility", "mobilization", "motor_control", "neural_glide",
    "neuromuscular", "plyometric", "power", "proprioception", "stability",
    "strength", "strengthening", "stretch", "vestibular",
]

JointType = Literal[
    "spine", "cervical", "thoracic", "lumbar", "lumbar_spine", "thoracic_spine",
    "sacroiliac", "shoulder", "elbow", "wrist", "hip", "knee", "ankle", "foot",
    "nerve", "multi_joint",
]

# 수술 후 단계의 최대 부하
LoadLevel = Literal["none", "bodyweight", "light", "moderate", "full"]

BODY_REGIONS: Tuple[str, ...] = get_args(BodyRegion)
DIFFICULTY_ORDER: Tuple[str, ...] = get_args(Difficulty)
LATERALITIES: Tuple[str, ...] = get_args(Laterality)
POSITIONS: Tuple[str, ...] = get_args(Position)
EQUIPMENT: Tuple[str, ...] = get_args(Equipment)
EXERCISE_TYPES: Tuple[str, ...] = get_args(ExerciseType)
JOINT_TYPES: Tuple[str, ...] = get_args(JointType)

UNILATERAL = frozenset({"unilateral_left", "unilateral_right"})
BODYWEIGHT = "none"

LOAD_ORDER: Tuple[str, ...] = get_args(LoadLevel)

# 외부 부하 장비의 부하 수준 (그 외 장비는 부하 없음)
EQUIPMENT_LOAD = {
    "resistance_band_light": "light",
    "dumbbell_light": "light",
    "ankle_weight_light": "light",
    "putty": "light",
    "flexbar": "light",
    "resistance_band": "moderate",
    "resistance_band_medium": "moderate",
    "dumbbell": "moderate",
    "dumbbell_medium": "moderate",
    "ankle_weight": "moderate",
    "ankle_weight_medium": "moderate",
    "kettlebell": "moderate",
    "medicine_ball": "moderate",
    "weight": "moderate",
    "weight_plate": "moderate",
    "cable_machine": "moderate",
    "resistance_band_heavy": "full",
    "dumbbell_heavy": "full",
    "barbell": "full",
    "leg_press_machine": "full",
}

# 레거시 표기 → 정규 표기
_ALIASES = {
    "left": "unilateral_left",
    "right": "unilateral_right",
    "sidelying": "side_lying",
    "bodyweight": "none",
    "dumbbells": "dumbbell",
    "swiss_ball": "stability_ball",
    "bosu_ball": "bosu",
    "ankle_weights": "ankle_weight",
    "cable": "cable_machine",
    "stair": "stairs",
    "cone": "cones",
    "therapy_putty": "putty",
    "strengthening": "strength",
    "strength_concentric": "concentric",
    "strength_eccentric": "eccentric",
    "strength_isometric": "isometric",
    "stretch_static": "stretch",
    "stretch_dynamic": "stretch",
    "mobility_arom": "mobility",
    "balance_static": "balance",
    "balance_dynamic": "balance",
    "neural_gliding": "neural_glide",
    "nerve_glide": "neural_glide",
    "neural_mobility": "neural_glide",
}


def normalize_term(value: str) -> str:
    """어휘 값 정규화 (소문자 + 레거시 별칭 치환)"""
    term = value.strip().lower()
    return _ALIASES.get(term, term)


def difficulty_index(difficulty: str) -> int:
    """난이도 순서 인덱스

    Raises:
        ValueError: 정의되지 않은 난이도 (프로그래밍 오류)
    """
    try:
        return DIFFICULTY_ORDER.index(difficulty)
    except ValueError:
        raise ValueError(f"정의되지 않은 난이도: {difficulty}") from None


def within_load(equipment: str, max_load: str) -> bool:
    """장비가 최대 부하 이내인지 (부하 없는 장비는 항상 허용)"""
    load = EQUIPMENT_LOAD.get(equipment)
    if load is None:
        return True
    return LOAD_ORDER.index(load) <= LOAD_ORDER.index(max_load)


_QUALIFIER = re.compile(r"\s+-\s+.*$")
_PAREN = re.compile(r"\([^)]*\)")
_NON_WORD = re.compile(r"[^a-z0-9]+")


def to_tag(text: str) -> str:
    """자유 텍스트를 태그로 정규화

    예시:
        "Diastasis recti - modify" → "diastasis_recti"
        "Hip flexor tightness - reduce range" → "hip_flexor_tightness"
        "Pain > 3/10" → "pain_3_10"
    """
    lowered = _PAREN.sub(" ", _QUALIFIER.sub("", text.strip().lower()))
    return _NON_WORD.sub("_", lowered).strip("_")


class ClinicalTag(BaseModel):
    """정규화된 임상 태그 (매칭은 tag, 설명은 text)"""

    model_config = ConfigDict(frozen=True)

    tag: str = Field(..., min_length=1, description="정규화 태그")
    text: str = Field(default="", description="원문 (사람이 읽는 설명)")

    @classmethod
    def from_text(cls, text: str) -> "ClinicalTag":
        tag = to_tag(text)
        if not tag:
            raise ValueError(f"태그로 변환할 수 없는 텍스트: {text!r}")
        return cls(tag=tag, text=text.strip())

    def __str__(self) -> str:
        return self.text or self.tag
