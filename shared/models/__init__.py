"""Shared models"""

from .vocabulary import (
    BodyRegion,
    Difficulty,
    Laterality,
    Position,
    Equipment,
    ExerciseType,
    JointType,
    LoadLevel,
    ClinicalTag,
    DIFFICULTY_ORDER,
    BODYWEIGHT,
    UNILATERAL,
    LOAD_ORDER,
    difficulty_index,
    normalize_term,
    to_tag,
    within_load,
)
from .pain import PainResponse

__all__ = [
    "BodyRegion",
    "Difficulty",
    "Laterality",
    "Position",
    "Equipment",
    "ExerciseType",
    "JointType",
    "LoadLevel",
    "ClinicalTag",
    "DIFFICULTY_ORDER",
    "BODYWEIGHT",
    "UNILATERAL",
    "LOAD_ORDER",
    "difficulty_index",
    "normalize_term",
    "to_tag",
    "within_load",
    "PainResponse",
]
