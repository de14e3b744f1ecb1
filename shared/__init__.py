"""Shared module - 처방 엔진과 스크립트가 공유하는 모듈"""

from shared.models.vocabulary import ClinicalTag, to_tag
from shared.models.pain import PainResponse

__all__ = [
    "ClinicalTag",
    "to_tag",
    "PainResponse",
]
