"""Exercise Prescription 설정"""

from .settings import PrescriptionSettings, settings

__all__ = [
    "PrescriptionSettings",
    "settings",
]
