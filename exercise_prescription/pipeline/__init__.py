"""Exercise Prescription Pipeline"""

from .prescription_pipeline import PrescriptionPipeline

__all__ = ["PrescriptionPipeline"]
