"""Exercise Prescription Services"""

from .template_repository import (
    ContentError,
    TemplateRepository,
    ValidationReport,
    get_template_repository,
)
from .variant_resolver import VariantResolver
from .safety_gate import SafetyGate
from .parameter_scaler import ParameterScaler
from .state_store import InMemoryProgressionStore, ProgressionStateStore
from .progression_tracker import ProgressionTracker
from .plan_assembler import PlanAssembler

__all__ = [
    "ContentError",
    "TemplateRepository",
    "ValidationReport",
    "get_template_repository",
    "VariantResolver",
    "SafetyGate",
    "ParameterScaler",
    "InMemoryProgressionStore",
    "ProgressionStateStore",
    "ProgressionTracker",
    "PlanAssembler",
]
