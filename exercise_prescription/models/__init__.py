"""Exercise Prescription Models"""

from .template import (
    CountRange,
    DifficultyAxis,
    EquipmentAxis,
    EvidenceBase,
    ExerciseTemplate,
    LateralityAxis,
    PositionAxis,
    PostOpPhase,
    ProgressionCriteria,
    RegressionTriggers,
    SafetyData,
    parse_template_record,
)
from .context import (
    NO_SURGERY,
    NOT_APPLICABLE,
    UNSPECIFIED,
    PatientContext,
    SessionOutcome,
    coerce_context,
)
from .instance import (
    DenialReason,
    ExerciseInstance,
    PrescribedParameters,
    ResolvedVariant,
    SafetyVerdict,
    VariantResolution,
)
from .progression import (
    ProgressionDecision,
    ProgressionState,
    TransitionRecord,
)
from .plan import ExcludedExercise, PlanBudget, SessionPlan

__all__ = [
    "CountRange",
    "DifficultyAxis",
    "EquipmentAxis",
    "EvidenceBase",
    "ExerciseTemplate",
    "LateralityAxis",
    "PositionAxis",
    "PostOpPhase",
    "ProgressionCriteria",
    "RegressionTriggers",
    "SafetyData",
    "parse_template_record",
    "NO_SURGERY",
    "NOT_APPLICABLE",
    "UNSPECIFIED",
    "PatientContext",
    "SessionOutcome",
    "coerce_context",
    "DenialReason",
    "ExerciseInstance",
    "PrescribedParameters",
    "ResolvedVariant",
    "SafetyVerdict",
    "VariantResolution",
    "ProgressionDecision",
    "ProgressionState",
    "TransitionRecord",
    "ExcludedExercise",
    "PlanBudget",
    "SessionPlan",
]
