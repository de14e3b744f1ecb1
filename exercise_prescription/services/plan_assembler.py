"""세션 플랜 조립 서비스

운동 순서: 준비(가동성/스트레칭) → 본 운동(근력) → 마무리(안정성/균형).
운동 수, 예상 시간, 장비 종류 예산 안에서 처방된 운동을 채운다.
"""

from typing import Any, Iterable, List, Mapping, Optional, Set, Union
import logging

from langsmith import traceable

from shared.models import difficulty_index
from exercise_prescription.config import settings
from exercise_prescription.models import (
    DenialReason,
    ExcludedExercise,
    ExerciseInstance,
    ExerciseTemplate,
    PatientContext,
    PlanBudget,
    SessionPlan,
    coerce_context,
)

logger = logging.getLogger(__name__)

# 운동 유형별 순서 (작을수록 먼저)
FUNCTION_PRIORITY = {
    # 준비 - 가동성
    "breathing": 0,
    "mobility": 0,
    "mobilization": 0,
    "neural_glide": 0,
    # 준비 - 스트레칭
    "stretch": 1,
    # 활성화
    "activation": 2,
    "motor_control": 2,
    "corrective": 2,
    # 본 - 근력
    "isometric": 3,
    "concentric": 3,
    "eccentric": 3,
    "strength": 3,
    "functional": 3,
    "power": 4,
    "plyometric": 4,
    "agility": 4,
    # 마무리 - 안정성/균형
    "stability": 5,
    "balance": 6,
    "proprioception": 6,
    "neuromuscular": 6,
    "vestibular": 6,
    "dual_task": 6,
    "aerobic": 7,
    "cardio": 7,
}

_EXCLUSION_TYPES = {
    DenialReason.UNRESOLVABLE_VARIANT: "variant",
    DenialReason.INVALID_CONTEXT: "context",
}


class PlanAssembler:
    """세션 플랜 조립"""

    def __init__(self, pipeline=None, seconds_per_rep: int = None):
        """
        Args:
            pipeline: PrescriptionPipeline (기본값: 내장 템플릿 파이프라인)
            seconds_per_rep: 반복당 소요 시간 (초)
        """
        if pipeline is None:
            from exercise_prescription.pipeline import PrescriptionPipeline
            pipeline = PrescriptionPipeline()
        self.pipeline = pipeline
        self.seconds_per_rep = seconds_per_rep or settings.seconds_per_rep

    def order(self, templates: Iterable[ExerciseTemplate]) -> List[ExerciseTemplate]:
        """운동 순서 결정 (기능 → 기본 난이도 → ID)"""
        def get_sort_key(template: ExerciseTemplate) -> tuple:
            return (
                FUNCTION_PRIORITY.get(template.exercise_type, 3),
                difficulty_index(template.difficulty.base),
                template.id,
            )

        return sorted(templates, key=get_sort_key)

    def estimate_minutes(self, instance: ExerciseInstance) -> float:
        """예상 소요 시간 (분): 세트 × 반복 × (유지 + 반복 시간) + 세트 간 휴식"""
        params = instance.parameters
        if params is None:
            return 0.0
        work = params.sets * params.reps * (params.hold_seconds + self.seconds_per_rep)
        rest = (params.sets - 1) * params.rest_seconds
        return (work + rest) / 60

    @traceable(name="session_plan_assembly")
    def assemble(
        self,
        templates: Iterable[Union[ExerciseTemplate, str]],
        context: Union[PatientContext, Mapping[str, Any]],
        budget: Optional[PlanBudget] = None,
    ) -> SessionPlan:
        """
        세션 플랜 조립

        Args:
            templates: 후보 템플릿 또는 ID
            context: 환자 컨텍스트
            budget: 세션 예산 (기본값: 설정값)

        Returns:
            SessionPlan (제외된 운동과 사유 포함)
        """
        budget = budget or PlanBudget()
        candidates = self.order(self.pipeline.get_template(t) for t in templates)

        ctx, error = coerce_context(context)
        if ctx is None:
            patient_id = context.get("patient_id") if isinstance(context, Mapping) else None
            return SessionPlan(
                patient_id=str(patient_id or "unknown"),
                excluded=tuple(
                    ExcludedExercise(
                        template_id=t.id,
                        name=t.name(),
                        reason=f"컨텍스트 오류: {error}",
                        exclusion_type="context",
                        denial_reason=DenialReason.INVALID_CONTEXT,
                    )
                    for t in candidates
                ),
                warnings=(f"컨텍스트 오류: {error}",),
            )

        exercises: List[ExerciseInstance] = []
        excluded: List[ExcludedExercise] = []
        equipment: Set[str] = set()
        minutes = 0.0
        requires_review = False

        for template in candidates:
            if len(exercises) >= budget.max_exercises:
                excluded.append(self._exclude(template, "최대 운동 수 도달", "budget"))
                continue

            instance = self.pipeline.prescribe(template, ctx)
            if not instance.admitted:
                verdict = instance.verdict
                requires_review = requires_review or verdict.requires_clinician_review
                excluded.append(
                    self._exclude(
                        template,
                        verdict.message,
                        _EXCLUSION_TYPES.get(verdict.reason, "safety"),
                        verdict.reason,
                    )
                )
                continue

            # 장비 예산 초과 시 이미 사용 중인 장비로 재해석
            if len(equipment | set(instance.equipment_used)) > budget.max_equipment_items:
                instance = self.pipeline.prescribe(template, ctx, equipment_limit=frozenset(equipment))
                if not instance.admitted:
                    excluded.append(self._exclude(template, "장비 예산 초과", "budget"))
                    continue

            duration = self.estimate_minutes(instance)
            if minutes + duration > budget.max_minutes:
                excluded.append(
                    self._exclude(template, f"시간 예산 초과 ({duration:.1f}분 필요)", "budget")
                )
                continue

            exercises.append(instance)
            equipment.update(instance.equipment_used)
            minutes += duration

        warnings = []
        if len(exercises) < budget.min_exercises:
            message = f"처방 가능한 운동이 {len(exercises)}개로 최소 {budget.min_exercises}개 미만입니다"
            logger.warning(f"[{ctx.patient_id}] {message}")
            warnings.append(message)
        if requires_review:
            logger.warning(f"[{ctx.patient_id}] 레드플래그로 임상의 검토가 필요합니다")

        return SessionPlan(
            patient_id=ctx.patient_id,
            exercises=tuple(exercises),
            excluded=tuple(excluded),
            requires_clinician_review=requires_review,
            estimated_minutes=round(minutes, 1),
            equipment=tuple(sorted(equipment)),
            warnings=tuple(warnings),
        )

    def _exclude(
        self,
        template: ExerciseTemplate,
        reason: str,
        exclusion_type: str,
        denial_reason: Optional[DenialReason] = None,
    ) -> ExcludedExercise:
        return ExcludedExercise(
            template_id=template.id,
            name=template.name(),
            reason=reason,
            exclusion_type=exclusion_type,
            denial_reason=denial_reason,
        )
