"""운동 처방 파이프라인

전체 흐름:
1. 컨텍스트 변환 (진행 추적기가 있으면 최근 세션 결과 반영)
2. 안전 게이트 + 변형 해석
3. 파라미터 스케일링 (직전 세션 통증 신호등 반영)
4. (선택) 진행 상태 생성
"""

from typing import Any, Iterable, List, Mapping, Optional, AbstractSet, Union

from langsmith import traceable

from exercise_prescription.models import (
    DenialReason,
    ExerciseInstance,
    ExerciseTemplate,
    PatientContext,
    SafetyVerdict,
    coerce_context,
)
from exercise_prescription.services.parameter_scaler import ParameterScaler
from exercise_prescription.services.progression_tracker import ProgressionTracker
from exercise_prescription.services.safety_gate import SafetyGate
from exercise_prescription.services.template_repository import (
    TemplateRepository,
    get_template_repository,
)
from exercise_prescription.services.variant_resolver import VariantResolver


class PrescriptionPipeline:
    """운동 처방 파이프라인

    사용 예시:
        pipeline = PrescriptionPipeline()
        instance = pipeline.prescribe("core_dead_bug", context)
    """

    def __init__(
        self,
        repository: Optional[TemplateRepository] = None,
        safety_gate: Optional[SafetyGate] = None,
        resolver: Optional[VariantResolver] = None,
        scaler: Optional[ParameterScaler] = None,
        tracker: Optional[ProgressionTracker] = None,
    ):
        """
        Args:
            repository: 템플릿 저장소 (기본값: 내장 템플릿)
            safety_gate: 안전 게이트
            resolver: 변형 해석기
            scaler: 파라미터 스케일러
            tracker: 진행 추적기 (지정 시 최근 세션 반영, 최초 처방에서 상태 생성, 저장된 난이도 사용)
        """
        self._repository = repository
        self.safety_gate = safety_gate or SafetyGate()
        self.resolver = resolver or VariantResolver()
        self.scaler = scaler or ParameterScaler()
        self.tracker = tracker

    @property
    def repository(self) -> TemplateRepository:
        if self._repository is None:
            self._repository = get_template_repository()
        return self._repository

    def get_template(self, template: Union[ExerciseTemplate, str]) -> ExerciseTemplate:
        if isinstance(template, ExerciseTemplate):
            return template
        return self.repository.get(template)

    @traceable(name="exercise_prescription_pipeline")
    def prescribe(
        self,
        template: Union[ExerciseTemplate, str],
        context: Union[PatientContext, Mapping[str, Any]],
        equipment_limit: Optional[AbstractSet[str]] = None,
    ) -> ExerciseInstance:
        """
        단일 운동 처방

        Args:
            template: 템플릿 또는 ID
            context: 환자 컨텍스트 (원본 매핑 허용)
            equipment_limit: 추가 장비 제한 (플랜 장비 예산용)

        Returns:
            ExerciseInstance (거부 시 verdict만 포함)

        Raises:
            TemplateNotFoundError: 존재하지 않거나 격리된 템플릿 ID
        """
        template = self.get_template(template)

        ctx, error = coerce_context(context)
        if ctx is None:
            verdict = SafetyVerdict.deny(
                DenialReason.INVALID_CONTEXT, f"컨텍스트 오류: {error}"
            )
            return ExerciseInstance(template_id=template.id, name=template.name(), verdict=verdict)

        if self.tracker is not None:
            self._sync_sessions(template, ctx)
            ctx = self._with_tracked_tier(template, ctx)

        # Step 1: 안전 게이트 + 변형 해석 (게이트 거부가 우선)
        verdict = self.safety_gate.evaluate(template, ctx)
        resolution = self.resolver.resolve(template, ctx, equipment_limit)

        if not verdict.admitted:
            return ExerciseInstance(template_id=template.id, name=template.name(), verdict=verdict)

        if not resolution.resolved:
            verdict = SafetyVerdict.deny(
                resolution.reason or DenialReason.UNRESOLVABLE_VARIANT,
                f"조건을 만족하는 변형이 없습니다: {resolution.detail}",
                detail=resolution.detail or None,
            )
            return ExerciseInstance(template_id=template.id, name=template.name(), verdict=verdict)

        # Step 2: 파라미터 스케일링
        variant = resolution.best
        sessions = ctx.sessions_for(template.id)
        pain_light = sessions[-1].pain_response.light if sessions else None
        parameters = self.scaler.scale(template, variant, verdict.modifications, pain_light)

        # Step 3: 진행 상태 생성
        if self.tracker is not None:
            self.tracker.ensure_state(ctx.patient_id, template, initial_tier=variant.difficulty)

        return ExerciseInstance(
            template_id=template.id,
            name=template.name(),
            variant=variant,
            parameters=parameters,
            verdict=verdict,
            alternatives=resolution.variants[1:],
        )

    def prescribe_many(
        self,
        templates: Iterable[Union[ExerciseTemplate, str]],
        context: Union[PatientContext, Mapping[str, Any]],
    ) -> List[ExerciseInstance]:
        """여러 운동 처방 (입력 순서 유지)"""
        ctx, _ = coerce_context(context)
        return [self.prescribe(t, ctx or context) for t in templates]

    def _sync_sessions(self, template: ExerciseTemplate, ctx: PatientContext) -> None:
        """최근 세션 결과를 진행 상태에 반영 (session_id 기준 중복 무시)"""
        for outcome in ctx.sessions_for(template.id):
            self.tracker.record_session(ctx.patient_id, template, outcome)

    def _with_tracked_tier(
        self, template: ExerciseTemplate, ctx: PatientContext
    ) -> PatientContext:
        """컨텍스트에 난이도가 없으면 저장된 진행 상태의 난이도 사용"""
        if ctx.tier_for(template.id) is not None:
            return ctx
        state = self.tracker.get_state(ctx.patient_id, template.id)
        if state is None or not state.is_active:
            return ctx
        tiers = {**ctx.current_tiers, template.id: state.tier}
        return ctx.model_copy(update={"current_tiers": tiers})
