"""안전 게이트 서비스

고정 순서로 평가하며 하나라도 해당하면 거부한다 (fail-closed):
0. 컨텍스트 일관성 → InvalidContext
1. 수술 호환성 → SurgeryMismatch
2. 수술 후 단계 → PhaseUnknown / PhaseNotAllowed
3. 통증 상한 → PainCeilingExceeded (운동 중 / 24시간 후 구분)
4. 레드플래그 → RedFlagTriggered (임상의 검토 필요)
5. 금기 → Contraindicated, 주의사항 → 경고
"""

from typing import Any, FrozenSet, Mapping, Optional, Tuple, Union
import logging

from langsmith import traceable

from exercise_prescription.config import settings
from exercise_prescription.models.context import (
    NO_SURGERY,
    UNSPECIFIED,
    PatientContext,
    coerce_context,
)
from exercise_prescription.models.instance import DenialReason, SafetyVerdict
from exercise_prescription.models.template import ExerciseTemplate

logger = logging.getLogger(__name__)

# 모든 수술에 호환
ANY_SURGERY = "any_surgery"


class SafetyGate:
    """안전 게이트"""

    def __init__(self, strict_surgery_check: Optional[bool] = None):
        """
        Args:
            strict_surgery_check: 수술 유형 미지정 + 호환 목록 존재 시 InvalidContext
        """
        self.strict_surgery_check = (
            settings.strict_surgery_check
            if strict_surgery_check is None
            else strict_surgery_check
        )

    @traceable(name="safety_gate_evaluation")
    def evaluate(
        self,
        template: ExerciseTemplate,
        context: Union[PatientContext, Mapping[str, Any]],
    ) -> SafetyVerdict:
        """
        안전 판정

        Args:
            template: 운동 템플릿
            context: 환자 컨텍스트 (원본 매핑 허용)

        Returns:
            SafetyVerdict
        """
        ctx, error = coerce_context(context)
        if ctx is None:
            return self._deny(
                template, DenialReason.INVALID_CONTEXT, f"컨텍스트 오류: {error}"
            )

        safety = template.safety
        red_flags = self._matches(ctx.reported_symptoms, safety.red_flags)

        verdict = (
            self._check_context(template, ctx)
            or self._check_surgery(template, ctx)
            or self._check_phase(template, ctx)
            or self._check_pain(template, ctx)
        )
        if verdict is not None:
            # 앞 단계에서 거부되어도 레드플래그 에스컬레이션은 유지
            if red_flags:
                verdict = verdict.model_copy(update={"requires_clinician_review": True})
            return verdict

        if red_flags:
            logger.warning(
                f"레드플래그 감지 [{ctx.patient_id}/{template.id}]: {', '.join(red_flags)}"
            )
            return SafetyVerdict.deny(
                DenialReason.RED_FLAG_TRIGGERED,
                f"레드플래그 증상 보고: {', '.join(red_flags)}. 임상의 검토가 필요합니다.",
                detail=red_flags[0],
                requires_clinician_review=True,
            )

        contraindicated = self._matches(ctx.conditions, safety.contraindications)
        if contraindicated:
            return self._deny(
                template,
                DenialReason.CONTRAINDICATED,
                f"금기 사항 해당: {', '.join(contraindicated)}",
                detail=contraindicated[0],
            )

        phase = safety.phase_for(ctx.weeks_post_op) if ctx.is_post_op else None
        return SafetyVerdict.admit(
            warnings=self._matches(ctx.conditions, safety.precautions),
            phase=phase.phase if phase else None,
            modifications=tuple(m.tag for m in phase.modifications) if phase else (),
            max_load=phase.max_load if phase else None,
            max_rom=phase.max_rom if phase else None,
        )

    def _check_context(
        self, template: ExerciseTemplate, ctx: PatientContext
    ) -> Optional[SafetyVerdict]:
        """0. 컨텍스트 일관성"""
        safety = template.safety

        if ctx.is_post_op and ctx.surgery_type == NO_SURGERY:
            return self._deny(
                template,
                DenialReason.INVALID_CONTEXT,
                "수술 후 주차가 있는데 수술 유형이 'none'입니다",
                detail="weeks_post_op",
            )

        if not ctx.is_post_op and ctx.surgery_type not in (NO_SURGERY, UNSPECIFIED):
            return self._deny(
                template,
                DenialReason.INVALID_CONTEXT,
                f"수술 유형 '{ctx.surgery_type}'이 있으면 수술 후 주차가 필요합니다",
                detail="weeks_post_op",
            )

        if ctx.weeks_post_op == UNSPECIFIED and safety.post_op_phases:
            return self._deny(
                template,
                DenialReason.INVALID_CONTEXT,
                "수술 후 단계가 정의된 템플릿에는 수술 후 주차가 필요합니다",
                detail="weeks_post_op",
            )

        if (
            self.strict_surgery_check
            and ctx.surgery_type == UNSPECIFIED
            and safety.compatible_surgeries
        ):
            return self._deny(
                template,
                DenialReason.INVALID_CONTEXT,
                "수술 호환성 검사를 위해 수술 유형이 필요합니다",
                detail="surgery_type",
            )
        return None

    def _check_surgery(
        self, template: ExerciseTemplate, ctx: PatientContext
    ) -> Optional[SafetyVerdict]:
        """1. 수술 호환성"""
        surgeries = template.safety.surgery_tags
        if ctx.surgery_type in (NO_SURGERY, UNSPECIFIED) or not surgeries:
            return None
        if ctx.surgery_type in surgeries or ANY_SURGERY in surgeries:
            return None
        return self._deny(
            template,
            DenialReason.SURGERY_MISMATCH,
            f"수술 유형 '{ctx.surgery_type}'에 적합하지 않은 운동입니다",
            detail=ctx.surgery_type,
        )

    def _check_phase(
        self, template: ExerciseTemplate, ctx: PatientContext
    ) -> Optional[SafetyVerdict]:
        """2. 수술 후 단계 (주차가 숫자일 때만)"""
        if not ctx.is_post_op:
            return None

        phase = template.safety.phase_for(ctx.weeks_post_op)
        if phase is None:
            return self._deny(
                template,
                DenialReason.PHASE_UNKNOWN,
                f"수술 후 {ctx.weeks_post_op:g}주차에 해당하는 단계가 없습니다",
                detail="weeks_post_op",
            )
        if not phase.allowed:
            return self._deny(
                template,
                DenialReason.PHASE_NOT_ALLOWED,
                f"수술 후 {phase.phase}단계({ctx.weeks_post_op:g}주차)에는 허용되지 않습니다",
                detail=f"phase_{phase.phase}",
            )
        return None

    def _check_pain(
        self, template: ExerciseTemplate, ctx: PatientContext
    ) -> Optional[SafetyVerdict]:
        """3. 통증 상한"""
        safety = template.safety
        if ctx.pain_during > safety.max_pain_during:
            return self._deny(
                template,
                DenialReason.PAIN_CEILING_EXCEEDED,
                f"운동 중 통증 {ctx.pain_during}/10이 상한 {safety.max_pain_during}을 초과합니다",
                detail="pain_during",
            )
        if ctx.pain_after_24h > safety.max_pain_after_24h:
            return self._deny(
                template,
                DenialReason.PAIN_CEILING_EXCEEDED,
                f"24시간 후 통증 {ctx.pain_after_24h}/10이 상한 {safety.max_pain_after_24h}을 초과합니다",
                detail="pain_after_24h",
            )
        return None

    def _matches(self, tags: FrozenSet[str], clinical: FrozenSet) -> Tuple[str, ...]:
        """태그 정확 일치 (정렬)"""
        return tuple(sorted(tags & {c.tag for c in clinical}))

    def _deny(
        self,
        template: ExerciseTemplate,
        reason: DenialReason,
        message: str,
        detail: Optional[str] = None,
    ) -> SafetyVerdict:
        logger.debug(f"처방 거부 [{template.id}] {reason.value}: {message}")
        return SafetyVerdict.deny(reason, message, detail=detail)
