"""변형 해석 서비스

템플릿의 허용 축(자세 × 장비 × 편측성 × 난이도)과 환자 컨텍스트의
교집합을 선호 순서로 나열한다. 순수 함수이며 같은 입력에 같은 결과를 낸다.
"""

from itertools import product
from typing import AbstractSet, List, Optional, Union, Mapping, Any

from langsmith import traceable

from shared.models import BODYWEIGHT, UNILATERAL, DIFFICULTY_ORDER, difficulty_index, within_load
from exercise_prescription.models.context import UNSPECIFIED, PatientContext, coerce_context
from exercise_prescription.models.instance import DenialReason, ResolvedVariant, VariantResolution
from exercise_prescription.models.template import ExerciseTemplate


class VariantResolver:
    """변형 해석"""

    @traceable(name="variant_resolution")
    def resolve(
        self,
        template: ExerciseTemplate,
        context: Union[PatientContext, Mapping[str, Any]],
        equipment_limit: Optional[AbstractSet[str]] = None,
    ) -> VariantResolution:
        """
        허용 변형 목록 계산

        Args:
            template: 운동 템플릿
            context: 환자 컨텍스트 (원본 매핑 허용)
            equipment_limit: 추가 장비 제한 (플랜 장비 예산용, 맨몸은 항상 허용)

        Returns:
            VariantResolution (선호 순서, 비어 있으면 reason 포함)
        """
        ctx, error = coerce_context(context)
        if ctx is None:
            return VariantResolution(reason=DenialReason.INVALID_CONTEXT, detail=error or "")

        axes = {
            "difficulty": self._difficulties(template, ctx),
            "position": self._positions(template, ctx),
            "equipment": self._equipment(template, ctx, equipment_limit),
            "laterality": self._lateralities(template, ctx),
        }

        empty = [name for name, values in axes.items() if not values]
        if empty:
            return VariantResolution(
                reason=DenialReason.UNRESOLVABLE_VARIANT,
                detail=", ".join(empty),
            )

        variants = tuple(
            ResolvedVariant(
                difficulty=difficulty,
                position=position,
                equipment=equipment,
                laterality=laterality,
            )
            for difficulty, position, equipment, laterality in product(
                axes["difficulty"], axes["position"], axes["equipment"], axes["laterality"]
            )
        )
        return VariantResolution(variants=variants)

    def _positions(self, template: ExerciseTemplate, ctx: PatientContext) -> List[str]:
        preferred = None if ctx.preferred_position == UNSPECIFIED else ctx.preferred_position
        return template.position.ordered(preferred)

    def _equipment(
        self,
        template: ExerciseTemplate,
        ctx: PatientContext,
        equipment_limit: Optional[AbstractSet[str]] = None,
    ) -> List[str]:
        """장비: 허용 ∩ (보유 ∪ 맨몸), 수술 후 단계의 최대 부하 이내"""
        axis = template.equipment
        max_load = self._phase_load(template, ctx)

        if ctx.equipment_specified:
            available = set(ctx.available_equipment) | {BODYWEIGHT}
        elif axis.base == BODYWEIGHT:
            # 보유 장비 미지정: 기본 장비가 맨몸일 때만 해석 가능
            available = {BODYWEIGHT}
        else:
            return []

        if equipment_limit is not None:
            available &= set(equipment_limit) | {BODYWEIGHT}

        return [
            e for e in axis.ordered()
            if e in available and (max_load is None or within_load(e, max_load))
        ]

    def _phase_load(self, template: ExerciseTemplate, ctx: PatientContext) -> Optional[str]:
        """현재 수술 후 단계의 최대 부하 (없으면 None)"""
        if not ctx.is_post_op:
            return None
        phase = template.safety.phase_for(ctx.weeks_post_op)
        return phase.max_load if phase else None

    def _lateralities(self, template: ExerciseTemplate, ctx: PatientContext) -> List[str]:
        """편측성: 편측 선호는 필수 조건, 그 외 선호는 순서만 결정"""
        preferred = ctx.preferred_laterality

        if preferred in UNILATERAL:
            return [preferred] if preferred in template.laterality.allowed else []

        return template.laterality.ordered(None if preferred == UNSPECIFIED else preferred)

    def _difficulties(self, template: ExerciseTemplate, ctx: PatientContext) -> List[str]:
        """난이도: 허용 ∩ [현재-1, 현재+1], 현재 난이도 우선"""
        tier = ctx.tier_for(template.id) or template.difficulty.base
        center = difficulty_index(tier)
        window = {
            DIFFICULTY_ORDER[i]
            for i in range(max(0, center - 1), min(len(DIFFICULTY_ORDER), center + 2))
        }
        return [d for d in template.difficulty.ordered(tier) if d in window]
