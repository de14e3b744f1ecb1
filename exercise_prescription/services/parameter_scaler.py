"""파라미터 스케일링 서비스

3단계 스케일링:
- reduced: 범위 1/4 지점 반복, 최소 세트
- base: 반복/세트 중간값
- advanced: 최대 반복/세트

수정사항이 있는 수술 후 단계에서 허용된 경우, 또는 직전 세션의 통증 신호등이
red인 경우 reduced로 제한한다.
감소 수정사항(small range, reduced hold time 등)은 유지/휴식 시간을 절반으로 줄인다.
"""

from typing import Iterable, Optional

from langsmith import traceable

from shared.models import difficulty_index
from exercise_prescription.models.instance import PrescribedParameters, ResolvedVariant, ScalingTier
from exercise_prescription.models.template import ExerciseTemplate

REDUCTION_TAGS = frozenset({
    "small_range",
    "smaller_range",
    "reduced_range",
    "partial_range",
    "limited_range",
    "low_range",
    "reduced_hold_time",
    "reduced_hold",
    "shorter_hold",
    "protected_rom",
    "gentle_stretching",
})


def _halve(seconds: int) -> int:
    if seconds <= 0:
        return 0
    return max(1, seconds // 2)


class ParameterScaler:
    """처방 파라미터 계산"""

    def scaling_tier(
        self,
        template: ExerciseTemplate,
        difficulty: str,
        modifications: Iterable[str] = (),
        pain_light: Optional[str] = None,
    ) -> ScalingTier:
        """해석된 난이도와 기본 난이도 비교 (수정사항 있거나 직전 통증 red면 reduced)"""
        if tuple(modifications) or pain_light == "red":
            return "reduced"

        delta = difficulty_index(difficulty) - difficulty_index(template.difficulty.base)
        if delta < 0:
            return "reduced"
        if delta > 0:
            return "advanced"
        return "base"

    @traceable(name="parameter_scaling")
    def scale(
        self,
        template: ExerciseTemplate,
        variant: ResolvedVariant,
        modifications: Iterable[str] = (),
        pain_light: Optional[str] = None,
    ) -> PrescribedParameters:
        """
        구체 파라미터 계산

        Args:
            template: 운동 템플릿
            variant: 해석된 변형
            modifications: 허용 단계의 수정사항 태그
            pain_light: 직전 세션의 통증 신호등 (green / yellow / red)

        Returns:
            PrescribedParameters
        """
        modifications = tuple(modifications)
        tier = self.scaling_tier(template, variant.difficulty, modifications, pain_light)

        if tier == "reduced":
            reps, sets = template.reps.quarter, template.sets.min
        elif tier == "advanced":
            reps, sets = template.reps.max, template.sets.max
        else:
            reps, sets = template.reps.midpoint, template.sets.midpoint

        hold, rest = template.hold_seconds, template.rest_seconds
        if REDUCTION_TAGS.intersection(modifications):
            hold, rest = _halve(hold), _halve(rest)

        return PrescribedParameters(
            reps=reps,
            sets=sets,
            hold_seconds=hold,
            rest_seconds=rest,
            tier=tier,
        )
