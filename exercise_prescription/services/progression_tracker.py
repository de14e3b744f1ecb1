"""진행 추적 서비스

(환자, 템플릿)별 상태 머신:
1. holding → progressing: 진행 기준(최소 수행률 포함)을 연속 일수만큼 충족하고
   선행 운동을 모두 숙달 (난이도 +1, 최대 허용 난이도 상한)
2. holding/progressing → regressing: 퇴행 트리거 발동 (난이도 -1, 최소 허용 난이도 하한)
3. regressing/progressing → holding: 트리거 없는 세션 1회
4. any → discontinued: 임상의 중단 또는 연속 퇴행 한도 도달 (보관 처리)

같은 session_id의 결과는 한 번만 반영된다.
"""

from datetime import datetime
from typing import Dict, List, Optional, Tuple, Union
import logging

from langsmith import traceable

from exercise_prescription.config import settings
from exercise_prescription.exceptions import StateNotFoundError, VersionConflictError
from exercise_prescription.models.context import SessionOutcome
from exercise_prescription.models.progression import (
    ProgressionDecision,
    ProgressionState,
    TransitionRecord,
)
from exercise_prescription.models.template import ExerciseTemplate
from exercise_prescription.services.state_store import (
    InMemoryProgressionStore,
    ProgressionStateStore,
)
from exercise_prescription.services.template_repository import (
    TemplateRepository,
    get_template_repository,
)
from shared.models import difficulty_index

logger = logging.getLogger(__name__)

_RESET_COUNTERS = {
    "consecutive_pain_free_sessions": 0,
    "consecutive_days": 0,
    "last_qualifying_date": None,
}


def _or_default(value: Optional[int], default: int) -> int:
    """명시값 우선 (0 포함), None이면 설정값"""
    return default if value is None else value


class ProgressionTracker:
    """진행 추적 서비스"""

    def __init__(
        self,
        store: Optional[ProgressionStateStore] = None,
        repository: Optional[TemplateRepository] = None,
        stale_threshold_days: int = None,
        max_consecutive_regressions: int = None,
        min_adherence: float = None,
        processed_session_window: int = None,
        state_update_retries: int = None,
    ):
        """
        Args:
            store: 상태 저장소 (기본값: 메모리 저장소)
            repository: 템플릿 저장소 (ID로 조회할 때 사용)
            stale_threshold_days: 연속 기록 리셋 기준 (일)
            max_consecutive_regressions: 연속 퇴행 한도 (0이면 비활성)
            min_adherence: 진행 기준 충족으로 인정할 최소 수행률 (0-1)
            processed_session_window: 보관할 처리 세션 ID 수
            state_update_retries: 버전 충돌 재시도 횟수
        """
        self.store = store or InMemoryProgressionStore()
        self._repository = repository
        self.stale_threshold_days = _or_default(
            stale_threshold_days, settings.stale_threshold_days
        )
        self.max_consecutive_regressions = _or_default(
            max_consecutive_regressions, settings.max_consecutive_regressions
        )
        self.min_adherence = _or_default(min_adherence, settings.min_adherence)
        self.processed_session_window = _or_default(
            processed_session_window, settings.processed_session_window
        )
        self.state_update_retries = _or_default(
            state_update_retries, settings.state_update_retries
        )

        if self.stale_threshold_days < 0 or self.max_consecutive_regressions < 0:
            raise ValueError("stale_threshold_days, max_consecutive_regressions는 0 이상이어야 합니다")
        if self.processed_session_window < 1 or self.state_update_retries < 1:
            raise ValueError("processed_session_window, state_update_retries는 1 이상이어야 합니다")
        if not 0 <= self.min_adherence <= 1:
            raise ValueError("min_adherence는 0-1 범위여야 합니다")

    @property
    def repository(self) -> TemplateRepository:
        if self._repository is None:
            self._repository = get_template_repository()
        return self._repository

    def _template(self, template: Union[ExerciseTemplate, str]) -> ExerciseTemplate:
        if isinstance(template, ExerciseTemplate):
            return template
        return self.repository.get(template)

    def get_state(self, patient_id: str, template_id: str) -> Optional[ProgressionState]:
        return self.store.get((patient_id, template_id))

    def unmet_prerequisites(
        self, patient_id: str, template: Union[ExerciseTemplate, str]
    ) -> Tuple[str, ...]:
        """아직 숙달하지 않은 선행 운동 ID (한 번도 진행하지 않았으면 미숙달)"""
        template = self._template(template)
        unmet = []
        for prerequisite in template.safety.progression_criteria.prerequisite_exercises:
            state = self.store.get((patient_id, prerequisite))
            if state is None or not state.mastered:
                unmet.append(prerequisite)
        return tuple(unmet)

    def ensure_state(
        self,
        patient_id: str,
        template: Union[ExerciseTemplate, str],
        initial_tier: Optional[str] = None,
    ) -> ProgressionState:
        """
        상태 조회, 없으면 생성 (최초 처방 시)

        Args:
            patient_id: 환자 ID
            template: 템플릿 또는 ID
            initial_tier: 시작 난이도 (기본값: 템플릿 기본 난이도)
        """
        template = self._template(template)
        key = (patient_id, template.id)

        with self.store.lock(key):
            existing = self.store.get(key)
            if existing is not None:
                return existing

            tier = initial_tier if initial_tier in template.difficulty.allowed else None
            state = ProgressionState(
                patient_id=patient_id,
                template_id=template.id,
                tier=tier or template.difficulty.base,
            )
            logger.info(f"진행 상태 생성 [{patient_id}/{template.id}] 난이도 {state.tier}")
            return self.store.save(state, expected_version=0)

    @traceable(name="progression_session_update")
    def record_session(
        self,
        patient_id: str,
        template: Union[ExerciseTemplate, str],
        outcome: SessionOutcome,
    ) -> ProgressionDecision:
        """
        완료된 세션 결과 반영

        Args:
            patient_id: 환자 ID
            template: 템플릿 또는 ID
            outcome: 세션 결과

        Returns:
            ProgressionDecision (중복 세션이면 action="duplicate")

        Raises:
            ValueError: 결과의 template_id가 템플릿과 다름
            VersionConflictError: 재시도 후에도 버전 충돌
        """
        template = self._template(template)
        if outcome.template_id != template.id:
            raise ValueError(
                f"세션 결과 템플릿({outcome.template_id})과 대상 템플릿({template.id})이 다릅니다"
            )

        self.ensure_state(patient_id, template)
        key = (patient_id, template.id)

        conflict: Optional[VersionConflictError] = None
        for attempt in range(self.state_update_retries):
            with self.store.lock(key):
                state = self.store.get(key)
                if state is None:
                    raise StateNotFoundError(key)

                decision = self._apply(template, state, outcome)
                if decision.action in ("duplicate", "ignored"):
                    return decision

                try:
                    saved = self.store.save(decision.state, expected_version=state.version)
                except VersionConflictError as e:
                    conflict = e
                    logger.warning(
                        f"진행 상태 버전 충돌, 재시도 {attempt + 1}/{self.state_update_retries}: {e}"
                    )
                    continue

            if decision.tier_changed or decision.action == "discontinue":
                logger.info(
                    f"진행 상태 전이 [{patient_id}/{template.id}] {decision.action}: "
                    f"{decision.previous_tier} → {decision.new_tier}"
                )
            return decision.model_copy(update={"state": saved})

        raise conflict

    @traceable(name="progression_discontinue")
    def discontinue(
        self,
        patient_id: str,
        template_id: str,
        reason: str = "임상의 중단",
        at: Optional[datetime] = None,
    ) -> ProgressionDecision:
        """
        임상의 중단 처리 (삭제하지 않고 보관)

        Raises:
            StateNotFoundError: 상태 없음
        """
        key = (patient_id, template_id)
        at = at or datetime.now()

        with self.store.lock(key):
            state = self.store.get(key)
            if state is None:
                raise StateNotFoundError(key)
            if state.archived:
                return ProgressionDecision(
                    action="ignored",
                    state=state,
                    previous_tier=state.tier,
                    new_tier=state.tier,
                    message="이미 중단된 운동입니다.",
                )

            updated = self._archive(state, at, reason)
            saved = self.store.save(updated, expected_version=state.version)

        logger.info(f"진행 중단 [{patient_id}/{template_id}]: {reason}")
        return ProgressionDecision(
            action="discontinue",
            state=saved,
            previous_tier=state.tier,
            new_tier=saved.tier,
            message=reason,
        )

    # ============================================
    # 상태 전이
    # ============================================

    def _apply(
        self,
        template: ExerciseTemplate,
        state: ProgressionState,
        outcome: SessionOutcome,
    ) -> ProgressionDecision:
        """세션 결과 → 다음 상태 (저장하지 않음)"""
        light = outcome.pain_response.light

        if state.has_processed(outcome.session_id):
            return ProgressionDecision(
                action="duplicate",
                state=state,
                previous_tier=state.tier,
                new_tier=state.tier,
                pain_light=light,
                message=f"이미 반영된 세션입니다: {outcome.session_id}",
            )

        if not state.is_active:
            return ProgressionDecision(
                action="ignored",
                state=state,
                previous_tier=state.tier,
                new_tier=state.tier,
                pain_light=light,
                message="중단된 운동의 세션 결과는 반영하지 않습니다.",
            )

        now = outcome.completed_at
        update: Dict = {}

        # 오랜만이면 연속 기록 리셋
        if state.last_session_at is not None:
            days_since = (now - state.last_session_at).days
            if days_since >= self.stale_threshold_days:
                logger.info(
                    f"{days_since}일만의 세션 [{state.patient_id}/{state.template_id}]: 연속 기록 리셋"
                )
                update.update(_RESET_COUNTERS, last_pain_during=None)

        baseline = outcome.pain_before
        if baseline is None:
            baseline = update.get("last_pain_during", state.last_pain_during)

        triggers = self._fired_triggers(template, outcome, baseline)
        qualifying = not triggers and self._qualifies(template, outcome)

        if qualifying:
            last_date = update.get("last_qualifying_date", state.last_qualifying_date)
            days = update.get("consecutive_days", state.consecutive_days)
            sessions = update.get(
                "consecutive_pain_free_sessions", state.consecutive_pain_free_sessions
            )
            today = now.date()
            if last_date == today:
                pass  # 같은 날은 중복 집계하지 않음
            elif last_date is not None and (today - last_date).days == 1:
                days += 1
            else:
                days = 1
            update.update(
                consecutive_days=days,
                consecutive_pain_free_sessions=sessions + 1,
                last_qualifying_date=today,
            )
        else:
            update.update(_RESET_COUNTERS)

        update.update(
            last_session_at=now,
            last_pain_during=outcome.pain_during,
            processed_session_ids=(
                *state.processed_session_ids, outcome.session_id
            )[-self.processed_session_window:],
        )

        tier = state.tier
        criteria = template.safety.progression_criteria

        if triggers:
            regressions = state.consecutive_regressions + 1
            tier = self._step(template, state.tier, -1)
            update.update(_RESET_COUNTERS, consecutive_regressions=regressions, last_regression_at=now)

            if self.max_consecutive_regressions and regressions >= self.max_consecutive_regressions:
                action, status = "discontinue", "discontinued"
                message = f"연속 {regressions}회 퇴행으로 운동을 중단합니다. 임상의 검토가 필요합니다."
            else:
                action, status = "regress", "regressing"
                message = f"퇴행 트리거 발동 ({', '.join(triggers)}). 난이도를 낮춥니다."

        elif (
            qualifying
            and state.status == "holding"
            and update["consecutive_days"] >= criteria.min_consecutive_days
        ):
            update["consecutive_regressions"] = 0
            next_tier = self._step(template, state.tier, +1)
            unmet = self.unmet_prerequisites(state.patient_id, template)
            if unmet:
                action, status = "hold", "holding"
                message = f"선행 운동을 먼저 숙달해야 합니다: {', '.join(unmet)}"
            elif next_tier != state.tier:
                tier = next_tier
                action, status = "progress", "progressing"
                message = f"{criteria.min_consecutive_days}일 연속 기준 충족. 난이도를 올립니다."
                update.update(_RESET_COUNTERS)
            else:
                action, status = "hold", "holding"
                message = "최고 난이도에 도달했습니다. 현재 수준을 유지합니다."

        else:
            update["consecutive_regressions"] = 0
            action, status = "hold", "holding"
            # 진행/퇴행 직후에는 한 번 유지 단계를 거쳐야 다시 진행
            if state.status != "holding":
                message = "트리거 없는 세션입니다. 유지 단계로 돌아갑니다."
            elif not criteria.evaluable:
                message = "자동 평가 가능한 진행 기준이 없습니다. 현재 수준을 유지합니다."
            elif qualifying:
                message = (
                    f"기준 충족 {update['consecutive_days']}/{criteria.min_consecutive_days}일. "
                    "현재 수준을 유지합니다."
                )
            else:
                message = "현재 수준을 유지합니다."

        update.update(tier=tier, status=status)
        new_state = state.model_copy(update=update)

        if status != state.status or tier != state.tier:
            new_state = self._record_transition(
                new_state, state, now, outcome.session_id, action
            )
        if status == "discontinued":
            new_state = new_state.model_copy(update={"archived": True, "archived_at": now})

        return ProgressionDecision(
            action=action,
            state=new_state,
            previous_tier=state.tier,
            new_tier=tier,
            triggers=triggers,
            qualifying=qualifying,
            pain_light=light,
            message=message,
        )

    def _fired_triggers(
        self,
        template: ExerciseTemplate,
        outcome: SessionOutcome,
        baseline: Optional[int],
    ) -> Tuple[str, ...]:
        """발동된 퇴행 트리거"""
        rules = template.safety.regression_triggers
        fired: List[str] = []

        # 임계값 0은 어떤 증가든 트리거
        threshold = max(rules.pain_increase, 1)
        if baseline is not None and outcome.pain_during - baseline >= threshold:
            fired.append("pain_increase")
        if rules.swelling_present and outcome.swelling:
            fired.append("swelling")
        if rules.form_breakdown and outcome.form_breakdown:
            fired.append("form_breakdown")
        for tag in sorted(outcome.compensations & rules.compensation_tags):
            fired.append(f"compensation:{tag}")

        return tuple(fired)

    def _qualifies(self, template: ExerciseTemplate, outcome: SessionOutcome) -> bool:
        """진행 기준 충족 여부 (평가 불가 기준이면 False)"""
        criteria = template.safety.progression_criteria
        if not criteria.evaluable:
            return False
        if criteria.form_score is not None:
            if outcome.form_score is None or outcome.form_score < criteria.form_score:
                return False
        return (
            outcome.adherence >= self.min_adherence
            and outcome.pain_free_reps >= criteria.min_pain_free_reps
            and outcome.pain_during <= criteria.max_pain_during
            and outcome.pain_after <= criteria.max_pain_after
        )

    def _step(self, template: ExerciseTemplate, tier: str, direction: int) -> str:
        """허용 난이도 내에서 한 단계 이동 (상한/하한 고정)"""
        allowed = sorted(template.difficulty.allowed, key=difficulty_index)
        if tier not in allowed:
            return template.difficulty.base
        index = allowed.index(tier) + direction
        return allowed[min(max(index, 0), len(allowed) - 1)]

    def _record_transition(
        self,
        new_state: ProgressionState,
        old_state: ProgressionState,
        at: datetime,
        session_id: Optional[str],
        reason: str,
    ) -> ProgressionState:
        record = TransitionRecord(
            at=at,
            from_status=old_state.status,
            to_status=new_state.status,
            from_tier=old_state.tier,
            to_tier=new_state.tier,
            session_id=session_id,
            reason=reason,
        )
        return new_state.model_copy(update={"history": (*new_state.history, record)})

    def _archive(self, state: ProgressionState, at: datetime, reason: str) -> ProgressionState:
        archived = state.model_copy(
            update={"status": "discontinued", "archived": True, "archived_at": at}
        )
        return self._record_transition(archived, state, at, None, reason)
