"""진행 추적 테스트"""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

import pytest

from exercise_prescription.exceptions import StateNotFoundError, VersionConflictError
from exercise_prescription.models import (
    ProgressionState,
    TransitionRecord,
    parse_template_record,
)
from exercise_prescription.services import InMemoryProgressionStore, ProgressionTracker
from shared.models import difficulty_index


class ConflictingStore(InMemoryProgressionStore):
    """기존 상태 갱신 시 지정 횟수만큼 버전 충돌을 내는 저장소"""

    def __init__(self, conflicts: int):
        super().__init__()
        self.conflicts = conflicts

    def save(self, state, expected_version):
        if expected_version > 0 and self.conflicts > 0:
            self.conflicts -= 1
            raise VersionConflictError(state.key, expected_version, expected_version + 1)
        return super().save(state, expected_version)


class TestProgress:
    def test_five_qualifying_days_progress_once(self, tracker, dead_bug, make_outcome):
        decisions = [
            tracker.record_session("P001", dead_bug, make_outcome(f"s{day}", day=day))
            for day in range(5)
        ]

        assert [d.action for d in decisions] == ["hold"] * 4 + ["progress"]
        assert decisions[-1].previous_tier == "intermediate"
        assert decisions[-1].new_tier == "advanced"

        state = tracker.get_state("P001", "core_dead_bug")
        assert state.status == "progressing"
        assert state.tier == "advanced"
        assert state.consecutive_days == 0
        assert [(r.from_tier, r.to_tier) for r in state.history] == [("intermediate", "advanced")]

    def test_next_clean_session_returns_to_holding(self, tracker, dead_bug, make_outcome):
        for day in range(5):
            tracker.record_session("P001", dead_bug, make_outcome(f"s{day}", day=day))

        decision = tracker.record_session("P001", dead_bug, make_outcome("s5", day=5))

        assert decision.action == "hold"
        assert decision.state.status == "holding"
        assert decision.state.tier == "advanced"

    def test_ceiling_holds(self, tracker, dead_bug, make_outcome):
        tracker.ensure_state("P001", dead_bug, initial_tier="advanced")

        decisions = [
            tracker.record_session("P001", dead_bug, make_outcome(f"s{day}", day=day))
            for day in range(5)
        ]

        assert decisions[-1].action == "hold"
        assert decisions[-1].state.tier == "advanced"

    def test_same_day_counts_once(self, tracker, dead_bug, make_outcome):
        tracker.record_session("P001", dead_bug, make_outcome("a", day=0))
        decision = tracker.record_session("P001", dead_bug, make_outcome("b", day=0))

        assert decision.state.consecutive_days == 1
        assert decision.state.consecutive_pain_free_sessions == 2

    def test_gap_restarts_day_count(self, tracker, dead_bug, make_outcome):
        tracker.record_session("P001", dead_bug, make_outcome("a", day=0))
        tracker.record_session("P001", dead_bug, make_outcome("b", day=1))
        decision = tracker.record_session("P001", dead_bug, make_outcome("c", day=3))

        assert decision.state.consecutive_days == 1
        assert decision.state.consecutive_pain_free_sessions == 3

    def test_stale_history_resets_counters(self, tracker, dead_bug, make_outcome):
        tracker.record_session("P001", dead_bug, make_outcome("a", day=0))
        tracker.record_session("P001", dead_bug, make_outcome("b", day=1))
        decision = tracker.record_session("P001", dead_bug, make_outcome("c", day=12))

        assert decision.state.consecutive_days == 1
        assert decision.state.consecutive_pain_free_sessions == 1

    def test_non_qualifying_session_resets(self, tracker, dead_bug, make_outcome):
        tracker.record_session("P001", dead_bug, make_outcome("a", day=0))
        decision = tracker.record_session(
            "P001", dead_bug, make_outcome("b", day=1, pain_free_reps=8)
        )

        assert decision.action == "hold"
        assert not decision.qualifying
        assert decision.state.consecutive_days == 0

    def test_missing_form_score_does_not_qualify(self, tracker, dead_bug, make_outcome):
        decision = tracker.record_session(
            "P001", dead_bug, make_outcome("a", form_score=None)
        )

        assert not decision.qualifying

    def test_low_adherence_does_not_qualify(self, tracker, dead_bug, make_outcome):
        decision = tracker.record_session(
            "P001", dead_bug, make_outcome("a", adherence=0.5)
        )

        assert not decision.qualifying
        assert decision.state.consecutive_days == 0

    def test_legacy_criteria_never_progress(self, tracker, repository, make_outcome):
        template = repository.get("elbow_extension_stretch")

        decisions = [
            tracker.record_session(
                "P001", template,
                make_outcome(f"s{day}", day=day, template_id="elbow_extension_stretch"),
            )
            for day in range(10)
        ]

        assert {d.action for d in decisions} == {"hold"}
        assert decisions[-1].state.tier == template.difficulty.base


class TestRegress:
    def test_pain_increase_regresses(self, tracker, dead_bug, make_outcome):
        tracker.record_session("P001", dead_bug, make_outcome("a", day=0, pain_during=1))
        decision = tracker.record_session(
            "P001", dead_bug, make_outcome("b", day=1, pain_during=3)
        )

        assert decision.action == "regress"
        assert decision.triggers == ("pain_increase",)
        assert decision.new_tier == "beginner"
        assert decision.state.status == "regressing"

    def test_pain_before_is_baseline(self, tracker, dead_bug, make_outcome):
        decision = tracker.record_session(
            "P001", dead_bug, make_outcome("a", pain_before=0, pain_during=2)
        )

        assert decision.action == "regress"

    def test_small_increase_holds(self, tracker, dead_bug, make_outcome):
        tracker.record_session("P001", dead_bug, make_outcome("a", day=0, pain_during=1))
        decision = tracker.record_session(
            "P001", dead_bug, make_outcome("b", day=1, pain_during=2)
        )

        assert decision.action == "hold"

    def test_compensation_trigger(self, tracker, dead_bug, make_outcome):
        decision = tracker.record_session(
            "P001", dead_bug, make_outcome("a", compensations=["Breath holding"])
        )

        assert decision.triggers == ("compensation:breath_holding",)
        assert decision.action == "regress"

    def test_disabled_trigger_is_ignored(self, tracker, dead_bug, make_outcome):
        # dead bug은 부종 트리거를 쓰지 않음
        decision = tracker.record_session("P001", dead_bug, make_outcome("a", swelling=True))

        assert decision.triggers == ()

    def test_regress_floors_at_lowest_tier(self, tracker, dead_bug, make_outcome):
        tracker.ensure_state("P001", dead_bug, initial_tier="beginner")

        decision = tracker.record_session(
            "P001", dead_bug, make_outcome("a", form_breakdown=True)
        )

        assert decision.action == "regress"
        assert decision.new_tier == "beginner"

    def test_repeated_regressions_discontinue(self, tracker, dead_bug, make_outcome):
        outcomes = [
            make_outcome("a", day=0, form_breakdown=True),
            make_outcome("b", day=1, form_breakdown=True),
            make_outcome("c", day=2, compensations=["Back arching"]),
        ]

        decisions = [tracker.record_session("P001", dead_bug, o) for o in outcomes]

        assert [d.action for d in decisions] == ["regress", "regress", "discontinue"]
        state = decisions[-1].state
        assert state.status == "discontinued"
        assert state.archived
        assert state.archived_at == outcomes[-1].completed_at

        ignored = tracker.record_session("P001", dead_bug, make_outcome("d", day=3))
        assert ignored.action == "ignored"
        assert tracker.get_state("P001", "core_dead_bug").version == state.version

    def test_clean_session_resets_regression_count(self, tracker, dead_bug, make_outcome):
        tracker.record_session("P001", dead_bug, make_outcome("a", day=0, form_breakdown=True))
        decision = tracker.record_session("P001", dead_bug, make_outcome("b", day=1))

        assert decision.state.consecutive_regressions == 0
        assert decision.state.status == "holding"


class TestStateMachine:
    @pytest.fixture
    def one_day_bug(self, raw_dead_bug):
        raw_dead_bug["safetyData"]["progressionCriteria"]["minConsecutiveDays"] = 1
        return parse_template_record(raw_dead_bug)

    def test_regressing_returns_to_holding_before_progress(self, tracker, one_day_bug, make_outcome):
        outcomes = [make_outcome("a", day=0, form_breakdown=True)]
        outcomes += [make_outcome(f"s{day}", day=day) for day in range(1, 5)]

        decisions = [tracker.record_session("P001", one_day_bug, o) for o in outcomes]

        assert [d.action for d in decisions] == ["regress", "hold", "progress", "hold", "progress"]
        history = tracker.get_state("P001", "core_dead_bug").history
        assert [(r.from_status, r.to_status) for r in history] == [
            ("holding", "regressing"),
            ("regressing", "holding"),
            ("holding", "progressing"),
            ("progressing", "holding"),
            ("holding", "progressing"),
        ]

    def test_progressing_never_progresses_again(self, tracker, one_day_bug, make_outcome):
        first = tracker.record_session("P001", one_day_bug, make_outcome("a", day=0))
        second = tracker.record_session("P001", one_day_bug, make_outcome("b", day=1))

        assert first.action == "progress"
        assert second.action == "hold"
        assert second.new_tier == first.new_tier == "advanced"
        assert second.state.status == "holding"


class TestPrerequisites:
    @pytest.fixture
    def gated_bug(self, raw_dead_bug):
        criteria = raw_dead_bug["safetyData"]["progressionCriteria"]
        criteria["minConsecutiveDays"] = 1
        criteria["prerequisiteExercises"] = ["core_front_plank"]
        return parse_template_record(raw_dead_bug)

    def _master_front_plank(self, tracker):
        at = datetime(2025, 3, 1, 9, 0)
        state = ProgressionState(
            patient_id="P001",
            template_id="core_front_plank",
            tier="advanced",
            status="progressing",
            history=(
                TransitionRecord(
                    at=at,
                    from_status="holding",
                    to_status="progressing",
                    from_tier="intermediate",
                    to_tier="advanced",
                    reason="progress",
                ),
            ),
        )
        tracker.store.save(state, expected_version=0)

    def test_unmastered_prerequisite_blocks_progress(self, tracker, gated_bug, make_outcome):
        decision = tracker.record_session("P001", gated_bug, make_outcome("a", day=0))

        assert decision.qualifying
        assert decision.action == "hold"
        assert decision.new_tier == "intermediate"
        assert "core_front_plank" in decision.message
        assert tracker.unmet_prerequisites("P001", gated_bug) == ("core_front_plank",)

    def test_prescribed_but_never_progressed_is_not_mastered(self, tracker, gated_bug, make_outcome):
        tracker.ensure_state("P001", "core_front_plank")

        decision = tracker.record_session("P001", gated_bug, make_outcome("a", day=0))

        assert decision.action == "hold"

    def test_mastered_prerequisite_allows_progress(self, tracker, gated_bug, make_outcome):
        self._master_front_plank(tracker)

        decision = tracker.record_session("P001", gated_bug, make_outcome("a", day=0))

        assert tracker.unmet_prerequisites("P001", gated_bug) == ()
        assert decision.action == "progress"
        assert decision.new_tier == "advanced"

    def test_prerequisites_are_per_patient(self, tracker, gated_bug):
        self._master_front_plank(tracker)

        assert tracker.unmet_prerequisites("P002", gated_bug) == ("core_front_plank",)


class TestConfiguration:
    def test_zero_stale_threshold_is_kept(self, repository, dead_bug, make_outcome):
        tracker = ProgressionTracker(repository=repository, stale_threshold_days=0)
        tracker.record_session("P001", dead_bug, make_outcome("a", day=0))

        decision = tracker.record_session("P001", dead_bug, make_outcome("b", day=1))

        assert tracker.stale_threshold_days == 0
        assert decision.state.consecutive_days == 1

    def test_zero_regression_limit_disables_discontinue(self, repository, dead_bug, make_outcome):
        tracker = ProgressionTracker(repository=repository, max_consecutive_regressions=0)

        decisions = [
            tracker.record_session(
                "P001", dead_bug, make_outcome(f"s{day}", day=day, form_breakdown=True)
            )
            for day in range(5)
        ]

        assert {d.action for d in decisions} == {"regress"}

    def test_adherence_threshold_is_configurable(self, repository, dead_bug, make_outcome):
        tracker = ProgressionTracker(repository=repository, min_adherence=0.5)

        decision = tracker.record_session("P001", dead_bug, make_outcome("a", adherence=0.5))

        assert decision.qualifying

    @pytest.mark.parametrize(
        "overrides",
        [
            {"state_update_retries": 0},
            {"processed_session_window": 0},
            {"stale_threshold_days": -1},
            {"min_adherence": 1.5},
        ],
    )
    def test_out_of_range_values_are_rejected(self, overrides):
        with pytest.raises(ValueError):
            ProgressionTracker(**overrides)


class TestIdempotence:
    def test_duplicate_session_applied_once(self, tracker, dead_bug, make_outcome):
        outcome = make_outcome("a")
        first = tracker.record_session("P001", dead_bug, outcome)

        second = tracker.record_session("P001", dead_bug, outcome)

        assert second.duplicate
        assert second.state == first.state
        assert tracker.get_state("P001", "core_dead_bug").consecutive_pain_free_sessions == 1

    def test_template_mismatch(self, tracker, dead_bug, make_outcome):
        with pytest.raises(ValueError):
            tracker.record_session("P001", dead_bug, make_outcome("a", template_id="core_bird_dog"))

    def test_concurrent_sessions_are_serialised(self, tracker, dead_bug, make_outcome):
        outcomes = [make_outcome(f"s{i}") for i in range(8)]

        with ThreadPoolExecutor(max_workers=4) as pool:
            list(pool.map(lambda o: tracker.record_session("P001", dead_bug, o), outcomes))

        state = tracker.get_state("P001", "core_dead_bug")
        assert set(state.processed_session_ids) == {o.session_id for o in outcomes}
        assert state.consecutive_pain_free_sessions == 8
        assert state.version == 9

    def test_version_conflict_is_retried(self, repository, dead_bug, make_outcome):
        tracker = ProgressionTracker(
            store=ConflictingStore(conflicts=1), repository=repository, state_update_retries=3
        )
        tracker.record_session("P001", dead_bug, make_outcome("a", day=0))
        tracker.store.conflicts = 2

        decision = tracker.record_session("P001", dead_bug, make_outcome("b", day=1))

        assert decision.state.consecutive_days == 2
        assert decision.state.processed_session_ids == ("a", "b")

    def test_retries_exhausted(self, repository, dead_bug, make_outcome):
        tracker = ProgressionTracker(
            store=ConflictingStore(conflicts=10), repository=repository, state_update_retries=2
        )

        with pytest.raises(VersionConflictError):
            tracker.record_session("P001", dead_bug, make_outcome("a"))


class TestDiscontinue:
    def test_clinician_discontinue_archives(self, tracker, dead_bug):
        tracker.ensure_state("P001", dead_bug)

        decision = tracker.discontinue("P001", "core_dead_bug", reason="수술 부위 감염")

        assert decision.action == "discontinue"
        assert decision.state.archived
        assert decision.state.history[-1].reason == "수술 부위 감염"
        assert tracker.store.for_patient("P001") == []

    def test_discontinue_twice_is_ignored(self, tracker, dead_bug):
        tracker.ensure_state("P001", dead_bug)
        tracker.discontinue("P001", "core_dead_bug")

        assert tracker.discontinue("P001", "core_dead_bug").action == "ignored"

    def test_unknown_state(self, tracker):
        with pytest.raises(StateNotFoundError):
            tracker.discontinue("P001", "core_dead_bug")


def test_tiers_move_one_step_inside_bounds(tracker, dead_bug, make_outcome):
    outcomes = [make_outcome(f"p{day}", day=day) for day in range(5)]
    outcomes += [make_outcome(f"r{day}", day=day, form_breakdown=True) for day in range(5, 7)]
    outcomes += [make_outcome(f"q{day}", day=day) for day in range(7, 20)]

    allowed = {difficulty_index(d) for d in dead_bug.difficulty.allowed}
    for outcome in outcomes:
        decision = tracker.record_session("P001", dead_bug, outcome)
        step = difficulty_index(decision.new_tier) - difficulty_index(decision.previous_tier)
        assert abs(step) <= 1
        assert difficulty_index(decision.new_tier) in allowed


def test_pain_light_reported(tracker, dead_bug, make_outcome):
    decision = tracker.record_session(
        "P001", dead_bug, make_outcome("a", pain_during=6, pain_after=2)
    )

    assert decision.pain_light == "red"
