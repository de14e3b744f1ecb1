"""진행 상태 저장소

영속 저장은 호스트 애플리케이션 책임이다. 여기서는 인터페이스와
메모리 참조 구현만 제공한다 (키별 잠금 + 버전 검사).
"""

from abc import ABC, abstractmethod
from typing import ContextManager, Dict, List, Optional
import threading

from exercise_prescription.exceptions import VersionConflictError
from exercise_prescription.models.progression import ProgressionState, StateKey


class ProgressionStateStore(ABC):
    """진행 상태 저장소 인터페이스"""

    @abstractmethod
    def get(self, key: StateKey) -> Optional[ProgressionState]:
        """상태 조회 (없으면 None)"""

    @abstractmethod
    def save(self, state: ProgressionState, expected_version: int) -> ProgressionState:
        """
        낙관적 동시성 저장

        Args:
            state: 저장할 상태
            expected_version: 읽을 때의 버전 (신규 상태는 0)

        Returns:
            버전이 1 증가한 저장된 상태

        Raises:
            VersionConflictError: 저장된 버전이 expected_version과 다름
        """

    @abstractmethod
    def lock(self, key: StateKey) -> ContextManager:
        """키별 잠금 (읽기-수정-쓰기 직렬화)"""


class InMemoryProgressionStore(ProgressionStateStore):
    """메모리 참조 구현"""

    def __init__(self):
        self._states: Dict[StateKey, ProgressionState] = {}
        self._locks: Dict[StateKey, threading.Lock] = {}
        self._guard = threading.Lock()

    def get(self, key: StateKey) -> Optional[ProgressionState]:
        with self._guard:
            return self._states.get(key)

    def save(self, state: ProgressionState, expected_version: int) -> ProgressionState:
        with self._guard:
            current = self._states.get(state.key)
            actual = current.version if current is not None else 0
            if actual != expected_version:
                raise VersionConflictError(state.key, expected_version, actual)

            saved = state.model_copy(update={"version": expected_version + 1})
            self._states[state.key] = saved
            return saved

    def lock(self, key: StateKey) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(key, threading.Lock())

    def for_patient(self, patient_id: str, include_archived: bool = False) -> List[ProgressionState]:
        """환자의 상태 목록 (템플릿 ID 순)"""
        with self._guard:
            states = [s for s in self._states.values() if s.patient_id == patient_id]
        if not include_archived:
            states = [s for s in states if not s.archived]
        return sorted(states, key=lambda s: s.template_id)
