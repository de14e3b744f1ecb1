"""진행 상태 모델

(환자, 템플릿)별 상태. 최초 처방 시 생성되고, 세션 완료마다 갱신되며,
중단 시 삭제하지 않고 보관(archived) 처리한다.
"""

from datetime import date, datetime
from typing import Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from shared.models import Difficulty

ProgressionStatus = Literal["holding", "progressing", "regressing", "discontinued"]
ProgressionAction = Literal["progress", "hold", "regress", "discontinue", "duplicate", "ignored"]
StateKey = Tuple[str, str]


class TransitionRecord(BaseModel):
    """상태 전이 감사 기록"""

    model_config = ConfigDict(frozen=True)

    at: datetime
    from_status: ProgressionStatus
    to_status: ProgressionStatus
    from_tier: Difficulty
    to_tier: Difficulty
    session_id: Optional[str] = None
    reason: str = ""


class ProgressionState(BaseModel):
    """(환자, 템플릿)별 진행 상태"""

    model_config = ConfigDict(frozen=True)

    patient_id: str
    template_id: str
    tier: Difficulty
    status: ProgressionStatus = "holding"

    # 연속 기록
    consecutive_pain_free_sessions: int = Field(default=0, ge=0)
    consecutive_days: int = Field(default=0, ge=0)
    last_qualifying_date: Optional[date] = None
    last_session_at: Optional[datetime] = None
    last_pain_during: Optional[int] = Field(default=None, ge=0, le=10)

    # 퇴행
    last_regression_at: Optional[datetime] = None
    consecutive_regressions: int = Field(default=0, ge=0)

    # 중복 처리 방지 (최근 세션 ID)
    processed_session_ids: Tuple[str, ...] = ()

    version: int = Field(default=0, ge=0, description="낙관적 동시성 버전")
    archived: bool = False
    archived_at: Optional[datetime] = None
    history: Tuple[TransitionRecord, ...] = ()

    @property
    def key(self) -> StateKey:
        return (self.patient_id, self.template_id)

    @property
    def is_active(self) -> bool:
        return not self.archived and self.status != "discontinued"

    def has_processed(self, session_id: str) -> bool:
        return session_id in self.processed_session_ids

    @property
    def mastered(self) -> bool:
        """한 번이라도 진행(난이도 상승)한 적이 있는지"""
        return any(r.to_status == "progressing" for r in self.history)


class ProgressionDecision(BaseModel):
    """세션 결과 적용 결과"""

    model_config = ConfigDict(frozen=True)

    action: ProgressionAction
    state: ProgressionState
    previous_tier: Difficulty
    new_tier: Difficulty
    triggers: Tuple[str, ...] = Field(default=(), description="발동된 퇴행 트리거")
    qualifying: bool = Field(default=False, description="진행 기준 충족 세션 여부")
    pain_light: Optional[Literal["green", "yellow", "red"]] = None
    message: str = ""

    @property
    def duplicate(self) -> bool:
        return self.action == "duplicate"

    @property
    def tier_changed(self) -> bool:
        return self.previous_tier != self.new_tier
