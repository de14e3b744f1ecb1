"""통증 반응 모델 (공유)"""

from typing import Literal, Optional
from pydantic import BaseModel, Field


class PainResponse(BaseModel):
    """운동 후 통증 반응 (신호등 체계)

    기준:
    - green: 운동 중 ≤3, 운동 후 ≤3, 다음날 ≤2 → 진행 가능
    - red: 운동 중 ≥6, 운동 후 ≥6, 다음날 ≥5 중 하나 → 과부하
    - yellow: 그 외 → 현재 수준 유지
    """

    during: int = Field(..., ge=0, le=10, description="운동 중 통증 (NRS 0-10)")
    after: int = Field(..., ge=0, le=10, description="운동 직후 통증 (NRS 0-10)")
    next_day: Optional[int] = Field(
        default=None, ge=0, le=10, description="다음날 통증 (NRS 0-10)"
    )

    @property
    def light(self) -> Literal["green", "yellow", "red"]:
        """신호등 판정"""
        next_day = self.next_day if self.next_day is not None else 0

        if self.during >= 6 or self.after >= 6 or next_day >= 5:
            return "red"
        if self.during <= 3 and self.after <= 3 and next_day <= 2:
            return "green"
        return "yellow"
