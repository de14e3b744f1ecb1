"""Exercise Prescription 설정

환경 변수 (접두사 REHAB_):
- REHAB_TEMPLATES_DIR: 템플릿 JSON 디렉토리 (기본값: 패키지 내장 데이터)
- REHAB_STRICT_SURGERY_CHECK: 수술 유형 미지정 시 InvalidContext 처리
- REHAB_LOG_LEVEL: 로그 레벨
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PrescriptionSettings(BaseSettings):
    """운동 처방 설정"""

    model_config = SettingsConfigDict(
        env_prefix="REHAB_",
        env_file=".env",
        extra="ignore",
    )

    # 데이터 경로
    templates_dir: Path = Field(
        default=Path(__file__).parent.parent / "data" / "templates",
        description="템플릿 JSON 디렉토리",
    )

    # 안전 게이트
    strict_surgery_check: bool = Field(
        default=True,
        description="수술 호환성 검사가 필요한데 수술 유형이 미지정이면 InvalidContext",
    )
    default_max_pain_during: int = Field(
        default=3, ge=0, le=10,
        description="통증 상한이 없는 템플릿의 운동 중 통증 상한",
    )
    default_max_pain_after_24h: int = Field(
        default=2, ge=0, le=10,
        description="통증 상한이 없는 템플릿의 24시간 후 통증 상한",
    )

    # 레거시 템플릿 기본 처방
    default_reps_min: int = Field(default=10, ge=1, description="기본 최소 반복")
    default_reps_max: int = Field(default=15, ge=1, description="기본 최대 반복")
    default_sets_min: int = Field(default=2, ge=1, description="기본 최소 세트")
    default_sets_max: int = Field(default=3, ge=1, description="기본 최대 세트")
    default_rest_seconds: int = Field(default=30, ge=0, description="기본 휴식 (초)")
    default_pain_increase_trigger: int = Field(
        default=2, ge=1, le=10,
        description="레거시 퇴행 트리거의 통증 증가 임계값",
    )

    # 진행 추적
    stale_threshold_days: int = Field(
        default=7, ge=0,
        description="연속 기록 리셋 기준 (일)",
    )
    max_consecutive_regressions: int = Field(
        default=3, ge=0,
        description="연속 퇴행 허용 횟수 (초과 시 중단, 0이면 비활성)",
    )
    min_adherence: float = Field(
        default=0.8, ge=0, le=1,
        description="진행 기준 충족으로 인정할 최소 수행률",
    )
    processed_session_window: int = Field(
        default=50, ge=1,
        description="중복 처리 방지를 위해 보관할 세션 ID 수",
    )
    state_update_retries: int = Field(
        default=3, ge=1,
        description="버전 충돌 시 재시도 횟수",
    )

    # 플랜 조립
    seconds_per_rep: int = Field(default=3, ge=1, description="반복당 소요 시간 (초)")
    min_exercises: int = Field(default=4, description="최소 운동 수")
    max_exercises: int = Field(default=8, description="최대 운동 수")
    max_session_minutes: float = Field(default=30.0, gt=0, description="세션 최대 시간 (분)")
    max_equipment_items: int = Field(default=3, ge=0, description="세션당 최대 장비 종류")

    log_level: str = Field(default="INFO", description="로그 레벨")


settings = PrescriptionSettings()
