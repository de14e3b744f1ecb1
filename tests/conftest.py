"""공통 테스트 픽스처"""

import copy
import json
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from exercise_prescription.config import settings
from exercise_prescription.models import PatientContext, SessionOutcome
from exercise_prescription.services import (
    InMemoryProgressionStore,
    ProgressionTracker,
    TemplateRepository,
)

TEMPLATES_DIR = Path(settings.templates_dir)
DAY_ONE = datetime(2025, 3, 3, 9, 0)


@pytest.fixture(scope="session")
def repository() -> TemplateRepository:
    """패키지 내장 템플릿 저장소"""
    return TemplateRepository(templates_dir=TEMPLATES_DIR)


@pytest.fixture
def dead_bug(repository):
    return repository.get("core_dead_bug")


@pytest.fixture
def front_plank(repository):
    return repository.get("core_front_plank")


@pytest.fixture
def pallof_press(repository):
    return repository.get("core_pallof_press")


@pytest.fixture
def raw_dead_bug() -> dict:
    """원본 dead bug 레코드 (수정해서 쓰도록 깊은 복사)"""
    with open(TEMPLATES_DIR / "core.json", "r", encoding="utf-8") as f:
        data = json.load(f)
    record = next(t for t in data["templates"] if t["id"] == "core_dead_bug")
    return copy.deepcopy(record)


@pytest.fixture
def make_context():
    """환자 컨텍스트 팩토리 (비수술, 통증 낮음, 매트 보유)"""

    def _make(**overrides) -> PatientContext:
        data = {
            "patient_id": "P001",
            "pain_during": 1,
            "pain_after_24h": 0,
            "weeks_post_op": "not_applicable",
            "surgery_type": "none",
            "available_equipment": ["mat"],
        }
        data.update(overrides)
        return PatientContext(**data)

    return _make


@pytest.fixture
def make_outcome():
    """세션 결과 팩토리 (dead bug 진행 기준 충족)"""

    def _make(session_id: str, day: int = 0, **overrides) -> SessionOutcome:
        data = {
            "session_id": session_id,
            "template_id": "core_dead_bug",
            "completed_at": DAY_ONE + timedelta(days=day),
            "pain_during": 1,
            "pain_after": 1,
            "pain_free_reps": 12,
            "form_score": 90,
        }
        data.update(overrides)
        return SessionOutcome(**data)

    return _make


@pytest.fixture
def tracker(repository) -> ProgressionTracker:
    return ProgressionTracker(
        store=InMemoryProgressionStore(),
        repository=repository,
        stale_threshold_days=7,
        max_consecutive_regressions=3,
    )
