"""진행 상태 저장소 테스트"""

import pytest

from exercise_prescription.exceptions import VersionConflictError
from exercise_prescription.models import ProgressionState
from exercise_prescription.services import InMemoryProgressionStore


def _state(template_id: str = "core_dead_bug", **overrides) -> ProgressionState:
    data = {"patient_id": "P001", "template_id": template_id, "tier": "intermediate"}
    data.update(overrides)
    return ProgressionState(**data)


def test_new_state_saved_with_version_one():
    store = InMemoryProgressionStore()

    saved = store.save(_state(), expected_version=0)

    assert saved.version == 1
    assert store.get(("P001", "core_dead_bug")) == saved


def test_save_increments_version():
    store = InMemoryProgressionStore()
    first = store.save(_state(), expected_version=0)

    second = store.save(first.model_copy(update={"tier": "advanced"}), expected_version=1)

    assert second.version == 2
    assert store.get(first.key).tier == "advanced"


def test_stale_version_conflicts():
    store = InMemoryProgressionStore()
    store.save(_state(), expected_version=0)

    with pytest.raises(VersionConflictError) as exc:
        store.save(_state(tier="beginner"), expected_version=0)

    assert (exc.value.expected, exc.value.actual) == (0, 1)
    assert store.get(("P001", "core_dead_bug")).tier == "intermediate"


def test_missing_state():
    assert InMemoryProgressionStore().get(("P001", "core_dead_bug")) is None


def test_lock_is_per_key():
    store = InMemoryProgressionStore()

    assert store.lock(("P001", "a")) is store.lock(("P001", "a"))
    assert store.lock(("P001", "a")) is not store.lock(("P001", "b"))


def test_for_patient_hides_archived():
    store = InMemoryProgressionStore()
    store.save(_state("core_dead_bug"), expected_version=0)
    store.save(_state("core_bird_dog", archived=True, status="discontinued"), expected_version=0)
    store.save(_state("core_dead_bug", patient_id="P002"), expected_version=0)

    assert [s.template_id for s in store.for_patient("P001")] == ["core_dead_bug"]
    assert [s.template_id for s in store.for_patient("P001", include_archived=True)] == [
        "core_bird_dog",
        "core_dead_bug",
    ]
