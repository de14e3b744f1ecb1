"""세션 플랜 조립 테스트"""

import pytest

from exercise_prescription.models import DenialReason, PlanBudget
from exercise_prescription.pipeline import PrescriptionPipeline
from exercise_prescription.services import PlanAssembler

CORE_IDS = [
    "core_bird_dog",
    "core_dead_bug",
    "core_diaphragmatic_breathing",
    "core_front_plank",
    "core_pallof_press",
    "core_transverse_activation",
]


@pytest.fixture
def assembler(repository):
    return PlanAssembler(pipeline=PrescriptionPipeline(repository=repository))


@pytest.fixture
def context(make_context):
    return make_context(pain_during=0, pain_after_24h=0)


def test_order_by_function(assembler, repository):
    ordered = assembler.order(repository.get(i) for i in CORE_IDS)

    assert [t.id for t in ordered] == [
        "core_diaphragmatic_breathing",
        "core_transverse_activation",
        "core_dead_bug",
        "core_front_plank",
        "core_pallof_press",
        "core_bird_dog",
    ]


def test_full_plan(assembler, context):
    plan = assembler.assemble(CORE_IDS, context)

    assert plan.exercise_ids == [
        "core_diaphragmatic_breathing",
        "core_transverse_activation",
        "core_dead_bug",
        "core_front_plank",
        "core_bird_dog",
    ]
    assert [(e.template_id, e.exclusion_type) for e in plan.excluded] == [
        ("core_pallof_press", "variant"),
    ]
    assert plan.excluded[0].denial_reason == DenialReason.UNRESOLVABLE_VARIANT
    assert plan.estimated_minutes == pytest.approx(28.8)
    assert plan.equipment == ()
    assert plan.warnings == ()
    assert not plan.requires_clinician_review


def test_estimate_minutes(assembler, context):
    instance = assembler.pipeline.prescribe("core_dead_bug", context)

    # 3세트 × 10회 × (2초 유지 + 3초) + 2 × 45초 휴식
    assert assembler.estimate_minutes(instance) == pytest.approx(4.0)


def test_exercise_budget(assembler, context):
    plan = assembler.assemble(CORE_IDS, context, PlanBudget(max_exercises=2, min_exercises=2))

    assert plan.exercise_ids == ["core_diaphragmatic_breathing", "core_transverse_activation"]
    budget = [e.template_id for e in plan.excluded if e.exclusion_type == "budget"]
    assert budget == ["core_dead_bug", "core_front_plank", "core_pallof_press", "core_bird_dog"]


def test_time_budget(assembler, context):
    plan = assembler.assemble(CORE_IDS, context, PlanBudget(max_minutes=10))

    assert plan.exercise_ids == ["core_diaphragmatic_breathing", "core_dead_bug"]
    assert plan.estimated_minutes <= 10
    assert len(plan.warnings) == 1


def test_equipment_budget(assembler, make_context):
    ctx = make_context(
        pain_during=0, pain_after_24h=0, available_equipment=["resistance_band", "mat"]
    )

    plan = assembler.assemble(["core_pallof_press", "core_dead_bug"], ctx, PlanBudget(max_equipment_items=0))

    assert plan.exercise_ids == ["core_dead_bug"]
    assert plan.excluded[0].template_id == "core_pallof_press"
    assert plan.excluded[0].exclusion_type == "budget"


def test_equipment_shared_across_exercises(assembler, make_context):
    ctx = make_context(
        pain_during=0, pain_after_24h=0, available_equipment=["resistance_band", "cable_machine"]
    )

    plan = assembler.assemble(["core_pallof_press"], ctx, PlanBudget(max_equipment_items=1))

    assert plan.equipment == ("resistance_band",)


def test_red_flag_marks_plan_for_review(assembler, make_context):
    ctx = make_context(pain_during=0, pain_after_24h=0, reported_symptoms=["Radiating pain"])

    plan = assembler.assemble(CORE_IDS, ctx)

    assert plan.requires_clinician_review
    excluded = {e.template_id: e for e in plan.excluded}
    assert excluded["core_dead_bug"].denial_reason == DenialReason.RED_FLAG_TRIGGERED
    assert excluded["core_dead_bug"].exclusion_type == "safety"


def test_invalid_context_excludes_everything(assembler):
    plan = assembler.assemble(CORE_IDS, {"patient_id": "P009", "pain_during": 2})

    assert plan.patient_id == "P009"
    assert plan.exercises == ()
    assert {e.exclusion_type for e in plan.excluded} == {"context"}
    assert len(plan.excluded) == len(CORE_IDS)
    assert plan.warnings


def test_too_few_exercises_warns(assembler, context):
    plan = assembler.assemble(["core_dead_bug"], context)

    assert plan.exercise_ids == ["core_dead_bug"]
    assert len(plan.warnings) == 1
