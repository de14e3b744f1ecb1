"""공유 어휘 및 통증 반응 테스트"""

import pytest

from shared.models import ClinicalTag, PainResponse, difficulty_index, normalize_term, to_tag
from shared.models.vocabulary import EQUIPMENT, EQUIPMENT_LOAD, LOAD_ORDER


class TestToTag:
    @pytest.mark.parametrize("text, expected", [
        ("Diastasis recti - modify", "diastasis_recti"),
        ("Hip flexor tightness - reduce range", "hip_flexor_tightness"),
        ("Pain > 3/10", "pain_3_10"),
        ("Knee injury (pad knee)", "knee_injury"),
        ("  Back Arching ", "back_arching"),
        ("Small range", "small_range"),
    ])
    def test_free_text_to_tag(self, text, expected):
        assert to_tag(text) == expected

    def test_only_punctuation_gives_empty_tag(self):
        assert to_tag(" - ") == ""


class TestNormalizeTerm:
    def test_legacy_laterality(self):
        assert normalize_term("left") == "unilateral_left"
        assert normalize_term("Right") == "unilateral_right"

    def test_equipment_alias(self):
        assert normalize_term("Dumbbells") == "dumbbell"
        assert normalize_term("bodyweight") == "none"

    def test_unknown_term_only_lowercased(self):
        assert normalize_term("Supine") == "supine"


class TestClinicalTag:
    def test_from_text_keeps_original(self):
        tag = ClinicalTag.from_text("Radiating pain")
        assert tag.tag == "radiating_pain"
        assert str(tag) == "Radiating pain"

    def test_from_text_rejects_empty(self):
        with pytest.raises(ValueError):
            ClinicalTag.from_text("---")

    def test_hashable_for_sets(self):
        a = ClinicalTag.from_text("Back arching")
        b = ClinicalTag.from_text("Back arching")
        assert len({a, b}) == 1


def test_difficulty_index_order():
    assert difficulty_index("beginner") < difficulty_index("intermediate") < difficulty_index("advanced")
    with pytest.raises(ValueError):
        difficulty_index("expert")


def test_load_map_uses_known_equipment_and_levels():
    assert set(EQUIPMENT_LOAD) <= set(EQUIPMENT)
    assert set(EQUIPMENT_LOAD.values()) <= set(LOAD_ORDER[2:])


class TestPainResponse:
    def test_green(self):
        assert PainResponse(during=3, after=3, next_day=2).light == "green"

    def test_red_on_any_axis(self):
        assert PainResponse(during=6, after=0).light == "red"
        assert PainResponse(during=0, after=6).light == "red"
        assert PainResponse(during=0, after=0, next_day=5).light == "red"

    def test_yellow_otherwise(self):
        assert PainResponse(during=4, after=2).light == "yellow"
        assert PainResponse(during=2, after=2, next_day=3).light == "yellow"
