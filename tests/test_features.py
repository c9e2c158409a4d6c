"""
Tests for feature extraction.
"""

import math

import numpy as np
import pytest

from subsidymatch.config import FEATURE_LENGTH
from pipelines.matching.features import (
    FeatureEncoder,
    INDUSTRY_SLOT,
    NEEDS_SLOT,
    NEUTRAL_INDUSTRY,
    SCALE_SLOT,
    encode_needs,
    encode_scale,
)


@pytest.fixture
def encoder():
    return FeatureEncoder()


class TestFeatureEncoder:
    """Test the entity -> feature vector mapping."""

    @pytest.mark.parametrize("entity", [
        {},
        None,
        "not a mapping",
        {"industry": "IT", "scale": 50, "needs": ["DX推進"]},
        {"industry": 42, "scale": "big", "needs": "dx"},
    ])
    def test_fixed_length_and_range(self, encoder, entity):
        """Every entity encodes to FEATURE_LENGTH values within [0, 1]."""
        features = encoder.encode(entity)
        assert features.shape == (FEATURE_LENGTH,)
        assert np.all(features >= 0.0)
        assert np.all(features <= 1.0)

    def test_deterministic(self, encoder, company_profile):
        """Same entity encodes identically."""
        assert np.array_equal(encoder.encode(company_profile), encoder.encode(company_profile))

    def test_output_is_read_only(self, encoder, company_profile):
        features = encoder.encode(company_profile)
        with pytest.raises(ValueError):
            features[0] = 0.3

    def test_known_industry(self, encoder):
        features = encoder.encode({"industry": "IT"})
        assert list(features[INDUSTRY_SLOT]) == [1.0, 0.0, 0.0, 0.0, 0.9, 0.8, 0.7, 0.9]

    def test_unknown_industry_is_neutral(self, encoder):
        """Unknown industry degrades to the neutral block instead of failing."""
        features = encoder.encode({"industry": "aerospace"})
        assert list(features[INDUSTRY_SLOT]) == list(NEUTRAL_INDUSTRY)

    def test_japanese_labels_match_english(self, encoder):
        assert np.array_equal(
            encoder.encode({"industry": "製造業", "needs": ["設備投資"]}),
            encoder.encode({"industry": "manufacturing", "needs": ["equipment"]}),
        )

    def test_raw_vector_is_ignored(self, encoder):
        """Only industry, scale and needs contribute."""
        plain = encoder.encode({"industry": "IT"})
        with_vector = encoder.encode({"industry": "IT", "vector": [0.9] * 64})
        assert np.array_equal(plain, with_vector)

    def test_trailing_slots_are_zero(self, encoder, company_profile):
        features = encoder.encode(company_profile)
        assert not np.any(features[NEEDS_SLOT.stop:])


class TestScaleEncoding:
    """Test log-scaled company size."""

    def test_log_scaling(self):
        assert encode_scale(99) == pytest.approx(0.2)

    def test_zero_scale(self):
        assert encode_scale(0) == 0.0

    def test_huge_scale_is_clipped(self):
        assert encode_scale(1e20) == 1.0

    @pytest.mark.parametrize("value", [-5, "50", None, True, float("nan"), float("inf")])
    def test_unusable_scale_encodes_zero(self, value):
        assert encode_scale(value) == 0.0

    def test_scale_slot(self):
        features = FeatureEncoder().encode({"scale": 99})
        assert features[SCALE_SLOT] == pytest.approx(0.2)


class TestNeedsEncoding:
    """Test need tag indicator with neighbor smoothing."""

    def test_single_need_with_neighbors(self):
        """'ai' sits at index 2; neighbors 1 and 3 get half weight before normalization."""
        vector = encode_needs(["AI導入"])
        norm = math.sqrt(1.5)
        assert vector[1] == pytest.approx(0.5 / norm)
        assert vector[2] == pytest.approx(1.0 / norm)
        assert vector[3] == pytest.approx(0.5 / norm)
        assert np.linalg.norm(vector) == pytest.approx(1.0)

    def test_first_slot_has_one_neighbor(self):
        vector = encode_needs(["dx"])
        norm = math.sqrt(1.25)
        assert vector[0] == pytest.approx(1.0 / norm)
        assert vector[1] == pytest.approx(0.5 / norm)
        assert np.count_nonzero(vector) == 2

    def test_unknown_tags_ignored(self):
        assert not np.any(encode_needs(["quantum teleportation", 7]))

    def test_non_list_needs(self):
        assert not np.any(encode_needs("dx"))

    def test_needs_slot_in_feature_vector(self):
        features = FeatureEncoder().encode({"needs": ["AI導入"]})
        assert np.allclose(features[NEEDS_SLOT], encode_needs(["AI導入"]))
