"""Unit tests for the confidence engine."""

import pytest

from rmri.confidence.engine import ConfidenceEngine
from rmri.confidence.models import ConfidenceSignals
from rmri.models.analysis import Finding, MicroOutput


class TestCalculateConfidence:
    """Test weighted confidence calculation."""

    def test_weighted_sum(self, confidence_engine):
        """Final confidence is the weighted sum of the component scores."""
        result = confidence_engine.calculate_confidence(ConfidenceSignals(
            provider_confidence=0.8,
            similarity_agreement=0.6,
            evidence_count=5,
            max_evidence=10,
            output=None,
        ))

        # 0.35*0.8 + 0.30*0.6 + 0.20*0.5 + 0.15*0.3
        assert result.final_confidence == pytest.approx(0.605)
        assert result.confidence_level == "medium"
        assert result.is_reliable is True
        assert result.needs_verification is False

    def test_breakdown_sums_to_final(self, confidence_engine):
        result = confidence_engine.calculate_confidence(ConfidenceSignals(
            provider_confidence=0.9,
            similarity_agreement=0.2,
            evidence_count=3,
            output="- Finding one\n- Finding two with significant evidence [1]",
        ))

        total = sum(component.contribution for component in result.breakdown.values())
        assert total == pytest.approx(result.final_confidence)
        assert set(result.breakdown) == {
            "provider_confidence", "similarity_agreement", "evidence_count", "output_quality"
        }

    def test_missing_signals_are_neutral(self, confidence_engine):
        result = confidence_engine.calculate_confidence(ConfidenceSignals())

        assert result.breakdown["provider_confidence"].score == 0.5
        assert result.breakdown["similarity_agreement"].score == 0.5
        assert result.breakdown["evidence_count"].score == 0.0
        assert result.final_confidence == pytest.approx(0.37)
        assert result.needs_verification is True

    def test_out_of_range_signals_are_clamped(self, confidence_engine):
        result = confidence_engine.calculate_confidence(ConfidenceSignals(
            provider_confidence=3.0,
            similarity_agreement=-1.0,
            evidence_count=100,
        ))

        assert 0.0 <= result.final_confidence <= 1.0
        assert result.breakdown["provider_confidence"].score == 1.0
        assert result.breakdown["similarity_agreement"].score == 0.0
        assert result.breakdown["evidence_count"].score == 1.0

    def test_structured_output_scores_expected_fields(self, confidence_engine):
        full = confidence_engine.calculate_confidence(ConfidenceSignals(
            output={"gaps": ["a"], "patterns": ["b"]},
            expected_fields=["gaps", "patterns"],
        ))
        empty = confidence_engine.calculate_confidence(ConfidenceSignals(
            output={"gaps": [], "patterns": []},
            expected_fields=["gaps", "patterns"],
        ))

        assert full.breakdown["output_quality"].score > empty.breakdown["output_quality"].score


class TestConfidenceLevels:
    """Test level thresholds."""

    @pytest.mark.parametrize("value,level", [
        (0.9, "high"),
        (0.75, "high"),
        (0.6, "medium"),
        (0.5, "medium"),
        (0.3, "low"),
        (0.29, "very_low"),
        (0.0, "very_low"),
    ])
    def test_level_boundaries(self, confidence_engine, value, level):
        assert confidence_engine.get_confidence_level(value) == level


class TestAggregateConfidences:
    """Test combining several confidences."""

    def test_weighted_average_favours_strongest(self, confidence_engine):
        result = confidence_engine.aggregate_confidences([0.5, 0.9])

        # (0.9 * 1 + 0.5 * 1/2) / 1.5
        assert result.final_confidence == pytest.approx(0.7666667)
        assert result.item_count == 2
        assert result.range.min == 0.5
        assert result.range.max == 0.9
        assert result.range.spread == pytest.approx(0.4)

    @pytest.mark.parametrize("method,expected", [
        ("min", 0.2),
        ("max", 0.8),
        ("median", 0.5),
    ])
    def test_other_methods(self, confidence_engine, method, expected):
        result = confidence_engine.aggregate_confidences([0.2, 0.5, 0.8], method=method)
        assert result.final_confidence == pytest.approx(expected)
        assert result.method == method

    def test_empty_input(self, confidence_engine):
        result = confidence_engine.aggregate_confidences([])

        assert result.final_confidence == 0.0
        assert result.confidence_level == "very_low"
        assert result.item_count == 0
        assert result.range is None

    def test_unknown_method(self, confidence_engine):
        with pytest.raises(ValueError):
            confidence_engine.aggregate_confidences([0.5], method="mode")


class TestWeights:
    """Test weight updates."""

    def test_set_weights_valid(self):
        engine = ConfidenceEngine()
        engine.set_weights(provider_confidence=0.30, similarity_agreement=0.35)

        config = engine.get_config()
        assert config["weights"]["provider_confidence"] == pytest.approx(0.30)
        assert config["weights"]["similarity_agreement"] == pytest.approx(0.35)
        assert sum(config["weights"].values()) == pytest.approx(1.0)

    def test_set_weights_must_sum_to_one(self):
        engine = ConfidenceEngine()
        with pytest.raises(ValueError, match="sum to 1.0"):
            engine.set_weights(provider_confidence=0.9)
        assert engine.weights["provider_confidence"] == 0.35

    def test_set_weights_unknown_component(self):
        engine = ConfidenceEngine()
        with pytest.raises(ValueError, match="Unknown confidence components"):
            engine.set_weights(novelty=0.1)

    def test_constructor_weights(self):
        engine = ConfidenceEngine(weights={
            "provider_confidence": 0.25,
            "similarity_agreement": 0.25,
            "evidence_count": 0.25,
            "output_quality": 0.25,
        })
        assert engine.weights["evidence_count"] == pytest.approx(0.25)


class TestTierConfidence:
    """Test the per-tier wrappers."""

    def test_micro_confidence_counts_findings(self, confidence_engine):
        sparse = MicroOutput(item_id="a")
        rich = MicroOutput(
            item_id="b",
            contributions=[Finding(text="A new method")],
            limitations=[Finding(text="Small dataset")],
            gaps=[Finding(text="Generalization", priority="high")],
            fingerprint=["method", "dataset"],
        )

        low = confidence_engine.micro_confidence(0.7, sparse)
        high = confidence_engine.micro_confidence(0.7, rich)

        assert high.final_confidence > low.final_confidence
        assert high.breakdown["similarity_agreement"].score == 0.7
