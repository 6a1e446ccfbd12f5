"""Tests for the individual sampling stages and numeric helpers."""

from __future__ import annotations

import numpy as np
import pytest

from lamarun.config import SamplingConfig
from lamarun.sampling.base import SamplingStage, descending_order, stable_softmax
from lamarun.sampling.filters import MinPStage, TopKStage, TopPStage
from lamarun.sampling.penalties import RepeatPenaltyStage
from lamarun.sampling.registry import StageRegistry
from lamarun.sampling.temperature import TemperatureStage

PROBS = np.array([0.5, 0.3, 0.15, 0.05])


def _kept(scores: np.ndarray) -> set[int]:
    return {int(i) for i in np.flatnonzero(np.isfinite(scores))}


class TestTemperatureStage:
    def test_divides_scores(self) -> None:
        result = TemperatureStage().apply(np.array([1.0, -2.0]), SamplingConfig(temperature=0.5), [])
        np.testing.assert_allclose(result, [2.0, -4.0])

    @pytest.mark.parametrize("temperature,enabled", [(0.0, False), (1.0, False), (0.7, True)])
    def test_is_enabled(self, temperature: float, enabled: bool) -> None:
        assert TemperatureStage().is_enabled(SamplingConfig(temperature=temperature)) is enabled


class TestRepeatPenaltyStage:
    def test_penalizes_positive_and_negative(self) -> None:
        config = SamplingConfig(repeat_penalty=2.0)
        result = RepeatPenaltyStage().apply(np.array([2.0, -2.0, 1.0]), config, [0, 1])
        np.testing.assert_allclose(result, [1.0, -4.0, 1.0])

    def test_only_recent_window(self) -> None:
        config = SamplingConfig(repeat_penalty=2.0, repeat_last_n=1)
        result = RepeatPenaltyStage().apply(np.array([2.0, -2.0, 1.0]), config, [0, 1])
        np.testing.assert_allclose(result, [2.0, -4.0, 1.0])

    def test_repeated_ids_penalized_once(self) -> None:
        config = SamplingConfig(repeat_penalty=2.0)
        result = RepeatPenaltyStage().apply(np.array([4.0, 1.0]), config, [0, 0, 0])
        np.testing.assert_allclose(result, [2.0, 1.0])

    def test_out_of_range_history_ignored(self) -> None:
        config = SamplingConfig(repeat_penalty=2.0)
        scores = np.array([1.0, 1.0])
        np.testing.assert_array_equal(RepeatPenaltyStage().apply(scores, config, [7, -1]), scores)

    def test_disabled_by_default(self) -> None:
        assert not RepeatPenaltyStage().is_enabled(SamplingConfig())
        assert not RepeatPenaltyStage().is_enabled(SamplingConfig(repeat_penalty=1.2, repeat_last_n=0))


class TestTopKStage:
    def test_keeps_k_best_with_stable_ties(self, sample_scores: np.ndarray) -> None:
        result = TopKStage().apply(sample_scores, SamplingConfig(top_k=3), [])
        assert _kept(result) == {1, 4, 2}

    def test_large_k_is_identity(self, sample_scores: np.ndarray) -> None:
        result = TopKStage().apply(sample_scores, SamplingConfig(top_k=100), [])
        np.testing.assert_array_equal(result, sample_scores)

    def test_zero_disables(self) -> None:
        assert not TopKStage().is_enabled(SamplingConfig(top_k=0))


class TestTopPStage:
    def test_keeps_smallest_nucleus(self) -> None:
        result = TopPStage().apply(np.log(PROBS), SamplingConfig(top_p=0.75), [])
        assert _kept(result) == {0, 1}

    def test_single_token_when_threshold_low(self) -> None:
        result = TopPStage().apply(np.log(PROBS), SamplingConfig(top_p=0.4), [])
        assert _kept(result) == {0}

    def test_kept_scores_unchanged(self) -> None:
        scores = np.log(PROBS)
        result = TopPStage().apply(scores, SamplingConfig(top_p=0.75), [])
        np.testing.assert_array_equal(result[:2], scores[:2])

    def test_one_disables(self) -> None:
        assert not TopPStage().is_enabled(SamplingConfig(top_p=1.0))


class TestMinPStage:
    def test_drops_below_relative_threshold(self) -> None:
        result = MinPStage().apply(np.log(PROBS), SamplingConfig(min_p=0.2), [])
        assert _kept(result) == {0, 1, 2}

    def test_zero_disables(self) -> None:
        assert not MinPStage().is_enabled(SamplingConfig(min_p=0.0))


class TestHelpers:
    def test_softmax_sums_to_one(self, sample_scores: np.ndarray) -> None:
        assert stable_softmax(sample_scores).sum() == pytest.approx(1.0)

    def test_softmax_large_values(self) -> None:
        probs = stable_softmax(np.array([1000.0, 1000.0]))
        np.testing.assert_allclose(probs, [0.5, 0.5])

    def test_softmax_masked_entries_zero(self) -> None:
        probs = stable_softmax(np.array([0.0, -np.inf, 0.0]))
        np.testing.assert_allclose(probs, [0.5, 0.0, 0.5])

    def test_softmax_all_masked_is_uniform(self) -> None:
        probs = stable_softmax(np.full(4, -np.inf))
        np.testing.assert_allclose(probs, [0.25] * 4)

    def test_descending_order_stable(self) -> None:
        order = descending_order(np.array([1.0, 3.0, 3.0, 2.0]))
        assert order.tolist() == [1, 2, 3, 0]


class TestStageRegistry:
    def setup_method(self) -> None:
        self._saved = dict(StageRegistry._registry)

    def teardown_method(self) -> None:
        StageRegistry._registry = self._saved

    def test_builtin_stages_registered(self) -> None:
        assert {"temperature", "repeat_penalty", "top_k", "top_p", "min_p"} <= set(
            StageRegistry.list_registered()
        )

    def test_register_custom_stage(self) -> None:
        @StageRegistry.register("negate")
        class NegateStage(SamplingStage):
            def apply(self, scores, config, history):
                return -scores

        assert StageRegistry.get("negate") is NegateStage
        assert NegateStage.name == "negate"
        built = StageRegistry.build(["negate", "top_k"])
        assert [stage.name for stage in built] == ["negate", "top_k"]

    def test_duplicate_name_rejected(self) -> None:
        with pytest.raises(ValueError, match="already registered"):
            StageRegistry.register("temperature")(TemperatureStage)

    def test_unknown_name(self) -> None:
        with pytest.raises(KeyError):
            StageRegistry.get("mirostat")
