"""
Unit tests for the GentleBoost trainer.

Tests numerical correctness of:
- Per-class sample reweighting and normalisation
- Output accumulation and termination mechanics
- Input validation before the boosting loop
- Error propagation from the training callables
"""

import numpy as np
import pytest

import sys
from pathlib import Path

# Add src directory to path
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from picoboost.core import GentleBoost
from picoboost.learners import max_rounds
from picoboost.utils import (
    InvalidInputError, class_log_weights, gentle_sample_weights, normalize_log_weights
)


def constant_learner_factory(value=0.1):
    """Factory producing learners that output ``value`` for every sample."""
    def factory(weights):
        return value
    return factory


def constant_evaluator(learner, sample_index):
    return learner


class RecordingPredicate:
    """Stops after ``n_rounds`` and records what it was called with."""

    def __init__(self, n_rounds):
        self.n_rounds = n_rounds
        self.calls = []

    def __call__(self, learners, outputs):
        self.calls.append((len(learners), np.array(outputs)))
        return len(self.calls) > self.n_rounds


# =========================
# Test reweighting
# =========================

def test_weights_match_per_class_formula():
    """w_i = exp(-F)/N_pos for positives, exp(F)/N_neg for negatives, normalised."""
    y = np.array([1.0, 1.0, 1.0, -1.0])
    F = np.array([0.5, -0.2, 1.0, 0.3])

    weights = gentle_sample_weights(y, F)

    raw = np.array([
        np.exp(-0.5) / 3, np.exp(0.2) / 3, np.exp(-1.0) / 3, np.exp(0.3) / 1
    ])
    np.testing.assert_allclose(weights, raw / raw.sum(), rtol=1e-12)


def test_weights_balance_classes_at_zero_output():
    """At F = 0 each class carries half of the total weight."""
    y = np.array([1.0, 1.0, 1.0, 1.0, -1.0])
    weights = gentle_sample_weights(y, np.zeros(5))

    assert weights[:4].sum() == pytest.approx(0.5, abs=1e-12)
    assert weights[4] == pytest.approx(0.5, abs=1e-12)


def test_zero_label_counts_as_negative():
    y = np.array([1.0, 0.0])
    log_w = class_log_weights(y, np.array([2.0, 2.0]))
    np.testing.assert_allclose(log_w, [-2.0, 2.0], rtol=1e-12)


def test_weights_stable_for_large_margins():
    """Margins that overflow exp() in float64 still give a valid distribution."""
    y = np.array([1.0, -1.0, 1.0, -1.0])
    F = np.array([-800.0, 800.0, 5.0, -5.0])

    weights = gentle_sample_weights(y, F)

    assert np.all(np.isfinite(weights))
    assert np.all(weights >= 0.0)
    assert weights.sum() == pytest.approx(1.0, abs=1e-12)
    np.testing.assert_allclose(weights[:2], [0.5, 0.5], rtol=1e-12)


def test_normalize_log_weights_sums_to_one():
    rng = np.random.default_rng(0)
    weights = normalize_log_weights(rng.standard_normal(100) * 20)
    assert weights.sum() == pytest.approx(1.0, abs=1e-12)


# =========================
# Test GentleBoost construction and output
# =========================

def test_empty_ensemble_output_is_zero():
    model = GentleBoost()
    assert model.get_output(lambda learner: 1.0) == 0.0
    assert len(model) == 0


def test_output_sums_learner_contributions():
    model = GentleBoost(learners=[0.5, -0.25, 2.0])
    assert model.get_output(lambda learner: learner) == pytest.approx(2.25)


def test_output_visits_learners_in_training_order():
    model = GentleBoost(learners=["a", "b", "c"])
    seen = []
    model.get_output(lambda learner: seen.append(learner) or 0.0)
    assert seen == ["a", "b", "c"]


def test_learners_view_is_read_only():
    source = [1, 2]
    model = GentleBoost(learners=source)

    assert isinstance(model.learners, tuple)
    with pytest.raises(AttributeError):
        model.learners.append(3)

    # The constructor copies its argument
    source.append(3)
    assert model.learners == (1, 2)


# =========================
# Test training mechanics
# =========================

def test_immediate_termination_runs_no_round():
    calls = []

    def factory(weights):
        calls.append(weights)
        return 1.0

    model = GentleBoost()
    outputs = model.train([1.0, -1.0], factory, constant_evaluator, lambda l, o: True)

    assert calls == []
    assert len(model) == 0
    assert model.n_rounds_ == 0
    np.testing.assert_array_equal(outputs, [0.0, 0.0])
    assert model.get_output(lambda learner: learner) == 0.0


def test_three_round_bound_gives_three_learners():
    model = GentleBoost()
    model.train(
        [1.0, -1.0, 1.0], constant_learner_factory(0.3), constant_evaluator, max_rounds(3)
    )
    assert len(model) == 3
    assert model.n_rounds_ == 3


def test_constant_learner_accumulation():
    """Two rounds of a constant +0.1 learner give outputs of 0.2 everywhere."""
    model = GentleBoost()
    outputs = model.train(
        [1.0, 1.0, -1.0, -1.0],
        constant_learner_factory(0.1),
        constant_evaluator,
        max_rounds(2)
    )

    assert len(model) == 2
    np.testing.assert_allclose(outputs, [0.2, 0.2, 0.2, 0.2], rtol=1e-12)


def test_outputs_accumulate_round_by_round():
    """F after round r = F after round r-1 + learner r's evaluation."""
    predicate = RecordingPredicate(n_rounds=4)

    def factory(weights):
        return len(predicate.calls)  # round number as learner

    def evaluator(learner, i):
        return learner * (i + 1) * 0.01

    GentleBoost().train([1.0, -1.0, 1.0], factory, evaluator, predicate)

    assert len(predicate.calls) == 5
    for r in range(1, 5):
        previous = predicate.calls[r - 1][1]
        current = predicate.calls[r][1]
        expected = previous + np.array([r * 0.01, r * 0.02, r * 0.03])
        np.testing.assert_allclose(current, expected, rtol=1e-12)


def test_termination_called_once_per_round():
    predicate = RecordingPredicate(n_rounds=3)
    GentleBoost().train([1.0, -1.0], constant_learner_factory(), constant_evaluator, predicate)

    # Before each of the 3 rounds, plus the final check
    assert [n for n, _ in predicate.calls] == [0, 1, 2, 3]


def test_weights_are_distribution_every_round():
    received = []

    def factory(weights):
        received.append(np.array(weights))
        return len(received)

    def evaluator(learner, i):
        # Alternate signs so weights actually move between rounds
        return 0.4 if (i + learner) % 2 == 0 else -0.3

    GentleBoost().train([1.0, 1.0, -1.0, -1.0, -1.0], factory, evaluator, max_rounds(6))

    assert len(received) == 6
    for weights in received:
        assert np.all(weights >= 0.0)
        assert weights.sum() == pytest.approx(1.0, abs=1e-12)


def test_weights_reflect_accumulated_outputs():
    """Correctly scored samples lose weight in the next round."""
    received = []

    def factory(weights):
        received.append(np.array(weights))
        return "tree"

    def evaluator(learner, i):
        return [1.0, -1.0, -1.0, 1.0][i]  # right on samples 0 and 2

    GentleBoost().train([1.0, 1.0, -1.0, -1.0], factory, evaluator, max_rounds(2))

    first, second = received
    np.testing.assert_allclose(first, [0.25, 0.25, 0.25, 0.25], rtol=1e-12)
    assert second[0] < second[1]
    assert second[2] < second[3]
    np.testing.assert_allclose(second, gentle_sample_weights(
        np.array([1.0, 1.0, -1.0, -1.0]), np.array([1.0, -1.0, -1.0, 1.0])
    ), rtol=1e-12)


def test_training_resumes_existing_ensemble():
    model = GentleBoost(learners=["old"])
    predicate = RecordingPredicate(n_rounds=2)
    model.train([1.0, -1.0], lambda w: "new", lambda l, i: 0.0, predicate)

    assert model.learners == ("old", "new", "new")
    assert predicate.calls[0][0] == 1


def test_starting_outputs_are_used():
    received = []

    def factory(weights):
        received.append(np.array(weights))
        return 0.0

    model = GentleBoost()
    outputs = model.train(
        [1.0, -1.0], factory, constant_evaluator, max_rounds(1), outputs=[2.0, -2.0]
    )

    np.testing.assert_allclose(outputs, [2.0, -2.0])
    np.testing.assert_allclose(received[0], [0.5, 0.5], rtol=1e-12)


def test_termination_cannot_modify_outputs():
    def predicate(learners, outputs):
        outputs[0] = 100.0
        return True

    with pytest.raises(ValueError):
        GentleBoost().train([1.0, -1.0], constant_learner_factory(), constant_evaluator, predicate)


# =========================
# Test input validation
# =========================

@pytest.mark.parametrize("true_values", [
    [1.0, 2.0, 3.0],          # no negatives
    [-1.0, 0.0, -3.0],        # no positives
    [],                       # empty
    [[1.0, -1.0]],            # not 1-D
    [1.0, np.nan, -1.0],      # non-finite
])
def test_invalid_true_values_rejected(true_values):
    factory_calls = []
    model = GentleBoost()

    with pytest.raises(InvalidInputError):
        model.train(true_values, factory_calls.append, constant_evaluator, max_rounds(1))

    assert factory_calls == []
    assert len(model) == 0


def test_mismatched_outputs_length_rejected():
    with pytest.raises(InvalidInputError):
        GentleBoost().train(
            [1.0, -1.0], constant_learner_factory(), constant_evaluator,
            max_rounds(1), outputs=[0.0, 0.0, 0.0]
        )


def test_invalid_input_is_value_error():
    assert issubclass(InvalidInputError, ValueError)


# =========================
# Test error propagation
# =========================

def test_factory_error_keeps_earlier_learners():
    class FactoryFailure(RuntimeError):
        pass

    def factory(weights):
        if len(model) == 2:
            raise FactoryFailure("boom")
        return 0.1

    model = GentleBoost()
    with pytest.raises(FactoryFailure):
        model.train([1.0, -1.0], factory, constant_evaluator, max_rounds(5))

    assert len(model) == 2


def test_evaluator_error_keeps_appended_learner():
    def evaluator(learner, i):
        raise KeyError(i)

    model = GentleBoost()
    with pytest.raises(KeyError):
        model.train([1.0, -1.0], constant_learner_factory(), evaluator, max_rounds(3))

    assert len(model) == 1


def test_termination_error_propagates():
    def predicate(learners, outputs):
        raise ZeroDivisionError

    with pytest.raises(ZeroDivisionError):
        GentleBoost().train([1.0, -1.0], constant_learner_factory(), constant_evaluator, predicate)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
