"""
Weak learners and termination predicates for :class:`picoboost.core.GentleBoost`.

A factory object is the learner-creating callable (weights -> learner) and
exposes ``evaluate(learner, sample_index)`` for the trainer's output update.
Training-set outputs are cached per learner at fit time, so evaluation inside
the boosting loop is a lookup.
"""

from typing import Any, Dict, Optional, Sequence, Tuple
import logging
import numpy as np
from sklearn.tree import DecisionTreeRegressor

from .cascade import PicoTree, pack_bintest, bintest_pixels, INT8_MIN, INT8_MAX
from .utils import to_signed_labels, stage_threshold, detection_rates

logger = logging.getLogger(__name__)


class _CachedLearnerFactory:
    """
    Keeps each learner's training-set outputs keyed by identity.

    The cache holds every learner the factory has produced, together with an
    ``n_samples`` output array, until it is dropped with :meth:`forget` or
    :meth:`clear`. A finished ensemble no longer needs it.
    """

    def __init__(self):
        self._train_outputs: Dict[int, Tuple[Any, np.ndarray]] = {}

    def _remember(self, learner: Any, outputs: np.ndarray) -> None:
        # The learner is stored too so its id() cannot be reused
        self._train_outputs[id(learner)] = (learner, outputs)

    def evaluate(self, learner: Any, sample_index: int) -> float:
        return float(self._train_outputs[id(learner)][1][sample_index])

    def train_outputs(self, learner: Any) -> np.ndarray:
        return self._train_outputs[id(learner)][1]

    def forget(self, learner: Any) -> None:
        self._train_outputs.pop(id(learner), None)

    def clear(self) -> None:
        self._train_outputs.clear()


class TreeLearnerFactory(_CachedLearnerFactory):
    """
    Weighted least-squares regression trees (GentleBoost's Newton step).

    Each call fits ``DecisionTreeRegressor`` to the signed labels with the
    boosting weights as ``sample_weight``; leaf values are then the weighted
    means E_w[y | leaf] ∈ [-1, 1].
    """

    def __init__(
        self,
        X: np.ndarray,
        y: np.ndarray,
        max_depth: int = 2,
        min_samples_leaf: int = 1,
        random_state: Optional[int] = None
    ):
        super().__init__()
        self.X = np.asarray(X, dtype=np.float64)
        self.y = to_signed_labels(y)
        self.max_depth = max_depth
        self.min_samples_leaf = min_samples_leaf
        self.random_state = random_state

    def __call__(self, sample_weights: np.ndarray) -> DecisionTreeRegressor:
        tree = DecisionTreeRegressor(
            max_depth=self.max_depth,
            min_samples_leaf=self.min_samples_leaf,
            random_state=self.random_state
        )
        tree.fit(self.X, self.y, sample_weight=sample_weights)
        self._remember(tree, tree.predict(self.X))
        return tree


class BinTestStumpFactory(_CachedLearnerFactory):
    """
    Single pixel-comparison stumps, stored as depth-2 :class:`PicoTree` learners.

    Each round draws ``n_candidates`` random pixel pairs, splits the windows on
    I(p1) <= I(p2), and keeps the test with the lowest weighted squared error
    when each side predicts the weighted mean label.
    """

    def __init__(
        self,
        patches: np.ndarray,
        y: np.ndarray,
        n_candidates: int = 128,
        random_state: Optional[int] = None
    ):
        """
        Args:
            patches: Training windows, shape (n_samples, height, width).
            y: Labels; > 0 is positive.
            n_candidates: Random pixel tests evaluated per round.
            random_state: Random seed for reproducibility.
        """
        super().__init__()
        self.patches = np.asarray(patches)
        if self.patches.ndim != 3:
            raise ValueError(
                f"patches must have shape (n, height, width), got {self.patches.shape}"
            )
        self.y = to_signed_labels(y)
        self.n_candidates = n_candidates
        self.rng = np.random.default_rng(random_state)

    def _candidate_outcomes(self, codes: np.ndarray) -> np.ndarray:
        _, height, width = self.patches.shape
        outcomes = np.empty((codes.size, self.patches.shape[0]), dtype=np.intp)
        for j, code in enumerate(codes):
            row1, col1, row2, col2 = bintest_pixels(int(code), height, width)
            outcomes[j] = self.patches[:, row1, col1] <= self.patches[:, row2, col2]
        return outcomes

    def __call__(self, sample_weights: np.ndarray) -> PicoTree:
        coords = self.rng.integers(INT8_MIN, INT8_MAX + 1, size=(self.n_candidates, 4))
        codes = np.array([pack_bintest(*map(int, c)) for c in coords], dtype=np.int64)
        outcomes = self._candidate_outcomes(codes)

        w = np.asarray(sample_weights, dtype=np.float64)
        wy = w * self.y

        # Weighted mean label on each side of every candidate split
        w_right = outcomes @ w
        wy_right = outcomes @ wy
        w_left = w.sum() - w_right
        wy_left = wy.sum() - wy_right
        leaf_left = np.divide(wy_left, w_left, out=np.zeros_like(wy_left), where=w_left > 0)
        leaf_right = np.divide(wy_right, w_right, out=np.zeros_like(wy_right), where=w_right > 0)

        # Σ w (y - leaf)^2 = Σ w y^2 - Σ_side leaf * Σ_side w y
        gain = leaf_left * wy_left + leaf_right * wy_right
        best = int(np.argmax(gain))

        tree = PicoTree(
            tree_depth=2,
            internal_node_codes=[codes[best]],
            leaf_values=[leaf_left[best], leaf_right[best]]
        )
        # Cache float32 leaf outputs so training matches the stored model
        self._remember(tree, tree.leaf_values[outcomes[best]].astype(np.float64))
        return tree


# ===========================
# Termination predicates
# ===========================

class _RoundCounter:
    """
    Counts the rounds of the training call a predicate is consulted from.

    :meth:`GentleBoost.train` hands the predicate one outputs view per call,
    so a different view object marks the start of a new call and the count
    restarts from the ensemble size at that point.
    """

    def __init__(self):
        self._outputs: Optional[np.ndarray] = None
        self._start = 0

    def _rounds(self, learners: Sequence[Any], outputs: np.ndarray) -> int:
        if outputs is not self._outputs:
            self._outputs = outputs
            self._start = len(learners)
            self._new_call()
        return len(learners) - self._start

    def _new_call(self) -> None:
        pass


class MaxRounds(_RoundCounter):
    """Stop after ``n_rounds`` rounds of the current training call."""

    def __init__(self, n_rounds: int):
        if n_rounds < 0:
            raise ValueError(f"n_rounds must be >= 0, got {n_rounds}")
        super().__init__()
        self.n_rounds = n_rounds

    def __call__(self, learners: Sequence[Any], outputs: np.ndarray) -> bool:
        return self._rounds(learners, outputs) >= self.n_rounds


def max_rounds(n_rounds: int) -> MaxRounds:
    return MaxRounds(n_rounds)


class TargetRates(_RoundCounter):
    """
    Stop once a stage threshold meets both detection targets.

    With the threshold chosen to keep ``min_tpr`` of the positives, training
    stops when at most ``max_fpr`` of the negatives also pass, or after
    ``max_rounds`` rounds of the current call. ``threshold_`` and ``rates_``
    describe the latest call only.
    """

    def __init__(
        self,
        true_values: Sequence[float],
        min_tpr: float,
        max_fpr: float,
        max_rounds: Optional[int] = None
    ):
        super().__init__()
        self.true_values = np.asarray(true_values, dtype=np.float64)
        self.min_tpr = min_tpr
        self.max_fpr = max_fpr
        self.max_rounds = max_rounds
        self.threshold_: Optional[float] = None
        self.rates_: Optional[Tuple[float, float]] = None

    def _new_call(self) -> None:
        self.threshold_ = None
        self.rates_ = None

    def __call__(self, learners: Sequence[Any], outputs: np.ndarray) -> bool:
        n_rounds = self._rounds(learners, outputs)
        if n_rounds == 0:
            return self.max_rounds == 0

        self.threshold_ = stage_threshold(self.true_values, outputs, self.min_tpr)
        self.rates_ = detection_rates(self.true_values, outputs, self.threshold_)
        logger.debug(
            f"round {n_rounds}: threshold={self.threshold_:.4f}, "
            f"tpr={self.rates_[0]:.4f}, fpr={self.rates_[1]:.4f}"
        )

        if self.rates_[1] <= self.max_fpr:
            return True
        return self.max_rounds is not None and n_rounds >= self.max_rounds


def target_rates(
    true_values: Sequence[float],
    min_tpr: float,
    max_fpr: float,
    max_rounds: Optional[int] = None
) -> TargetRates:
    return TargetRates(true_values, min_tpr, max_fpr, max_rounds)
