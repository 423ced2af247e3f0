"""
Core GentleBoost implementations.

GentleBoost fits an additive model F(x) = Σ_m f_m(x) by adaptive Newton steps
on the exponential loss J(F) = E[exp(-y F(x))]. Each round fits one weak
regressor by weighted least squares under sample weights w_i ∝ exp(-y_i F(x_i)).

References:
- Friedman, J., Hastie, T., & Tibshirani, R. (2000). Additive logistic regression:
  a statistical view of boosting. Annals of Statistics, 28(2), 337-407.
  Algorithm 4 (Gentle AdaBoost).
- Markus, N., et al. (2013). Object detection with pixel intensity comparisons
  organized in decision trees. arXiv:1305.4537.
"""

from typing import Any, Callable, Iterator, List, Optional, Sequence, Tuple
import logging
import numpy as np

from .utils import (
    InvalidInputError, validate_true_values, check_sample_array,
    gentle_sample_weights, to_signed_labels, exponential_loss, gentle_probability
)


LearnerFactory = Callable[[np.ndarray], Any]
LearnerEvaluator = Callable[[Any, int], float]
TerminationPredicate = Callable[[Sequence[Any], np.ndarray], bool]


class GentleBoost:
    """
    GentleBoost ensemble over an arbitrary weak learner type.

    The trainer knows nothing about the learners: they are created, evaluated
    and the loop is stopped exclusively through the callables passed to
    :meth:`train`. The ensemble only grows, in training order, and is exposed
    as a read-only tuple.
    """

    def __init__(self, learners: Optional[Sequence[Any]] = None, verbose: bool = False):
        """
        Args:
            learners: Already trained learners (e.g. loaded from a detector file).
            verbose: Enable logging output.
        """
        self._learners: List[Any] = list(learners) if learners is not None else []
        self.verbose = verbose

        # State of the latest train() call
        self.outputs_: Optional[np.ndarray] = None
        self.sample_weights_: Optional[np.ndarray] = None
        self.n_rounds_: int = 0

        # Setup logging
        self.logger = logging.getLogger(__name__)
        if self.verbose:
            logging.basicConfig(level=logging.INFO)

    @property
    def learners(self) -> Tuple[Any, ...]:
        """The trained learners in training order."""
        return tuple(self._learners)

    def __len__(self) -> int:
        return len(self._learners)

    def __iter__(self) -> Iterator[Any]:
        return iter(self.learners)

    def get_output(self, learner_output_func: Callable[[Any], float]) -> float:
        """
        Regression / classification output for one sample.

        Args:
            learner_output_func: Maps a learner to its output for the sample.

        Returns:
            Sum of all learner outputs; 0.0 for an empty ensemble.
        """
        output = 0.0
        for learner in self.learners:
            output += learner_output_func(learner)
        return output

    def train(
        self,
        true_values: Sequence[float],
        learner_factory: LearnerFactory,
        learner_evaluator: LearnerEvaluator,
        termination_func: TerminationPredicate,
        outputs: Optional[Sequence[float]] = None
    ) -> np.ndarray:
        """
        Add weak learners until ``termination_func`` says stop.

        Each round:
          1. w_i = exp(-F_i) / N_pos for positives, exp(+F_i) / N_neg otherwise.
          2. w = w / Σ w.
          3. learner = learner_factory(w), appended to the ensemble.
          4. F_i += learner_evaluator(learner, i) for every sample.

        Args:
            true_values: Requested outputs; > 0 is positive, anything else negative
                (e.g. +1 / -1 for classification).
            learner_factory: Creates and trains one learner from the sample weights.
            learner_evaluator: Output of a learner for a sample index.
            termination_func: Called with (learners, outputs) before every round,
                including the first; True stops training.
            outputs: Starting accumulated outputs, zeros by default.

        Returns:
            Accumulated outputs F_i after the last round, shape (n_samples,).

        Raises:
            InvalidInputError: Before any round when the inputs are inconsistent.
        """
        true_values, n_positives, n_negatives = validate_true_values(true_values)
        n_samples = true_values.shape[0]

        if outputs is None:
            outputs = np.zeros(n_samples)
        else:
            outputs = check_sample_array("outputs", outputs, n_samples)

        # Termination sees the live accumulator but cannot write to it
        outputs_view = outputs.view()
        outputs_view.flags.writeable = False

        self.outputs_ = outputs_view
        self.sample_weights_ = None
        self.n_rounds_ = 0

        if self.verbose:
            self.logger.info(
                f"Training on {n_samples} samples "
                f"({n_positives} positive, {n_negatives} negative), "
                f"{len(self._learners)} learners already in the ensemble"
            )

        while not termination_func(self.learners, outputs_view):
            # Compute normalised per-class weights
            sample_weights = gentle_sample_weights(
                true_values, outputs, n_positives, n_negatives
            )
            self.sample_weights_ = sample_weights

            # Train weak learner on a private copy of the weights
            learner = learner_factory(sample_weights.copy())
            self._learners.append(learner)
            self.n_rounds_ += 1

            # Update outputs
            for i in range(n_samples):
                outputs[i] += learner_evaluator(learner, i)

            if self.verbose and self.n_rounds_ % 10 == 0:
                self.logger.info(
                    f"Round {self.n_rounds_}: ensemble size={len(self._learners)}, "
                    f"max weight={sample_weights.max():.6f}"
                )

        if self.verbose:
            self.logger.info(
                f"Training stopped after {self.n_rounds_} rounds, "
                f"ensemble size={len(self._learners)}"
            )

        return outputs_view


class GentleBoostClassifier:
    """
    Binary classifier boosting weighted regression trees with GentleBoost.

    Implements:
    1. F_0(x) = 0.
    2. For m = 1 to M:
       a. w_i ∝ exp(-y_i F_{m-1}(x_i)), normalised per class then globally.
       b. Fit f_m by weighted least squares of y_i on x_i (regression tree).
       c. F_m(x) = F_{m-1}(x) + f_m(x).
    Predictions: p(x) = sigmoid(2 F_M(x)).

    Reference: Friedman et al. (2000), Algorithm 4.
    """

    def __init__(
        self,
        n_estimators: int = 100,
        max_depth: int = 2,
        min_samples_leaf: int = 1,
        random_state: Optional[int] = None,
        verbose: bool = False
    ):
        """
        Args:
            n_estimators: Number of boosting rounds (M).
            max_depth: Maximum depth of individual regression trees.
            min_samples_leaf: Minimum samples required in a leaf node.
            random_state: Random seed for reproducibility.
            verbose: Enable logging output.
        """
        self.n_estimators = n_estimators
        self.max_depth = max_depth
        self.min_samples_leaf = min_samples_leaf
        self.random_state = random_state
        self.verbose = verbose

        # Model state
        self.booster_: GentleBoost = GentleBoost()
        self.estimators_: List = []

        # Training history
        self.train_scores_: List[float] = []
        self.val_scores_: List[float] = []

        self.logger = logging.getLogger(__name__)

    def fit(
        self,
        X: np.ndarray,
        y: np.ndarray,
        X_val: Optional[np.ndarray] = None,
        y_val: Optional[np.ndarray] = None
    ) -> "GentleBoostClassifier":
        """
        Fit the classifier.

        Args:
            X: Training features, shape (n_samples, n_features).
            y: Training labels, {0, 1} or {-1, +1}, shape (n_samples,).
            X_val: Optional validation features for tracking generalisation.
            y_val: Optional validation labels.

        Returns:
            self
        """
        from .learners import TreeLearnerFactory

        X = np.asarray(X, dtype=np.float64)
        y_sign = to_signed_labels(y)
        if X.ndim != 2 or X.shape[0] != y_sign.shape[0]:
            raise InvalidInputError(
                f"X must have shape (n_samples, n_features) matching y, "
                f"got X {X.shape} and y {y_sign.shape}"
            )

        factory = TreeLearnerFactory(
            X, y_sign,
            max_depth=self.max_depth,
            min_samples_leaf=self.min_samples_leaf,
            random_state=self.random_state
        )

        self.booster_ = GentleBoost(verbose=self.verbose)
        self.train_scores_ = []
        self.val_scores_ = []

        track_val = X_val is not None and y_val is not None
        if track_val:
            X_val = np.asarray(X_val, dtype=np.float64)
            y_val_sign = to_signed_labels(y_val)
            F_val = np.zeros(X_val.shape[0])

        def terminate(learners, outputs):
            # Called once before each round, so learners[-1] is the newest tree
            if learners:
                self.train_scores_.append(exponential_loss(y_sign, outputs))
                if track_val:
                    np.add(F_val, learners[-1].predict(X_val), out=F_val)
                    self.val_scores_.append(exponential_loss(y_val_sign, F_val))
            return len(learners) >= self.n_estimators

        self.booster_.train(y_sign, factory, factory.evaluate, terminate)
        self.estimators_ = list(self.booster_.learners)

        if self.verbose and self.train_scores_:
            self.logger.info(f"Final train exponential loss={self.train_scores_[-1]:.6f}")

        return self

    def decision_function(self, X: np.ndarray) -> np.ndarray:
        """
        Additive model output F(x).

        Args:
            X: Features, shape (n_samples, n_features).

        Returns:
            Raw outputs, shape (n_samples,).
        """
        X = np.asarray(X, dtype=np.float64)
        return np.zeros(X.shape[0]) + self.booster_.get_output(lambda tree: tree.predict(X))

    def staged_decision_function(self, X: np.ndarray) -> Iterator[np.ndarray]:
        """Yield F(x) after each boosting round."""
        X = np.asarray(X, dtype=np.float64)
        F = np.zeros(X.shape[0])
        for tree in self.booster_:
            F = F + tree.predict(X)
            yield F

    def predict_proba(self, X: np.ndarray) -> np.ndarray:
        """
        Predict class probabilities.

        Args:
            X: Features, shape (n_samples, n_features).

        Returns:
            Probabilities for the positive class, shape (n_samples,).
        """
        return gentle_probability(self.decision_function(X))

    def predict(self, X: np.ndarray) -> np.ndarray:
        """Predict labels {0, 1}."""
        return (self.decision_function(X) >= 0.0).astype(int)
