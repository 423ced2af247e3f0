"""
Utility functions for GentleBoost: sample reweighting, losses, and metrics.

References:
- Friedman, J., Hastie, T., & Tibshirani, R. (2000). Additive logistic regression:
  a statistical view of boosting. Annals of Statistics, 28(2), 337-407.
- Markus, N., et al. (2013). Object detection with pixel intensity comparisons
  organized in decision trees. arXiv:1305.4537.
"""

from typing import Optional, Tuple
import numpy as np
from scipy.special import expit, logsumexp
from sklearn.metrics import log_loss, accuracy_score, roc_auc_score


class InvalidInputError(ValueError):
    """Training data that would make the boosting loop undefined."""


# ===========================
# Input validation
# ===========================

def validate_true_values(true_values) -> Tuple[np.ndarray, int, int]:
    """
    Check the requested outputs and count both classes.

    Samples with a value > 0 are positives, all others are negatives.

    Returns:
        (true_values as float64 array, n_positives, n_negatives)

    Raises:
        InvalidInputError: not 1-D, empty, non-finite, or a class is missing
            (the per-class weight normaliser would divide by zero).
    """
    values = np.asarray(true_values, dtype=np.float64)
    if values.ndim != 1:
        raise InvalidInputError(
            f"true_values must be one-dimensional, got shape {values.shape}"
        )
    if values.shape[0] == 0:
        raise InvalidInputError("true_values must contain at least one sample")
    if not np.all(np.isfinite(values)):
        raise InvalidInputError("true_values must be finite")

    n_positives = int(np.count_nonzero(values > 0))
    n_negatives = values.shape[0] - n_positives
    if n_positives == 0 or n_negatives == 0:
        raise InvalidInputError(
            "true_values needs at least one positive and one negative sample "
            f"(got {n_positives} positive, {n_negatives} negative)"
        )
    return values, n_positives, n_negatives


def check_sample_array(name: str, values, n_samples: int) -> np.ndarray:
    """Copy a per-sample array to float64 and check it matches ``n_samples``."""
    array = np.array(values, dtype=np.float64)
    if array.shape != (n_samples,):
        raise InvalidInputError(
            f"{name} must have shape ({n_samples},), got {array.shape}"
        )
    return array


# ===========================
# GentleBoost reweighting
# ===========================

def class_log_weights(
    true_values: np.ndarray,
    outputs: np.ndarray,
    n_positives: Optional[int] = None,
    n_negatives: Optional[int] = None
) -> np.ndarray:
    """
    Log of the raw per-class sample weights.

    w_i = exp(-F_i) / N_pos  for positives,
    w_i = exp(+F_i) / N_neg  for negatives.

    Each class is normalised by its own size so class imbalance does not
    skew the weighted least-squares fit of the next learner.
    """
    positive = true_values > 0
    if n_positives is None:
        n_positives = int(np.count_nonzero(positive))
    if n_negatives is None:
        n_negatives = true_values.shape[0] - n_positives

    return np.where(
        positive,
        -outputs - np.log(n_positives),
        outputs - np.log(n_negatives)
    )


def normalize_log_weights(log_weights: np.ndarray) -> np.ndarray:
    """
    Turn log-weights into a probability distribution.

    Uses log-sum-exp so margins of several hundred do not overflow exp();
    the result equals w / sum(w) wherever the plain formula is finite.
    """
    weights = np.exp(log_weights - logsumexp(log_weights))
    # Renormalise away the rounding left by logsumexp
    return weights / np.sum(weights)


def gentle_sample_weights(
    true_values: np.ndarray,
    outputs: np.ndarray,
    n_positives: Optional[int] = None,
    n_negatives: Optional[int] = None
) -> np.ndarray:
    """Normalised GentleBoost sample weights for the current accumulated outputs."""
    return normalize_log_weights(
        class_log_weights(true_values, outputs, n_positives, n_negatives)
    )


# ===========================
# Losses and link
# ===========================

def to_signed_labels(y: np.ndarray) -> np.ndarray:
    """Map labels to {-1, +1}: values > 0 become +1, everything else -1."""
    return np.where(np.asarray(y) > 0, 1.0, -1.0)


def exponential_loss(y_sign: np.ndarray, outputs: np.ndarray) -> float:
    """Exponential loss J(F) = mean(exp(-y F)) minimised by GentleBoost."""
    return float(np.mean(np.exp(-y_sign * outputs)))


def gentle_probability(outputs: np.ndarray) -> np.ndarray:
    """
    P(y = +1 | x) for an additive model trained on exponential loss.

    The population minimiser of E[exp(-yF)] is F = 0.5 * log(p / (1 - p)),
    hence p = sigmoid(2F).
    """
    return expit(2.0 * np.asarray(outputs, dtype=np.float64))


# ===========================
# Metrics
# ===========================

def detection_rates(
    true_values: np.ndarray,
    outputs: np.ndarray,
    threshold: float
) -> Tuple[float, float]:
    """True- and false-positive rates of ``outputs >= threshold``."""
    positive = np.asarray(true_values) > 0
    accepted = np.asarray(outputs) >= threshold
    tpr = float(np.mean(accepted[positive])) if np.any(positive) else np.nan
    fpr = float(np.mean(accepted[~positive])) if np.any(~positive) else np.nan
    return tpr, fpr


def stage_threshold(
    true_values: np.ndarray,
    outputs: np.ndarray,
    min_tpr: float
) -> float:
    """
    Largest threshold that still keeps at least ``min_tpr`` of the positives.

    Samples with ``outputs >= threshold`` are accepted by the stage.
    """
    if not 0.0 < min_tpr <= 1.0:
        raise ValueError(f"min_tpr must be in (0, 1], got {min_tpr}")

    positive_outputs = np.sort(np.asarray(outputs)[np.asarray(true_values) > 0])[::-1]
    if positive_outputs.size == 0:
        raise InvalidInputError("stage threshold needs at least one positive sample")

    # Tolerance keeps e.g. 0.98 * 50 from rounding up to 50
    n_keep = int(np.ceil(min_tpr * positive_outputs.size - 1e-9))
    n_keep = min(max(n_keep, 1), positive_outputs.size)
    return float(positive_outputs[n_keep - 1])


def compute_metrics_classification(
    y_true: np.ndarray,
    y_pred_proba: np.ndarray
) -> dict:
    """Compute classification metrics for labels in {0, 1}."""
    y_pred = (y_pred_proba >= 0.5).astype(int)

    # Clip probabilities for log_loss
    y_pred_proba_clipped = np.clip(y_pred_proba, 1e-15, 1 - 1e-15)

    logloss = log_loss(y_true, y_pred_proba_clipped, labels=[0, 1])
    accuracy = accuracy_score(y_true, y_pred)

    # ROC AUC only if both classes present
    if len(np.unique(y_true)) == 2:
        auc = roc_auc_score(y_true, y_pred_proba)
    else:
        auc = np.nan

    return {
        "log_loss": logloss,
        "accuracy": accuracy,
        "roc_auc": auc
    }
