"""
Classification experiment on Breast Cancer dataset.

Compares GentleBoost over weighted regression trees with a single decision
tree and with scikit-learn's AdaBoost, and shows the effect of the number of
rounds and the tree depth.
"""

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
from sklearn.datasets import load_breast_cancer
from sklearn.ensemble import AdaBoostClassifier
from sklearn.model_selection import train_test_split
from sklearn.preprocessing import StandardScaler
from sklearn.tree import DecisionTreeClassifier
from sklearn.metrics import accuracy_score, roc_auc_score, roc_curve, confusion_matrix

from picoboost.core import GentleBoostClassifier
from picoboost.utils import compute_metrics_classification, gentle_probability

OUTPUT_DIR = Path(__file__).parent

# Set style
plt.style.use('seaborn-v0_8-darkgrid')
np.random.seed(42)


def load_and_prepare_data():
    """Load Breast Cancer dataset and split."""
    print("Loading Breast Cancer dataset...")
    data = load_breast_cancer()
    X, y = data.data, data.target

    # Split 80/20
    X_train, X_test, y_train, y_test = train_test_split(
        X, y, test_size=0.2, random_state=42, stratify=y
    )

    # Further split train into train/val for tracking
    X_train, X_val, y_train, y_val = train_test_split(
        X_train, y_train, test_size=0.2, random_state=42, stratify=y_train
    )

    scaler = StandardScaler()
    X_train = scaler.fit_transform(X_train)
    X_val = scaler.transform(X_val)
    X_test = scaler.transform(X_test)

    print(f"Train: {X_train.shape}, Val: {X_val.shape}, Test: {X_test.shape}")
    print(f"Class distribution - Train: {np.bincount(y_train)}, Test: {np.bincount(y_test)}")

    return X_train, X_val, X_test, y_train, y_val, y_test


def baseline_comparison(X_train, X_test, y_train, y_test):
    """Baselines: single decision tree and AdaBoost on stumps."""
    print("\n" + "="*60)
    print("Baselines")
    print("="*60)

    results = []
    for name, model in [
        ("DecisionTree(depth=3)", DecisionTreeClassifier(max_depth=3, random_state=42)),
        ("AdaBoost(100 stumps)", AdaBoostClassifier(n_estimators=100, random_state=42)),
    ]:
        model.fit(X_train, y_train)
        test_acc = accuracy_score(y_test, model.predict(X_test))
        test_auc = roc_auc_score(y_test, model.predict_proba(X_test)[:, 1])
        print(f"{name}: test accuracy={test_acc:.4f}, test AUC={test_auc:.4f}")
        results.append({"model": name, "test_acc": test_acc, "test_auc": test_auc})

    return pd.DataFrame(results)


def experiment_rounds_and_depth(X_train, X_val, X_test, y_train, y_val, y_test):
    """Effect of n_estimators and max_depth on validation exponential loss."""
    print("\n" + "="*60)
    print("Experiment: n_estimators x max_depth")
    print("="*60)

    results = []
    fig, axes = plt.subplots(1, 3, figsize=(15, 4))

    for idx, depth in enumerate([1, 2, 3]):
        gbc = GentleBoostClassifier(n_estimators=150, max_depth=depth, random_state=42)
        gbc.fit(X_train, y_train, X_val=X_val, y_val=y_val)

        staged = list(gbc.staged_decision_function(X_test))
        for n_est in [10, 50, 150]:
            F = staged[n_est - 1]
            metrics = compute_metrics_classification(y_test, gentle_probability(F))
            results.append({"max_depth": depth, "n_estimators": n_est, **metrics})
            print(f"depth={depth}, rounds={n_est}: acc={metrics['accuracy']:.4f}, "
                  f"auc={metrics['roc_auc']:.4f}")

        ax = axes[idx]
        ax.plot(gbc.train_scores_, label='Train', linewidth=2)
        ax.plot(gbc.val_scores_, label='Validation', linewidth=2)
        ax.set_xlabel('Round')
        ax.set_ylabel('Exponential Loss')
        ax.set_title(f'max_depth={depth}')
        ax.legend()
        ax.grid(True, alpha=0.3)

    plt.tight_layout()
    plt.savefig(OUTPUT_DIR / 'classification_rounds_depth.png', dpi=150)
    print("\nSaved plot: classification_rounds_depth.png")

    return pd.DataFrame(results)


def final_model_and_summary(X_train, X_val, X_test, y_train, y_val, y_test):
    """Train final model on train + val."""
    print("\n" + "="*60)
    print("Final Model")
    print("="*60)

    X_train_full = np.vstack([X_train, X_val])
    y_train_full = np.concatenate([y_train, y_val])

    gbc_final = GentleBoostClassifier(n_estimators=100, max_depth=2, random_state=42)
    gbc_final.fit(X_train_full, y_train_full)

    test_proba = gbc_final.predict_proba(X_test)
    metrics = compute_metrics_classification(y_test, test_proba)
    print(f"\nFinal Test Accuracy: {metrics['accuracy']:.4f}")
    print(f"Final Test ROC AUC:  {metrics['roc_auc']:.4f}")
    print(f"Final Test Log Loss: {metrics['log_loss']:.6f}")

    print("\nConfusion Matrix:")
    print(confusion_matrix(y_test, gbc_final.predict(X_test)))

    fpr, tpr, _ = roc_curve(y_test, test_proba)
    fig, ax = plt.subplots(figsize=(8, 6))
    ax.plot(fpr, tpr, linewidth=2, label=f"GentleBoost (AUC = {metrics['roc_auc']:.4f})")
    ax.plot([0, 1], [0, 1], 'k--', linewidth=1, label='Random')
    ax.set_xlabel('False Positive Rate')
    ax.set_ylabel('True Positive Rate')
    ax.set_title('ROC Curve - Final Model')
    ax.legend()
    ax.grid(True, alpha=0.3)

    plt.tight_layout()
    plt.savefig(OUTPUT_DIR / 'classification_final_roc.png', dpi=150)
    print("\nSaved plot: classification_final_roc.png")


def main():
    """Run all classification experiments."""
    print("="*60)
    print("GentleBoost Classification Experiments")
    print("Breast Cancer Dataset")
    print("="*60)

    X_train, X_val, X_test, y_train, y_val, y_test = load_and_prepare_data()

    results_baseline = baseline_comparison(X_train, X_test, y_train, y_test)
    results_grid = experiment_rounds_and_depth(X_train, X_val, X_test, y_train, y_val, y_test)
    results_grid.to_csv(OUTPUT_DIR / 'classification_rounds_depth_results.csv', index=False)

    print("\n" + "="*60)
    print("Results Summary")
    print("="*60)
    print(results_baseline.to_string(index=False))
    print()
    print(results_grid.to_string(index=False))

    final_model_and_summary(X_train, X_val, X_test, y_train, y_val, y_test)


if __name__ == "__main__":
    main()
