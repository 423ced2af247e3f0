"""
Train a small pixel-comparison cascade on synthetic windows and export it.

Each stage is a GentleBoost ensemble of bintest stumps trained until it keeps
99% of the positives while passing at most half of the remaining negatives.
Negatives rejected by a stage are not shown to the next one. The detector is
written as a hex text file and read back to check the round trip.
"""

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import logging
import numpy as np
import pandas as pd
import matplotlib.pyplot as plt

from picoboost.cascade import Cascade, NormalizedRegion, PicoClassifier, StageClassifier
from picoboost.learners import BinTestStumpFactory, target_rates
from picoboost.serialization import encode_binary, read_hex_file, write_hex_file
from picoboost.utils import detection_rates, exponential_loss

OUTPUT_DIR = Path(__file__).parent
np.random.seed(42)


def make_windows(n_positives=400, n_negatives=2000, size=24, seed=42):
    """Positives: bright blob at the centre. Negatives: smoothed noise."""
    rng = np.random.default_rng(seed)
    rows, cols = np.mgrid[0:size, 0:size]
    centre = (size - 1) / 2.0

    positives = []
    for _ in range(n_positives):
        sigma = rng.uniform(0.2, 0.35) * size
        dr, dc = rng.normal(0.0, 1.0, size=2)
        blob = np.exp(-((rows - centre - dr) ** 2 + (cols - centre - dc) ** 2) / (2 * sigma ** 2))
        window = 60 + 150 * blob + rng.normal(0, 12, size=(size, size))
        positives.append(window)

    negatives = rng.normal(110, 45, size=(n_negatives, size, size))

    patches = np.clip(np.concatenate([positives, negatives]), 0, 255).astype(np.uint8)
    y = np.concatenate([np.ones(n_positives), -np.ones(n_negatives)])
    return patches, y


def train_cascade(patches, y, n_stages=4, min_tpr=0.99, max_fpr=0.5, max_rounds=20):
    """Train stages in sequence on the windows that survived the previous ones."""
    cascade = Cascade()
    history = []
    alive = np.ones(y.shape[0], dtype=bool)

    for stage_index in range(n_stages):
        stage_patches, stage_y = patches[alive], y[alive]
        if not np.any(stage_y < 0):
            print(f"Stage {stage_index}: no negatives left, stopping")
            break

        factory = BinTestStumpFactory(
            stage_patches, stage_y, n_candidates=256, random_state=stage_index
        )
        predicate = target_rates(stage_y, min_tpr=min_tpr, max_fpr=max_fpr, max_rounds=max_rounds)

        losses = []

        def terminate(learners, outputs):
            losses.append(exponential_loss(stage_y, outputs))
            return predicate(learners, outputs)

        stage = StageClassifier()
        outputs = stage.train(stage_y, factory, factory.evaluate, terminate)
        threshold = predicate.threshold_
        cascade.add_stage(stage, threshold)
        factory.clear()

        tpr, fpr = detection_rates(stage_y, outputs, threshold)
        history.append({
            "stage": stage_index,
            "n_trees": len(stage),
            "threshold": threshold,
            "tpr": tpr,
            "fpr": fpr,
            "n_samples": int(stage_y.shape[0]),
            "losses": losses,
        })
        print(f"Stage {stage_index}: {len(stage)} trees, tpr={tpr:.4f}, fpr={fpr:.4f}")

        # Only windows accepted by this stage reach the next one
        stage_alive = outputs >= threshold
        alive_idx = np.flatnonzero(alive)
        alive[alive_idx[~stage_alive]] = False

    return cascade, history


def cascade_rates(cascade, patches, y):
    """Overall detection and false-positive rates of the whole cascade."""
    accepted = np.ones(y.shape[0], dtype=bool)
    for stage, threshold in cascade:
        outputs = stage.get_output(lambda tree: tree.predict(patches))
        accepted &= outputs >= threshold
    return float(np.mean(accepted[y > 0])), float(np.mean(accepted[y <= 0]))


def plot_losses(history):
    fig, ax = plt.subplots(figsize=(8, 5))
    for record in history:
        ax.plot(record["losses"], marker="o", label=f"stage {record['stage']}")
    ax.set_xlabel("Round")
    ax.set_ylabel("Exponential loss")
    ax.set_title("GentleBoost training loss per stage")
    ax.legend()
    ax.grid(True, alpha=0.3)
    plt.tight_layout()
    plt.savefig(OUTPUT_DIR / "cascade_losses.png", dpi=150)
    print("Saved plot: cascade_losses.png")


def main():
    logging.basicConfig(level=logging.INFO)

    print("=" * 60)
    print("Cascade training and hex export")
    print("=" * 60)

    patches, y = make_windows()
    test_patches, test_y = make_windows(seed=7)

    cascade, history = train_cascade(patches, y)
    detector = PicoClassifier(cascade, NormalizedRegion(0.0, 0.0, 1.0, 1.0))

    summary = pd.DataFrame([{k: v for k, v in r.items() if k != "losses"} for r in history])
    print("\n" + summary.to_string(index=False))

    train_tpr, train_fpr = cascade_rates(cascade, patches, y)
    test_tpr, test_fpr = cascade_rates(cascade, test_patches, test_y)
    print(f"\nCascade train: tpr={train_tpr:.4f}, fpr={train_fpr:.4f}")
    print(f"Cascade test:  tpr={test_tpr:.4f}, fpr={test_fpr:.4f}")

    path = OUTPUT_DIR / "synthetic_detector.ea"
    write_hex_file(detector, path)
    loaded = read_hex_file(path)
    assert encode_binary(loaded) == encode_binary(detector)
    print(f"\nWrote {len(encode_binary(detector))} bytes as hex to {path.name}; read-back matches")

    plot_losses(history)


if __name__ == "__main__":
    main()
