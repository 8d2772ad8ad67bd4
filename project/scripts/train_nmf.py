import logging
from pathlib import Path

import joblib
import numpy as np
from sklearn.datasets import load_digits
from sklearn.metrics import accuracy_score
from sklearn.model_selection import train_test_split
from sklearn.neighbors import KNeighborsClassifier

from pgnmf.config import Config
from pgnmf.nmf_core import factors, init_factors, nnls_subproblem, reconstruction_error


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    # Load and normalize data
    digits = load_digits()
    X = digits.data.astype(np.float64)  # (n_samples, 64)
    y = digits.target

    # Normalize to [0,1]; original digits are in [0,16]
    X = X / 16.0

    X_train, X_test, y_train, y_test = train_test_split(
        X, y, test_size=0.25, random_state=42, stratify=y
    )

    # Build V from training data: V = X_train^T -> (m=64, n_train)
    V_train = X_train.T

    r = 32
    Wo, Ho = init_factors(V_train, r, random_state=0)
    config = Config(tolerance=1e-4, max_iter=50, time_limit=120.0, max_outer_sub=1000, max_inner_sub=20)
    W, H_train, ok = factors(V_train, Wo, Ho, config)
    err = reconstruction_error(V_train, W, H_train)
    print(f"Factorised: {ok} | frob err = {err:.6f}")

    # Train kNN on activations H of the training set
    knn = KNeighborsClassifier(n_neighbors=3)
    knn.fit(H_train.T, y_train)

    # Project test samples onto W to get H_test, all columns in one subproblem
    V_test = X_test.T  # (64, n_test)
    H_test, _, _, _ = nnls_subproblem(
        V_test, W, np.zeros((r, V_test.shape[1])), tol=1e-6, max_outer=300, max_inner=20
    )

    # Evaluate
    y_pred = knn.predict(H_test.T)
    acc = accuracy_score(y_test, y_pred)
    print(f"Test accuracy (kNN on H): {acc:.4f}")

    # Save artifacts at project root (two levels up from this file)
    base_dir = Path(__file__).resolve().parent.parent
    np.savez(base_dir / "nmf_artifacts.npz", W=W, img_shape=np.array([8, 8], dtype=np.int32))
    joblib.dump(knn, base_dir / "knn.joblib")
    print("Artifacts saved: nmf_artifacts.npz, knn.joblib")


if __name__ == "__main__":
    main()
