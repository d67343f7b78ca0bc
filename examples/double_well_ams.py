# examples/double_well_ams.py
"""Stochastic transients in a double-well potential via make_ams_transient.

The gradient system

    dx = (x - x^3) dt + sigma dW_x
    dy = -y dt        + sigma dW_y

has stable states A = (-1, 0) and B = (1, 0) separated by the saddle
S = (0, 0). Each path starts in A; the default score measures progress along
A -> S -> B. The example marches a batch of paths, reports how many reach B
and plots the score history of every path.

The second half repeats the batch restricted to the x-direction, loading the
one-dimensional subspace from a Matrix Market file through the "space" key.

This script saves plots to disk (no interactive windows).
"""

from __future__ import annotations

from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
from scipy.io import mmwrite

from theta_engine.array_model import ArrayModel
from theta_engine.factory import make_ams_transient_from_config
from theta_engine.transient import TransientPath

_OUTPUT_DIR = Path(__file__).resolve().parent / "output" / "double_well"

START = np.array([-1.0, 0.0])
SADDLE = np.array([0.0, 0.0])
TARGET = np.array([1.0, 0.0])


def double_well_rhs(z: np.ndarray) -> np.ndarray:
    """Drift of the double-well system."""
    x, y = z
    return np.array([x - x**3, -y])


def double_well_jacobian(z: np.ndarray) -> np.ndarray:
    """Jacobian of double_well_rhs."""
    x, _ = z
    return np.array([[1.0 - 3.0 * x**2, 0.0], [0.0, -1.0]])


def run_batch(params: dict[str, object], n_paths: int) -> list[TransientPath]:
    """March n_paths independent transients from the start state.

    Args:
        params: Factory and driver configuration.
        n_paths: Number of paths.

    Returns:
        One TransientPath per path index.
    """
    model = ArrayModel(double_well_rhs, double_well_jacobian, START)
    transient = make_ams_transient_from_config(model, params, START, SADDLE, TARGET)
    return [transient.transient(path=p) for p in range(n_paths)]


def save_score_plot(paths: list[TransientPath], dt: float, *, title: str, out_path: Path) -> None:
    """Save the score history of every path."""
    plt.figure(figsize=(8, 5))
    for path in paths:
        t = dt * np.arange(1, len(path.scores) + 1)
        plt.plot(t, path.scores, linewidth=0.8, alpha=0.6)
    plt.axhline(0.5, color="k", linestyle="--", linewidth=0.8, label="saddle")
    plt.grid(visible=True)
    plt.legend()
    plt.title(title)
    plt.xlabel("Time")
    plt.ylabel("Score")
    plt.tight_layout()

    out_path.parent.mkdir(parents=True, exist_ok=True)
    plt.savefig(out_path, dpi=150)
    plt.close()


def main() -> None:
    """Run full-space and projected batches and save their score plots.

    Files are written to: examples/output/double_well/
    """
    _OUTPUT_DIR.mkdir(parents=True, exist_ok=True)

    dt = 0.05
    n_paths = 32
    params: dict[str, object] = {
        "theta": 0.5,
        "ams seed": 20240611,
        "noise amplitude": 0.45,
        "time step": dt,
        "maximum time": 20.0,
    }

    # ---------------------------------------------------------------------
    # (1) Full-space noise and score
    # ---------------------------------------------------------------------
    paths = run_batch(params, n_paths)
    hits = sum(path.max_score >= 1.0 - 1e-12 for path in paths)
    print(f"full space: {hits}/{n_paths} paths reached B")  # noqa: T201
    save_score_plot(
        paths,
        dt,
        title=f"Double well, full space ({hits}/{n_paths} transitions)",
        out_path=_OUTPUT_DIR / "scores_full.png",
    )

    # ---------------------------------------------------------------------
    # (2) Noise and score restricted to span{e_x}
    # ---------------------------------------------------------------------
    space = _OUTPUT_DIR / "space_x.mtx"
    mmwrite(str(space), np.array([[1.0], [0.0]]))

    projected = run_batch({**params, "space": str(space)}, n_paths)
    hits = sum(path.max_score >= 1.0 - 1e-12 for path in projected)
    print(f"projected:  {hits}/{n_paths} paths reached B")  # noqa: T201
    save_score_plot(
        projected,
        dt,
        title=f"Double well, projected onto x ({hits}/{n_paths} transitions)",
        out_path=_OUTPUT_DIR / "scores_projected.png",
    )


if __name__ == "__main__":
    main()
