from __future__ import annotations

import argparse
import json
import os
from typing import Optional

import numpy as np
import matplotlib.pyplot as plt
from matplotlib.patches import Circle


def _load_npy(run_dir: str, name: str) -> Optional[np.ndarray]:
    path = os.path.join(run_dir, name)
    if not os.path.exists(path):
        return None
    return np.load(path)

def _load_json(run_dir: str, name: str) -> Optional[object]:
    path = os.path.join(run_dir, name)
    if not os.path.exists(path):
        return None
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def plot_trace(trace: list[dict], out_path: str, *, show: bool = False) -> None:
    """Convergence panel: cost, regularization, step size and relative norm of k per iteration."""
    it = np.array([t["iter"] for t in trace])
    accepted = np.array([bool(t["accepted"]) for t in trace])

    fig, ax = plt.subplots(4, 1, figsize=(9, 10), sharex=True)
    ax[0].plot(it, [t["cost"] for t in trace], marker="o", markersize=3)
    ax[0].set_ylabel("cost")
    ax[0].set_yscale("log")
    ax[0].set_title("DDP convergence")

    ax[1].plot(it, [max(t["lambda_"], 1e-12) for t in trace], label="lambda", marker="o", markersize=3)
    ax[1].plot(it, [t["dlambda"] for t in trace], label="dlambda", linestyle="--")
    ax[1].set_ylabel("regularization")
    ax[1].set_yscale("log")
    ax[1].legend()

    alpha = np.array([t["alpha"] for t in trace])
    ax[2].scatter(it[accepted], alpha[accepted], label="accepted", s=12)
    ax[2].scatter(it[~accepted], alpha[~accepted], label="rejected", s=12, color="tab:red", marker="x")
    ax[2].set_ylabel("alpha")
    ax[2].legend()

    ax[3].plot(it, [max(t["k_rel_norm"], 1e-16) for t in trace], color="tab:green")
    ax[3].set_ylabel("k_rel_norm")
    ax[3].set_yscale("log")
    ax[3].set_xlabel("iteration")

    for a in ax:
        a.grid(True, alpha=0.3)
    fig.tight_layout()
    fig.savefig(out_path, dpi=160)
    if show:
        plt.show()
    plt.close(fig)


def plot_run(run_dir: str, *, show: bool = False) -> None:
    x_list = _load_npy(run_dir, "x_list.npy")  # [N+1,nx]
    u_list = _load_npy(run_dir, "u_list.npy")  # [N,nu]
    trace = _load_json(run_dir, "trace.json")

    if x_list is None:
        raise FileNotFoundError(f"Missing `x_list.npy` in {run_dir}")

    cfg = _load_json(run_dir, "config_used.json") or {}
    system = cfg.get("system", {}) if isinstance(cfg, dict) else {}

    # 1) Convergence
    if trace:
        plot_trace(trace, os.path.join(run_dir, "convergence.png"), show=show)

    # 2) States over the horizon
    t = np.arange(x_list.shape[0])
    plt.figure(figsize=(10, 6))
    for i in range(x_list.shape[1]):
        plt.plot(t, x_list[:, i], label=f"x[{i}]")
    plt.xlabel("k")
    plt.ylabel("state")
    plt.title("States over horizon")
    plt.grid(True, alpha=0.3)
    plt.legend(ncol=2)
    plt.tight_layout()
    plt.savefig(os.path.join(run_dir, "states.png"), dpi=160)
    if show:
        plt.show()
    plt.close()

    # 3) Inputs over the horizon
    if u_list is not None:
        plt.figure(figsize=(10, 5))
        for i in range(u_list.shape[1]):
            plt.step(np.arange(u_list.shape[0]), u_list[:, i], where="post", label=f"u[{i}]")
        plt.xlabel("k")
        plt.ylabel("input")
        plt.title("Inputs over horizon")
        plt.grid(True, alpha=0.3)
        plt.legend(ncol=2)
        plt.tight_layout()
        plt.savefig(os.path.join(run_dir, "inputs.png"), dpi=160)
        if show:
            plt.show()
        plt.close()

    # 4) XY path for planar vehicles
    if system.get("name") == "dubins":
        fig, ax = plt.subplots(figsize=(7, 6))
        for o in system.get("obstacles", []):
            c = o.get("center", None)
            r = float(o.get("radius", 0.0))
            if c is None or len(c) != 2:
                continue
            circ = Circle((float(c[0]), float(c[1])), r, fill=False, linewidth=2, color="black", alpha=0.6)
            ax.add_patch(circ)

        target = system.get("target", None)
        if isinstance(target, list) and len(target) >= 2:
            ax.scatter([float(target[0])], [float(target[1])], marker="*", s=140, color="gold", edgecolor="black", label="target")

        ax.plot(x_list[:, 0], x_list[:, 1], label="DDP", linewidth=2)
        ax.scatter([x_list[0, 0]], [x_list[0, 1]], label="start", s=60)
        ax.scatter([x_list[-1, 0]], [x_list[-1, 1]], label="end", s=60)
        ax.set_xlabel("x")
        ax.set_ylabel("y")
        ax.set_title("Dubins trajectory (x-y)")
        ax.axis("equal")
        ax.grid(True, alpha=0.3)
        ax.legend()
        fig.tight_layout()
        fig.savefig(os.path.join(run_dir, "traj_xy.png"), dpi=160)
        if show:
            plt.show()
        plt.close(fig)


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--run_dir", type=str, required=True, help="Output directory written by run_experiment.py")
    ap.add_argument("--show", action="store_true")
    args = ap.parse_args()

    plot_run(args.run_dir, show=args.show)
    print(f"Saved plots to: {args.run_dir}")


if __name__ == "__main__":
    main()
