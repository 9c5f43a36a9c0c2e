from __future__ import annotations

import argparse
import json
import os
from datetime import datetime
from typing import Any, Dict

import numpy as np
import torch
import yaml

from noc_ddp import DDPConfig, DDPProblem, DDPSolver
from noc_ddp.systems import CircleObstacle, DubinsConfig, DubinsProblem, LinearProblem


_DTYPES = {"float32": torch.float32, "float64": torch.float64}


def _set_seed(seed: int) -> None:
    torch.manual_seed(seed)
    np.random.seed(seed)


def _load_yaml(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f)


def build_problem(system_cfg: Dict[str, Any], *, device: torch.device, dtype: torch.dtype) -> DDPProblem:
    name = str(system_cfg["name"])
    if name == "dubins":
        obstacles = tuple(
            CircleObstacle(center=tuple(o["center"]), radius=float(o["radius"]))
            for o in system_cfg.get("obstacles", [])
        )
        dub_cfg = DubinsConfig(
            dt=float(system_cfg.get("dt", DubinsConfig.dt)),
            x_target=tuple(system_cfg.get("target", DubinsConfig.x_target)),
            Q=tuple(system_cfg.get("Q", DubinsConfig.Q)),
            R=tuple(system_cfg.get("R", DubinsConfig.R)),
            Qf=tuple(system_cfg.get("Qf", DubinsConfig.Qf)),
            obstacles=obstacles,
            q_obs=float(system_cfg.get("q_obs", DubinsConfig.q_obs)),
            obs_margin=float(system_cfg.get("obs_margin", DubinsConfig.obs_margin)),
        )
        return DubinsProblem(dub_cfg, device=device, dtype=dtype)
    if name == "linear":
        t = lambda key: torch.tensor(system_cfg[key], device=device, dtype=dtype)
        x_target = t("target") if "target" in system_cfg else None
        return LinearProblem(t("A"), t("B"), t("Q"), t("R"), t("Qf"), x_target=x_target)
    raise ValueError(f"Unknown system: {name}")


def run_once(cfg: Dict[str, Any], *, device: torch.device, run_dir: str) -> Dict[str, Any]:
    dtype = _DTYPES[str(cfg.get("dtype", "float64"))]
    ddp_cfg = DDPConfig.from_dict(cfg.get("ddp", {}))
    system_cfg = cfg["system"]
    problem = build_problem(system_cfg, device=device, dtype=dtype)

    N = ddp_cfg.horizon_steps
    x0 = torch.tensor(system_cfg["x0"], device=device, dtype=dtype)
    u_init = torch.tensor(system_cfg.get("u_init", [0.0] * problem.input_dim), device=device, dtype=dtype)
    u_list = u_init.expand(N, problem.input_dim).clone()

    solver = DDPSolver(problem, ddp_cfg)
    success = solver.solve(x0, u_list)

    np.save(os.path.join(run_dir, "x_list.npy"), solver.x_list.cpu().numpy())
    np.save(os.path.join(run_dir, "u_list.npy"), solver.u_list.cpu().numpy())
    np.save(os.path.join(run_dir, "k_list.npy"), solver.k_list.cpu().numpy())
    np.save(os.path.join(run_dir, "K_list.npy"), solver.K_list.cpu().numpy())
    with open(os.path.join(run_dir, "trace.json"), "w", encoding="utf-8") as f:
        json.dump([t.as_dict() for t in solver.trace_data_list], f, indent=2)

    summary = {
        "success": bool(success),
        "status": solver.status.value,
        "iterations": len(solver.trace_data_list),
        "initial_cost": solver.trace_data_list[0].cost if solver.trace_data_list else None,
        "final_cost": solver.trajectory.total_cost(),
        "final_state": solver.x_list[-1].tolist(),
    }
    return {"summary": summary, "solver": solver}


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--config", type=str, required=True)
    ap.add_argument("--plot", action="store_true", help="Generate plots into output directory")
    args = ap.parse_args()

    cfg = _load_yaml(args.config)
    seed = int(cfg.get("seed", 0))
    _set_seed(seed)

    device = torch.device(cfg.get("device", "cpu"))

    out_dir = cfg.get("out_dir", "outputs")
    run_name = cfg.get("run_name", os.path.splitext(os.path.basename(args.config))[0])
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    run_dir = os.path.join(out_dir, f"{run_name}_{stamp}")
    os.makedirs(run_dir, exist_ok=True)

    results = run_once(cfg, device=device, run_dir=run_dir)

    # Save config + results metadata
    with open(os.path.join(run_dir, "config_used.json"), "w", encoding="utf-8") as f:
        json.dump(cfg, f, indent=2, ensure_ascii=False)
    with open(os.path.join(run_dir, "results_summary.json"), "w", encoding="utf-8") as f:
        json.dump(results["summary"], f, indent=2, ensure_ascii=False)

    print(f"Saved run to: {run_dir}")
    print(json.dumps(results["summary"], indent=2, ensure_ascii=False))

    do_plot = bool(cfg.get("plot", False)) or bool(args.plot)
    if do_plot:
        from plot_results import plot_run
        plot_run(run_dir, show=False)
        print("Plots saved.")


if __name__ == "__main__":
    main()
