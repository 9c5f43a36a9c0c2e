from __future__ import annotations

import math
from concurrent.futures import Executor
from dataclasses import dataclass
from typing import Optional, Sequence

import torch
from torch import Tensor

from .problem import DDPProblem
from .trajectory import Trajectory
from .utils import check_shape


@dataclass(frozen=True)
class LineSearchResult:
    success: bool
    alpha: float = 0.0
    candidate: Optional[Trajectory] = None
    cost_update_actual: float = 0.0
    cost_update_expected: float = 0.0
    cost_update_ratio: float = 0.0


@torch.no_grad()
def forward_pass(
    problem: DDPProblem,
    traj: Trajectory,
    k_list: Tensor,
    K_list: Tensor,
    alpha: float,
) -> Trajectory:
    """Roll out a candidate trajectory with the gains scaled by alpha.

    u_c[k] = u[k] + alpha * k[k] + K[k] (x_c[k] - x[k]), starting from x[0].
    """
    X, U = traj.x_list, traj.u_list
    N = traj.horizon
    nx = X.shape[1]
    X_new = torch.empty_like(X)
    U_new = torch.empty_like(U)
    cost_list = torch.empty_like(traj.cost_list)

    X_new[0] = X[0]
    for k in range(N):
        dx = X_new[k] - X[k]
        U_new[k] = U[k] + alpha * k_list[k] + K_list[k] @ dx
        cost_list[k] = check_shape(problem.running_cost(X_new[k], U_new[k]), (), "running_cost")
        X_new[k + 1] = check_shape(problem.state_eq(X_new[k], U_new[k]), (nx,), "state_eq")
    cost_list[N] = check_shape(problem.terminal_cost(X_new[N]), (), "terminal_cost")
    return Trajectory(x_list=X_new, u_list=U_new, cost_list=cost_list)


def _evaluate(
    alpha: float,
    candidate: Trajectory,
    cost_old: float,
    dV: Tensor,
    cost_update_ratio_thre: float,
) -> LineSearchResult:
    cost_new = candidate.total_cost()
    actual = cost_old - cost_new
    expected = -alpha * (float(dV[0]) + alpha * float(dV[1]))
    if expected > 0.0:
        ratio = actual / expected
    else:
        # No reduction predicted; fall back to the sign of the actual update.
        ratio = math.copysign(1.0, actual) if actual != 0.0 else 0.0

    accepted = math.isfinite(cost_new) and math.isfinite(ratio) and ratio > cost_update_ratio_thre and actual >= 0.0
    return LineSearchResult(
        success=accepted,
        alpha=alpha,
        candidate=candidate,
        cost_update_actual=actual,
        cost_update_expected=expected,
        cost_update_ratio=ratio,
    )


def line_search(
    problem: DDPProblem,
    traj: Trajectory,
    k_list: Tensor,
    K_list: Tensor,
    dV: Tensor,
    *,
    alpha_list: Sequence[float],
    cost_update_ratio_thre: float = 0.0,
    executor: Optional[Executor] = None,
) -> LineSearchResult:
    """Try step sizes in the given order and return the first acceptable one.

    With an executor all rollouts run concurrently, but the candidate is
    still selected by scanning ``alpha_list`` in order. If nothing is
    accepted the diagnostics of the last tried step size are reported.
    """
    cost_old = traj.total_cost()
    last = LineSearchResult(success=False)

    if executor is None:
        for alpha in alpha_list:
            candidate = forward_pass(problem, traj, k_list, K_list, float(alpha))
            last = _evaluate(float(alpha), candidate, cost_old, dV, cost_update_ratio_thre)
            if last.success:
                return last
    else:
        candidates = list(
            executor.map(lambda a: forward_pass(problem, traj, k_list, K_list, float(a)), alpha_list)
        )
        for alpha, candidate in zip(alpha_list, candidates):
            last = _evaluate(float(alpha), candidate, cost_old, dV, cost_update_ratio_thre)
            if last.success:
                return last

    return LineSearchResult(
        success=False,
        alpha=last.alpha,
        cost_update_actual=last.cost_update_actual,
        cost_update_expected=last.cost_update_expected,
        cost_update_ratio=last.cost_update_ratio,
    )
