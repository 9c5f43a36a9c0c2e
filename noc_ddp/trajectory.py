from __future__ import annotations

from dataclasses import dataclass

import torch
from torch import Tensor

from .problem import DDPProblem
from .utils import check_shape


@dataclass(frozen=True)
class Trajectory:
    x_list: Tensor     # [N+1, nx]
    u_list: Tensor     # [N, nu]
    cost_list: Tensor  # [N+1] = (L[0], ..., L[N-1], phi[N])

    @property
    def horizon(self) -> int:
        return self.u_list.shape[0]

    def total_cost(self) -> float:
        return float(self.cost_list.sum())


@torch.no_grad()
def rollout(problem: DDPProblem, x0: Tensor, u_list: Tensor) -> Trajectory:
    """Rollout for single trajectory: x0 [nx], u_list [N,nu] -> Trajectory.

    The inputs are applied exactly as given (no feedback), so rolling out
    ``traj.u_list`` from ``traj.x_list[0]`` reproduces ``traj.x_list``.
    """
    N = u_list.shape[0]
    nx = x0.shape[0]
    X = torch.empty(N + 1, nx, device=x0.device, dtype=x0.dtype)
    cost_list = torch.empty(N + 1, device=x0.device, dtype=x0.dtype)
    X[0] = x0
    for k in range(N):
        cost_list[k] = check_shape(problem.running_cost(X[k], u_list[k]), (), "running_cost")
        X[k + 1] = check_shape(problem.state_eq(X[k], u_list[k]), (nx,), "state_eq")
    cost_list[N] = check_shape(problem.terminal_cost(X[N]), (), "terminal_cost")
    return Trajectory(x_list=X, u_list=u_list.clone(), cost_list=cost_list)
