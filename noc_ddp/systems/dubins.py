from __future__ import annotations

from dataclasses import dataclass, field
from typing import Tuple

import torch
from torch import Tensor

from ..problem import DDPProblem


@dataclass(frozen=True)
class CircleObstacle:
    center: Tuple[float, float]
    radius: float


@dataclass(frozen=True)
class DubinsConfig:
    dt: float = 0.01

    # Target [x, y, theta]
    x_target: Tuple[float, float, float] = (10.0, 10.0, float(torch.pi / 4))

    # Diagonal quadratic weights
    Q: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    R: Tuple[float, float] = (1e-3, 1e-3)
    Qf: Tuple[float, float, float] = (10.0, 10.0, 1.0)

    # Obstacles are encoded as a penalty q_obs * max(0, margin - h_i(x))^2
    obstacles: Tuple[CircleObstacle, ...] = field(default_factory=tuple)
    q_obs: float = 1.0
    obs_margin: float = 0.0


def dubins_step(x: Tensor, u: Tensor, *, cfg: DubinsConfig) -> Tensor:
    """Discrete Dubins vehicle dynamics.

    State:  [x, y, theta]
    Input:  [v, omega]
    """
    dt = cfg.dt
    px, py, th = x[0], x[1], x[2]
    v, om = u[0], u[1]
    return torch.stack([px + dt * v * torch.cos(th), py + dt * v * torch.sin(th), th + dt * om])


def dubins_f_jac(x: Tensor, u: Tensor, *, cfg: DubinsConfig) -> tuple[Tensor, Tensor]:
    """Analytic Jacobians for Dubins discrete dynamics x_{k+1}=f(x_k,u_k)."""
    dt = cfg.dt
    th = x[2]
    v = u[0]
    c = torch.cos(th)
    s = torch.sin(th)

    A = torch.eye(3, device=x.device, dtype=x.dtype)
    A[0, 2] = -dt * v * s
    A[1, 2] = dt * v * c

    B = torch.zeros(3, 2, device=x.device, dtype=x.dtype)
    B[0, 0] = dt * c
    B[1, 0] = dt * s
    B[2, 1] = dt
    return A, B


def dubins_f_hess(x: Tensor, u: Tensor, *, cfg: DubinsConfig) -> tuple[Tensor, Tensor, Tensor]:
    """Second-order derivatives (f_xx [3,3,3], f_uu [3,2,2], f_xu [3,3,2])."""
    dt = cfg.dt
    th = x[2]
    v = u[0]
    c = torch.cos(th)
    s = torch.sin(th)

    f_xx = torch.zeros(3, 3, 3, device=x.device, dtype=x.dtype)
    f_xx[0, 2, 2] = -dt * v * c
    f_xx[1, 2, 2] = -dt * v * s

    f_uu = torch.zeros(3, 2, 2, device=x.device, dtype=x.dtype)

    f_xu = torch.zeros(3, 3, 2, device=x.device, dtype=x.dtype)
    f_xu[0, 2, 0] = -dt * s
    f_xu[1, 2, 0] = dt * c
    return f_xx, f_uu, f_xu


def h_circle_obstacle(x: Tensor, *, obs: CircleObstacle) -> Tensor:
    """Safety function of a circular obstacle, safe where h(x) > 0.

      h(x) = ||p - c||^2 - r^2
    with p=(x,y).
    """
    cx, cy = obs.center
    dx = x[0] - cx
    dy = x[1] - cy
    return dx * dx + dy * dy - (obs.radius ** 2)


def grad_h_circle_obstacle(x: Tensor, *, obs: CircleObstacle) -> Tensor:
    """Gradient of h wrt state x=[x,y,theta] (theta derivative is 0)."""
    cx, cy = obs.center
    return torch.stack([2.0 * (x[0] - cx), 2.0 * (x[1] - cy), torch.zeros((), device=x.device, dtype=x.dtype)])


class DubinsProblem(DDPProblem):
    """Drive a Dubins vehicle to a target pose, optionally around circular obstacles."""

    def __init__(self, cfg: DubinsConfig, *, device: torch.device | None = None, dtype: torch.dtype = torch.float64):
        super().__init__(state_dim=3, input_dim=2)
        self.cfg = cfg
        self.target = torch.tensor(cfg.x_target, device=device, dtype=dtype)
        self.Q = torch.tensor(cfg.Q, device=device, dtype=dtype)
        self.R = torch.tensor(cfg.R, device=device, dtype=dtype)
        self.Qf = torch.tensor(cfg.Qf, device=device, dtype=dtype)
        self._hess_h = torch.diag(torch.tensor([2.0, 2.0, 0.0], device=device, dtype=dtype))

    def state_eq(self, x: Tensor, u: Tensor) -> Tensor:
        return dubins_step(x, u, cfg=self.cfg)

    def _obstacle_cost(self, x: Tensor) -> Tensor:
        cost = torch.zeros((), device=x.device, dtype=x.dtype)
        for obs in self.cfg.obstacles:
            viol = torch.clamp(self.cfg.obs_margin - h_circle_obstacle(x, obs=obs), min=0.0)
            cost = cost + self.cfg.q_obs * viol * viol
        return cost

    def running_cost(self, x: Tensor, u: Tensor) -> Tensor:
        dx = x - self.target
        return (self.Q * dx * dx).sum() + (self.R * u * u).sum() + self._obstacle_cost(x)

    def terminal_cost(self, x: Tensor) -> Tensor:
        dx = x - self.target
        return (self.Qf * dx * dx).sum()

    def calc_state_eq_deriv(self, x: Tensor, u: Tensor) -> tuple[Tensor, Tensor]:
        return dubins_f_jac(x, u, cfg=self.cfg)

    def calc_state_eq_deriv_second(self, x: Tensor, u: Tensor) -> tuple[Tensor, Tensor, Tensor]:
        return dubins_f_hess(x, u, cfg=self.cfg)

    def calc_running_cost_deriv(self, x: Tensor, u: Tensor) -> tuple[Tensor, Tensor, Tensor, Tensor, Tensor]:
        # Diagonal tracking weights; state and input terms are separable so l_xu = 0.
        l_x = 2.0 * self.Q * (x - self.target)
        l_u = 2.0 * self.R * u
        l_xx = torch.diag(2.0 * self.Q)
        l_uu = torch.diag(2.0 * self.R)
        l_xu = torch.zeros(3, 2, device=x.device, dtype=x.dtype)
        for obs in self.cfg.obstacles:
            viol = self.cfg.obs_margin - h_circle_obstacle(x, obs=obs)
            if viol <= 0.0:
                continue
            g = grad_h_circle_obstacle(x, obs=obs)
            q = self.cfg.q_obs
            l_x = l_x - 2.0 * q * viol * g
            l_xx = l_xx + 2.0 * q * torch.outer(g, g) - 2.0 * q * viol * self._hess_h
        return l_x, l_u, l_xx, l_uu, l_xu

    def calc_terminal_cost_deriv(self, x: Tensor) -> tuple[Tensor, Tensor]:
        dx = x - self.target
        return 2.0 * self.Qf * dx, torch.diag(2.0 * self.Qf)
