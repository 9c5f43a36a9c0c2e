from __future__ import annotations

from concurrent.futures import Executor
from dataclasses import dataclass
from typing import Optional

from torch import Tensor

from .problem import DDPProblem
from .trajectory import Trajectory
from .utils import check_shape


@dataclass(frozen=True)
class Derivative:
    """Derivatives of the state equation and running cost at one time step."""

    Fx: Tensor   # [nx, nx]
    Fu: Tensor   # [nx, nu]
    Lx: Tensor   # [nx]
    Lu: Tensor   # [nu]
    Lxx: Tensor  # [nx, nx]
    Luu: Tensor  # [nu, nu]
    Lxu: Tensor  # [nx, nu]

    # Rank-3 tensors, first index is the state equation component.
    # None under the Gauss-Newton approximation.
    Fxx: Optional[Tensor] = None  # [nx, nx, nx]
    Fuu: Optional[Tensor] = None  # [nx, nu, nu]
    Fxu: Optional[Tensor] = None  # [nx, nx, nu]


def calc_derivative(problem: DDPProblem, x: Tensor, u: Tensor, *, with_second_order: bool) -> Derivative:
    """Evaluate the derivative bundle of one time step at (x, u)."""
    nx, nu = problem.state_dim, problem.input_dim

    Fx, Fu = problem.calc_state_eq_deriv(x, u)
    Lx, Lu, Lxx, Luu, Lxu = problem.calc_running_cost_deriv(x, u)
    second = {}
    if with_second_order:
        Fxx, Fuu, Fxu = problem.calc_state_eq_deriv_second(x, u)
        second = dict(
            Fxx=check_shape(Fxx, (nx, nx, nx), "Fxx"),
            Fuu=check_shape(Fuu, (nx, nu, nu), "Fuu"),
            Fxu=check_shape(Fxu, (nx, nx, nu), "Fxu"),
        )

    return Derivative(
        Fx=check_shape(Fx, (nx, nx), "Fx"),
        Fu=check_shape(Fu, (nx, nu), "Fu"),
        Lx=check_shape(Lx, (nx,), "Lx"),
        Lu=check_shape(Lu, (nu,), "Lu"),
        Lxx=check_shape(Lxx, (nx, nx), "Lxx"),
        Luu=check_shape(Luu, (nu, nu), "Luu"),
        Lxu=check_shape(Lxu, (nx, nu), "Lxu"),
        **second,
    )


def calc_derivatives(
    problem: DDPProblem,
    traj: Trajectory,
    *,
    with_second_order: bool = False,
    executor: Optional[Executor] = None,
) -> tuple[list[Derivative], Tensor, Tensor]:
    """Differentiate dynamics and costs along a trajectory.

    Time steps are independent of each other; when an executor is given they
    are evaluated concurrently and returned in index order.

    Returns:
      derivative_list: N entries, one per time step
      last_Vx: [nx] terminal cost gradient
      last_Vxx: [nx, nx] terminal cost Hessian
    """
    N = traj.horizon
    nx = problem.state_dim
    X, U = traj.x_list, traj.u_list

    def _at(k: int) -> Derivative:
        return calc_derivative(problem, X[k], U[k], with_second_order=with_second_order)

    if executor is None:
        derivative_list = [_at(k) for k in range(N)]
    else:
        derivative_list = list(executor.map(_at, range(N)))

    phi_x, phi_xx = problem.calc_terminal_cost_deriv(X[N])
    last_Vx = check_shape(phi_x, (nx,), "phi_x")
    last_Vxx = check_shape(phi_xx, (nx, nx), "phi_xx")
    return derivative_list, last_Vx, last_Vxx
