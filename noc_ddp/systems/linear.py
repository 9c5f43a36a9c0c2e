from __future__ import annotations

from typing import Optional

import torch
from torch import Tensor

from ..problem import DDPProblem


class LinearProblem(DDPProblem):
    """Linear dynamics with quadratic costs.

      x_{k+1} = A x_k + B u_k
      L(x,u)  = (x - x_t)^T Q (x - x_t) + u^T R u
      phi(x)  = (x - x_t)^T Qf (x - x_t)

    DDP solves this in a single accepted iteration, which makes it a
    convenient reference problem.
    """

    def __init__(
        self,
        A: Tensor,
        B: Tensor,
        Q: Tensor,
        R: Tensor,
        Qf: Tensor,
        x_target: Optional[Tensor] = None,
    ) -> None:
        nx, nu = B.shape
        super().__init__(state_dim=nx, input_dim=nu)
        if A.shape != (nx, nx) or Q.shape != (nx, nx) or Qf.shape != (nx, nx) or R.shape != (nu, nu):
            raise ValueError(
                f"Inconsistent shapes: A{tuple(A.shape)} B{tuple(B.shape)} Q{tuple(Q.shape)} "
                f"R{tuple(R.shape)} Qf{tuple(Qf.shape)}"
            )
        self.A = A
        self.B = B
        self.Q = Q
        self.R = R
        self.Qf = Qf
        self.x_target = x_target if x_target is not None else torch.zeros(nx, device=A.device, dtype=A.dtype)

    def state_eq(self, x: Tensor, u: Tensor) -> Tensor:
        return self.A @ x + self.B @ u

    def running_cost(self, x: Tensor, u: Tensor) -> Tensor:
        dx = x - self.x_target
        return dx @ self.Q @ dx + u @ self.R @ u

    def terminal_cost(self, x: Tensor) -> Tensor:
        dx = x - self.x_target
        return dx @ self.Qf @ dx

    def calc_state_eq_deriv(self, x: Tensor, u: Tensor) -> tuple[Tensor, Tensor]:
        return self.A, self.B

    def calc_state_eq_deriv_second(self, x: Tensor, u: Tensor) -> tuple[Tensor, Tensor, Tensor]:
        nx, nu = self.state_dim, self.input_dim
        zeros = lambda *shape: torch.zeros(*shape, device=x.device, dtype=x.dtype)
        return zeros(nx, nx, nx), zeros(nx, nu, nu), zeros(nx, nx, nu)

    def calc_running_cost_deriv(self, x: Tensor, u: Tensor) -> tuple[Tensor, Tensor, Tensor, Tensor, Tensor]:
        dx = x - self.x_target
        Q_sym = self.Q + self.Q.T
        R_sym = self.R + self.R.T
        l_xu = torch.zeros(self.state_dim, self.input_dim, device=x.device, dtype=x.dtype)
        return Q_sym @ dx, R_sym @ u, Q_sym, R_sym, l_xu

    def calc_terminal_cost_deriv(self, x: Tensor) -> tuple[Tensor, Tensor]:
        Qf_sym = self.Qf + self.Qf.T
        return Qf_sym @ (x - self.x_target), Qf_sym
