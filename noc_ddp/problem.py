from __future__ import annotations

from typing import Callable

from torch import Tensor

from .autodiff import compute_jacobian, compute_second_derivatives, grad_hess_x, grad_hess_xu


class DDPProblem:
    """Discrete-time optimal control problem solved by DDP.

      minimize  sum_{k=0}^{N-1} L(x_k, u_k) + phi(x_N)
      s.t.      x_{k+1} = f(x_k, u_k)

    Subclasses provide the state equation, both costs and their derivatives.
    All routines must be deterministic and free of side effects; the solver
    calls them many times per iteration. Second-order derivatives of the
    state equation are optional and only requested when the solver is
    configured with ``use_state_eq_second_derivative=True``.
    """

    def __init__(self, state_dim: int, input_dim: int) -> None:
        if state_dim <= 0 or input_dim <= 0:
            raise ValueError(f"Dimensions must be positive, got state_dim={state_dim}, input_dim={input_dim}")
        self._state_dim = int(state_dim)
        self._input_dim = int(input_dim)

    @property
    def state_dim(self) -> int:
        return self._state_dim

    @property
    def input_dim(self) -> int:
        return self._input_dim

    def state_eq(self, x: Tensor, u: Tensor) -> Tensor:
        """Next state x[k+1] from current state x[k] and input u[k]."""
        raise NotImplementedError

    def running_cost(self, x: Tensor, u: Tensor) -> Tensor:
        """Running cost L[k]."""
        raise NotImplementedError

    def terminal_cost(self, x: Tensor) -> Tensor:
        """Terminal cost phi[N]."""
        raise NotImplementedError

    def calc_state_eq_deriv(self, x: Tensor, u: Tensor) -> tuple[Tensor, Tensor]:
        """Return (Fx [n,n], Fu [n,m])."""
        raise NotImplementedError

    def calc_state_eq_deriv_second(self, x: Tensor, u: Tensor) -> tuple[Tensor, Tensor, Tensor]:
        """Return (Fxx [n,n,n], Fuu [n,m,m], Fxu [n,n,m]).

        The first index selects the component of the state equation,
        e.g. Fxx[i] is the Hessian of f_i w.r.t. the state.
        """
        raise NotImplementedError(
            f"{type(self).__name__} does not provide second-order derivatives of the state equation"
        )

    def calc_running_cost_deriv(self, x: Tensor, u: Tensor) -> tuple[Tensor, Tensor, Tensor, Tensor, Tensor]:
        """Return (Lx [n], Lu [m], Lxx [n,n], Luu [m,m], Lxu [n,m])."""
        raise NotImplementedError

    def calc_terminal_cost_deriv(self, x: Tensor) -> tuple[Tensor, Tensor]:
        """Return (phi_x [n], phi_xx [n,n])."""
        raise NotImplementedError


class AutodiffDDPProblem(DDPProblem):
    """DDP problem whose derivatives are computed with autograd.

    Useful for prototyping a model before writing analytical derivatives;
    the autograd path is considerably slower.
    """

    def __init__(
        self,
        state_dim: int,
        input_dim: int,
        *,
        state_eq: Callable[[Tensor, Tensor], Tensor],
        running_cost: Callable[[Tensor, Tensor], Tensor],
        terminal_cost: Callable[[Tensor], Tensor],
    ) -> None:
        super().__init__(state_dim, input_dim)
        self._f = state_eq
        self._l = running_cost
        self._phi = terminal_cost

    def state_eq(self, x: Tensor, u: Tensor) -> Tensor:
        return self._f(x, u)

    def running_cost(self, x: Tensor, u: Tensor) -> Tensor:
        return self._l(x, u)

    def terminal_cost(self, x: Tensor) -> Tensor:
        return self._phi(x)

    def calc_state_eq_deriv(self, x: Tensor, u: Tensor) -> tuple[Tensor, Tensor]:
        return compute_jacobian(self._f, x, u)

    def calc_state_eq_deriv_second(self, x: Tensor, u: Tensor) -> tuple[Tensor, Tensor, Tensor]:
        return compute_second_derivatives(self._f, x, u)

    def calc_running_cost_deriv(self, x: Tensor, u: Tensor) -> tuple[Tensor, Tensor, Tensor, Tensor, Tensor]:
        return grad_hess_xu(self._l, x, u)

    def calc_terminal_cost_deriv(self, x: Tensor) -> tuple[Tensor, Tensor]:
        return grad_hess_x(self._phi, x)
