from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence

import torch
from torch import Tensor

from .derivative import Derivative
from .utils import cholesky_or_none, cholesky_solve, regularize_matrix, symmetrize, tensor_contract


@dataclass(frozen=True)
class BackwardPassResult:
    success: bool
    k_list: Tensor  # [N, nu] feedforward term
    K_list: Tensor  # [N, nu, nx] feedback gain
    dV: Tensor      # [2] expected update of value (linear, quadratic)
    failed_step: Optional[int] = None

    # Matrices the gains were solved with, in time order (only steps after the failure when it fails).
    Qu_list: list[Tensor] = field(default_factory=list, repr=False)
    Quu_reg_list: list[Tensor] = field(default_factory=list, repr=False)
    Qux_reg_list: list[Tensor] = field(default_factory=list, repr=False)


@torch.no_grad()
def backward_pass(
    derivative_list: Sequence[Derivative],
    last_Vx: Tensor,
    last_Vxx: Tensor,
    *,
    lambda_: float,
    reg_type: int = 1,
    use_state_eq_second_derivative: bool = False,
) -> BackwardPassResult:
    """Riccati-like recursion from k=N-1 down to 0.

    reg_type 1 regularizes the action curvature (Quu + lambda I); reg_type 2
    regularizes the value curvature (Vxx + lambda I) before it is mapped
    through the input Jacobian. If the regularized Quu is not positive
    definite the recursion stops at that step and ``success`` is False;
    the caller is expected to increase lambda and run the whole pass again.

    See Tassa, Erez, Todorov, "Synthesis and stabilization of complex
    behaviors through online trajectory optimization", IROS 2012.
    """
    if reg_type not in (1, 2):
        raise ValueError(f"reg_type must be 1 or 2, got {reg_type}")

    N = len(derivative_list)
    nx = last_Vx.shape[0]
    nu = derivative_list[0].Fu.shape[1] if N > 0 else 0
    device, dtype = last_Vx.device, last_Vx.dtype

    k_list = torch.zeros(N, nu, device=device, dtype=dtype)
    K_list = torch.zeros(N, nu, nx, device=device, dtype=dtype)
    dV = torch.zeros(2, device=device, dtype=dtype)
    Qu_list: list[Tensor] = []
    Quu_reg_list: list[Tensor] = []
    Qux_reg_list: list[Tensor] = []

    Vx = last_Vx
    Vxx = last_Vxx

    for k in reversed(range(N)):
        d = derivative_list[k]
        Fx, Fu = d.Fx, d.Fu

        Qx = d.Lx + Fx.T @ Vx
        Qu = d.Lu + Fu.T @ Vx
        Qxx = d.Lxx + Fx.T @ Vxx @ Fx
        Quu = d.Luu + Fu.T @ Vxx @ Fu
        Qux = d.Lxu.T + Fu.T @ Vxx @ Fx
        if use_state_eq_second_derivative:
            Qxx = Qxx + tensor_contract(Vx, d.Fxx)
            Quu = Quu + tensor_contract(Vx, d.Fuu)
            Qux = Qux + tensor_contract(Vx, d.Fxu).T

        if reg_type == 1:
            Qux_reg = Qux
            Quu_reg = regularize_matrix(Quu, lambda_)
        else:
            Vxx_reg = regularize_matrix(Vxx, lambda_)
            Qux_reg = d.Lxu.T + Fu.T @ Vxx_reg @ Fx
            Quu_reg = d.Luu + Fu.T @ Vxx_reg @ Fu
            if use_state_eq_second_derivative:
                Qux_reg = Qux_reg + tensor_contract(Vx, d.Fxu).T
                Quu_reg = Quu_reg + tensor_contract(Vx, d.Fuu)

        Quu_reg = symmetrize(Quu_reg)
        L = cholesky_or_none(Quu_reg)
        if L is None:
            return BackwardPassResult(
                success=False,
                k_list=k_list,
                K_list=K_list,
                dV=dV,
                failed_step=k,
                Qu_list=Qu_list[::-1],
                Quu_reg_list=Quu_reg_list[::-1],
                Qux_reg_list=Qux_reg_list[::-1],
            )

        kff = -cholesky_solve(L, Qu)
        K = -cholesky_solve(L, Qux_reg)
        k_list[k] = kff
        K_list[k] = K
        Qu_list.append(Qu)
        Quu_reg_list.append(Quu_reg)
        Qux_reg_list.append(Qux_reg)

        dV = dV + torch.stack([kff @ Qu, 0.5 * kff @ Quu @ kff])

        Vx = Qx + K.T @ Quu @ kff + K.T @ Qu + Qux.T @ kff
        Vxx = Qxx + K.T @ Quu @ K + K.T @ Qux + Qux.T @ K
        Vxx = symmetrize(Vxx)

    Qu_list.reverse()
    Quu_reg_list.reverse()
    Qux_reg_list.reverse()
    return BackwardPassResult(
        success=True,
        k_list=k_list,
        K_list=K_list,
        dV=dV,
        Qu_list=Qu_list,
        Quu_reg_list=Quu_reg_list,
        Qux_reg_list=Qux_reg_list,
    )
