from __future__ import annotations

from typing import Callable

import torch
from torch import Tensor


def grad_hess_xu(
    cost_fn: Callable[[Tensor, Tensor], Tensor],
    x: Tensor,
    u: Tensor,
) -> tuple[Tensor, Tensor, Tensor, Tensor, Tensor]:
    """Compute (l_x, l_u, l_xx, l_uu, l_xu) for a scalar cost l(x,u) using PyTorch autograd.

    This is an exact differentiation routine (no finite differences).

    NOTE: This is a FALLBACK function. Analytical derivatives supplied by the
    problem are much faster.
    """
    nx = x.numel()

    def l_of_z(z: Tensor) -> Tensor:
        return cost_fn(z[:nx], z[nx:])

    with torch.enable_grad():
        z = torch.cat([x.detach(), u.detach()], dim=0)
        g = torch.autograd.functional.jacobian(l_of_z, z)
        H = torch.autograd.functional.hessian(l_of_z, z)

    l_x = g[:nx]
    l_u = g[nx:]
    l_xx = H[:nx, :nx]
    l_uu = H[nx:, nx:]
    l_xu = H[:nx, nx:]
    return l_x, l_u, l_xx, l_uu, l_xu


def grad_hess_x(
    term_cost_fn: Callable[[Tensor], Tensor],
    xN: Tensor,
) -> tuple[Tensor, Tensor]:
    """Compute (phi_x, phi_xx) for a scalar terminal cost phi(xN).

    NOTE: This is a FALLBACK function.
    """
    with torch.enable_grad():
        x_req = xN.detach().clone()
        g = torch.autograd.functional.jacobian(term_cost_fn, x_req)
        H = torch.autograd.functional.hessian(term_cost_fn, x_req)
    return g, H


def compute_jacobian(
    f: Callable[[Tensor, Tensor], Tensor],
    x: Tensor,
    u: Tensor,
) -> tuple[Tensor, Tensor]:
    """Compute Jacobians df/dx and df/du using autograd.

    NOTE: This is a FALLBACK function.
    """
    x_req = x.detach().clone()
    u_req = u.detach().clone()

    with torch.enable_grad():
        A = torch.autograd.functional.jacobian(lambda xx: f(xx, u_req), x_req)
        B = torch.autograd.functional.jacobian(lambda uu: f(x_req, uu), u_req)
    return A, B


def compute_second_derivatives(
    f: Callable[[Tensor, Tensor], Tensor],
    x: Tensor,
    u: Tensor,
) -> tuple[Tensor, Tensor, Tensor]:
    """Second-order derivatives of a vector function f(x,u) using autograd.

    Returns:
      f_xx: [nx, nx, nx], f_xx[i] = d2 f_i / dx2
      f_uu: [nx, nu, nu]
      f_xu: [nx, nx, nu]
    """
    nx = x.numel()

    def f_of_z(z: Tensor) -> Tensor:
        return f(z[:nx], z[nx:])

    def jac_of_z(z: Tensor) -> Tensor:
        return torch.autograd.functional.jacobian(f_of_z, z, create_graph=True)

    z = torch.cat([x.detach(), u.detach()], dim=0)
    with torch.enable_grad():
        H = torch.autograd.functional.jacobian(jac_of_z, z)  # [nx, nx+nu, nx+nu]

    return H[:, :nx, :nx], H[:, nx:, nx:], H[:, :nx, nx:]
