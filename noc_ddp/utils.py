"""Utility functions for the linear algebra used by the DDP passes.

Cholesky factorization doubles as the positive-definiteness test of the
backward pass, so the factor is returned (or None) instead of raising.
"""

from __future__ import annotations

from typing import Optional

import torch
from torch import Tensor


def cholesky_or_none(A: Tensor) -> Optional[Tensor]:
    """Lower Cholesky factor of A, or None if A is not positive definite.

    Non-finite entries are treated as not positive definite.

    Args:
        A: [n, n] symmetric matrix
    Returns:
        L: [n, n] lower triangular factor with A = L L^T, or None
    """
    if not torch.isfinite(A).all():
        return None
    L, info = torch.linalg.cholesky_ex(A)
    if int(info) != 0:
        return None
    return L


def cholesky_solve(L: Tensor, b: Tensor) -> Tensor:
    """Solve (L L^T) x = b for a vector [n] or matrix [n, m] right-hand side."""
    if b.ndim == 1:
        return torch.cholesky_solve(b.unsqueeze(-1), L).squeeze(-1)
    return torch.cholesky_solve(b, L)


def regularize_matrix(H: Tensor, lambda_: float) -> Tensor:
    """Levenberg-Marquardt damping H + lambda * I of a square curvature matrix."""
    return H + lambda_ * torch.eye(H.shape[-1], device=H.device, dtype=H.dtype)


def symmetrize(H: Tensor) -> Tensor:
    return 0.5 * (H + H.T)


def tensor_contract(v: Tensor, T: Tensor) -> Tensor:
    """Contract a rank-3 tensor along its first index: sum_i v[i] * T[i]."""
    return torch.einsum("i,ijk->jk", v, T)



def check_shape(t: Tensor, shape: tuple[int, ...], name: str) -> Tensor:
    """Return t unchanged, raising ValueError when its shape differs from the expected one."""
    if tuple(t.shape) != shape:
        raise ValueError(f"{name} has shape {tuple(t.shape)}, expected {shape}")
    return t
