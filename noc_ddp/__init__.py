"""Differential dynamic programming (DDP) for discrete-time nonlinear optimal control (PyTorch).

PERFORMANCE NOTES:
- Provide analytical derivatives in your DDPProblem subclass whenever possible
- AutodiffDDPProblem is a FALLBACK for prototyping models
- Use float64 tensors; the regularization schedule assumes double precision
"""

from .ddp import (
    DDPConfig,
    DDPSolver,
    SolveStatus,
    TraceData,
)

from .problem import (
    AutodiffDDPProblem,
    DDPProblem,
)

from .trajectory import (
    Trajectory,
    rollout,
)

from .derivative import (
    Derivative,
    calc_derivatives,
)

from .backward import (
    BackwardPassResult,
    backward_pass,
)

from .forward import (
    LineSearchResult,
    forward_pass,
    line_search,
)

from .regularization import Regularization

__all__ = [
    # Solver
    "DDPConfig",
    "DDPSolver",
    "SolveStatus",
    "TraceData",
    # Problem
    "AutodiffDDPProblem",
    "DDPProblem",
    # Passes
    "Trajectory",
    "rollout",
    "Derivative",
    "calc_derivatives",
    "BackwardPassResult",
    "backward_pass",
    "LineSearchResult",
    "forward_pass",
    "line_search",
    "Regularization",
]
