from __future__ import annotations

import enum
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Mapping, Optional, Tuple

import numpy as np
import torch
from torch import Tensor

from .backward import backward_pass
from .derivative import calc_derivatives
from .forward import line_search
from .problem import DDPProblem
from .regularization import Regularization
from .trajectory import Trajectory, rollout


def _default_alpha_list() -> Tuple[float, ...]:
    return tuple(float(a) for a in 10.0 ** np.linspace(0.0, -3.0, 10))


@dataclass(frozen=True)
class DDPConfig:
    verbose_print: bool = True
    use_state_eq_second_derivative: bool = False
    max_iter: int = 500
    horizon_steps: int = 100

    # 1: Quu + lambda * I, 2: Vxx + lambda * I
    reg_type: int = 1
    initial_lambda: float = 1e-6
    initial_dlambda: float = 1.0
    lambda_factor: float = 1.6
    lambda_min: float = 1e-6
    lambda_max: float = 1e10

    # Termination thresholds
    k_rel_norm_thre: float = 1e-4
    lambda_thre: float = 1e-5
    cost_update_thre: float = 1e-7

    # Line search step sizes, tried in order
    alpha_list: Tuple[float, ...] = field(default_factory=_default_alpha_list)
    cost_update_ratio_thre: float = 0.0

    # 0 evaluates derivatives and line-search rollouts sequentially
    num_workers: int = 0

    def __post_init__(self) -> None:
        if self.reg_type not in (1, 2):
            raise ValueError(f"reg_type must be 1 or 2, got {self.reg_type}")
        if self.horizon_steps < 1:
            raise ValueError(f"horizon_steps must be positive, got {self.horizon_steps}")
        if self.max_iter < 1:
            raise ValueError(f"max_iter must be positive, got {self.max_iter}")
        if self.lambda_factor <= 1.0:
            raise ValueError(f"lambda_factor must be greater than 1, got {self.lambda_factor}")
        if not 0.0 < self.lambda_min <= self.lambda_max:
            raise ValueError(f"Invalid lambda bounds [{self.lambda_min}, {self.lambda_max}]")
        if self.num_workers < 0:
            raise ValueError(f"num_workers must be non-negative, got {self.num_workers}")
        object.__setattr__(self, "alpha_list", tuple(float(a) for a in self.alpha_list))

    @classmethod
    def from_dict(cls, d: Optional[Mapping[str, Any]]) -> "DDPConfig":
        """Build a config from a mapping such as the ``ddp`` section of a YAML file."""
        d = dict(d or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(d) - known)
        if unknown:
            raise ValueError(f"Unknown DDP config keys: {unknown}")
        return cls(**d)


@dataclass(frozen=True)
class TraceData:
    iter: int
    cost: float
    lambda_: float
    dlambda: float
    alpha: float = 0.0
    k_rel_norm: float = 0.0
    cost_update_actual: float = 0.0
    cost_update_expected: float = 0.0
    cost_update_ratio: float = 0.0
    accepted: bool = False
    backward_retries: int = 0

    # Durations in milliseconds
    duration_derivative: float = 0.0
    duration_backward: float = 0.0
    duration_forward: float = 0.0

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class SolveStatus(enum.Enum):
    RUNNING = "running"
    CONVERGED = "converged"
    FAILED_MAX_REGULARIZATION = "failed_max_regularization"
    EXHAUSTED_ITERATIONS = "exhausted_iterations"


def _elapsed_ms(start: float) -> float:
    return 1e3 * (time.perf_counter() - start)


class DDPSolver:
    """Differential dynamic programming solver.

    ``solve`` owns the trajectory, the gains, the regularization state and
    the trace for the duration of the call; the problem is only read.
    Gains and trajectory are committed together when an iteration is
    accepted, so after a failed solve they still describe the last accepted
    iterate (possibly the initial rollout).

    See the following for a detailed algorithm.
      - Y Tassa, T Erez, E Todorov. Synthesis and stabilization of complex behaviors through online trajectory
        optimization. IROS2012.
      - Y Tassa, N Mansard, E Todorov. Control-limited differential dynamic programming. ICRA2014.
    """

    def __init__(self, problem: DDPProblem, config: Optional[DDPConfig] = None) -> None:
        self.problem = problem
        self.config = config if config is not None else DDPConfig()
        cfg = self.config
        self.regularization = Regularization(
            initial_lambda=cfg.initial_lambda,
            initial_dlambda=cfg.initial_dlambda,
            factor=cfg.lambda_factor,
            lambda_min=cfg.lambda_min,
            lambda_max=cfg.lambda_max,
        )
        self.status = SolveStatus.RUNNING
        self.trajectory: Optional[Trajectory] = None
        self.k_list: Optional[Tensor] = None  # [N, nu]
        self.K_list: Optional[Tensor] = None  # [N, nu, nx]
        self.trace_data_list: list[TraceData] = []

    @property
    def x_list(self) -> Optional[Tensor]:
        return None if self.trajectory is None else self.trajectory.x_list

    @property
    def u_list(self) -> Optional[Tensor]:
        return None if self.trajectory is None else self.trajectory.u_list

    @property
    def cost_list(self) -> Optional[Tensor]:
        return None if self.trajectory is None else self.trajectory.cost_list

    def _print(self, msg: str) -> None:
        if self.config.verbose_print:
            print(f"[DDP] {msg}", flush=True)

    def _check_inputs(self, current_x: Tensor, initial_u_list: Tensor) -> tuple[Tensor, Tensor]:
        nx, nu = self.problem.state_dim, self.problem.input_dim
        N = self.config.horizon_steps
        current_x = torch.as_tensor(current_x)
        if not torch.is_floating_point(current_x):
            current_x = current_x.to(torch.get_default_dtype())
        if isinstance(initial_u_list, (list, tuple)) and initial_u_list and isinstance(initial_u_list[0], Tensor):
            initial_u_list = torch.stack(list(initial_u_list))
        initial_u_list = torch.as_tensor(initial_u_list, device=current_x.device, dtype=current_x.dtype)
        if tuple(current_x.shape) != (nx,):
            raise ValueError(f"current_x has shape {tuple(current_x.shape)}, expected ({nx},)")
        if tuple(initial_u_list.shape) != (N, nu):
            raise ValueError(
                f"initial_u_list has shape {tuple(initial_u_list.shape)}, expected ({N}, {nu}) "
                f"for horizon_steps={N}"
            )
        return current_x, initial_u_list

    def solve(self, current_x: Tensor, initial_u_list: Tensor) -> bool:
        """Solve the optimal control problem from the current state.

        Args:
          current_x: [nx] initial state, kept fixed as x[0]
          initial_u_list: [N, nu] initial input sequence, N = horizon_steps
        Returns:
          False if the regularization exceeded its maximum, True otherwise
          (converged or iteration limit reached).
        """
        current_x, initial_u_list = self._check_inputs(current_x, initial_u_list)
        start_time = time.perf_counter()

        cfg = self.config
        N = cfg.horizon_steps
        nx, nu = self.problem.state_dim, self.problem.input_dim
        self.regularization.reset()
        self.trace_data_list = []
        self.status = SolveStatus.RUNNING
        self.trajectory = rollout(self.problem, current_x, initial_u_list)
        self.k_list = torch.zeros(N, nu, device=current_x.device, dtype=current_x.dtype)
        self.K_list = torch.zeros(N, nu, nx, device=current_x.device, dtype=current_x.dtype)
        self._print(f"Start solve: horizon_steps={N}, initial cost={self.trajectory.total_cost():.6e}")

        executor = ThreadPoolExecutor(max_workers=cfg.num_workers) if cfg.num_workers > 0 else None
        try:
            it = 0
            while self.status == SolveStatus.RUNNING:
                self.status = self._proc_once(it, executor)
                it += 1
                if self.status == SolveStatus.RUNNING and it == cfg.max_iter:
                    self._print(f"Reached the maximum number of iterations: {cfg.max_iter}")
                    self.status = SolveStatus.EXHAUSTED_ITERATIONS
        finally:
            if executor is not None:
                executor.shutdown()

        self._print(
            f"Solve finished: status={self.status.value}, iterations={len(self.trace_data_list)}, "
            f"cost={self.trajectory.total_cost():.6e}, duration={_elapsed_ms(start_time):.3f} [ms]"
        )
        return self.status != SolveStatus.FAILED_MAX_REGULARIZATION

    def _proc_once(self, it: int, executor: Optional[ThreadPoolExecutor]) -> SolveStatus:
        """Process one iteration and return the resulting solver status.

        The small-gradient termination is tested right after the backward
        pass, before the line search (same order as Tassa et al.); the
        relative cost-update termination is tested after an accepted step.
        """
        cfg = self.config
        reg = self.regularization
        traj = self.trajectory
        trace = dict(iter=it, cost=traj.total_cost(), lambda_=reg.lambda_, dlambda=reg.dlambda)

        # Step 1: differentiate dynamics and cost along the trajectory
        t0 = time.perf_counter()
        derivative_list, last_Vx, last_Vxx = calc_derivatives(
            self.problem,
            traj,
            with_second_order=cfg.use_state_eq_second_derivative,
            executor=executor,
        )
        trace["duration_derivative"] = _elapsed_ms(t0)

        # Step 2: backward pass, retried with larger regularization until Quu is positive definite
        t0 = time.perf_counter()
        retries = 0
        while True:
            bwd = backward_pass(
                derivative_list,
                last_Vx,
                last_Vxx,
                lambda_=reg.lambda_,
                reg_type=cfg.reg_type,
                use_state_eq_second_derivative=cfg.use_state_eq_second_derivative,
            )
            if bwd.success:
                break
            retries += 1
            if not reg.increase():
                self._print(f"Failure due to large lambda: {reg.lambda_:.3e} (iter {it})")
                trace.update(backward_retries=retries, duration_backward=_elapsed_ms(t0))
                self.trace_data_list.append(TraceData(**trace))
                return SolveStatus.FAILED_MAX_REGULARIZATION
            self._print(f"Backward pass failed at step {bwd.failed_step}. Increase lambda to {reg.lambda_:.3e}")
        trace.update(backward_retries=retries, duration_backward=_elapsed_ms(t0))

        # Gradient-based termination, checked before the line search
        u_norm = torch.linalg.vector_norm(traj.u_list, dim=-1)
        k_norm = torch.linalg.vector_norm(bwd.k_list, dim=-1)
        k_rel_norm = float((k_norm / (u_norm + 1.0)).max())
        trace["k_rel_norm"] = k_rel_norm
        if reg.lambda_ < cfg.lambda_thre and k_rel_norm < cfg.k_rel_norm_thre:
            self._print(f"Terminate due to small gradient: k_rel_norm={k_rel_norm:.3e}")
            self.k_list, self.K_list = bwd.k_list, bwd.K_list
            self.trace_data_list.append(TraceData(**trace))
            return SolveStatus.CONVERGED

        # Step 3: forward pass with line search
        t0 = time.perf_counter()
        ls = line_search(
            self.problem,
            traj,
            bwd.k_list,
            bwd.K_list,
            bwd.dV,
            alpha_list=cfg.alpha_list,
            cost_update_ratio_thre=cfg.cost_update_ratio_thre,
            executor=executor,
        )
        trace.update(
            duration_forward=_elapsed_ms(t0),
            alpha=ls.alpha,
            cost_update_actual=ls.cost_update_actual,
            cost_update_expected=ls.cost_update_expected,
            cost_update_ratio=ls.cost_update_ratio,
        )
        if ls.cost_update_expected <= 0.0 and len(cfg.alpha_list) > 0:
            self._print(f"Non-positive expected cost update: {ls.cost_update_expected:.3e}")

        # Step 4: accept step (or not) and update regularization
        if not ls.success:
            self.trace_data_list.append(TraceData(**trace))
            if not reg.increase():
                self._print(f"Failure due to large lambda: {reg.lambda_:.3e} (iter {it})")
                return SolveStatus.FAILED_MAX_REGULARIZATION
            self._print(f"Line search failed. Increase lambda to {reg.lambda_:.3e}")
            return SolveStatus.RUNNING

        cost_old = traj.total_cost()
        reg.decrease()
        self.trajectory = ls.candidate
        self.k_list, self.K_list = bwd.k_list, bwd.K_list
        trace.update(accepted=True, cost=self.trajectory.total_cost())
        self.trace_data_list.append(TraceData(**trace))

        rel_cost_update = ls.cost_update_actual / max(abs(cost_old), float(torch.finfo(traj.cost_list.dtype).eps))
        if rel_cost_update < cfg.cost_update_thre:
            self._print(f"Terminate due to small cost update: {rel_cost_update:.3e}")
            return SolveStatus.CONVERGED
        return SolveStatus.RUNNING
