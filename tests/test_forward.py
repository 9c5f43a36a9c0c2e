# test_forward.py

from concurrent.futures import ThreadPoolExecutor

import pytest
import torch

from noc_ddp import backward_pass, calc_derivatives, forward_pass, line_search, rollout
from noc_ddp.systems import LinearProblem

DTYPE = torch.float64


def scalar_problem(target=1.0, r=1.0, qf=100.0):
    one = torch.ones(1, 1, dtype=DTYPE)
    return LinearProblem(
        A=one.clone(),
        B=one.clone(),
        Q=torch.zeros(1, 1, dtype=DTYPE),
        R=r * one,
        Qf=qf * one,
        x_target=torch.tensor([target], dtype=DTYPE),
    )


class CappedInputProblem(LinearProblem):
    """Running cost becomes infinite when the input magnitude exceeds a cap."""

    def __init__(self, base: LinearProblem, cap: float):
        super().__init__(base.A, base.B, base.Q, base.R, base.Qf, x_target=base.x_target)
        self.cap = cap

    def running_cost(self, x, u):
        if float(u.abs().max()) > self.cap:
            return torch.tensor(float("inf"), dtype=x.dtype)
        return super().running_cost(x, u)


def gains_for(problem, traj, lam=1e-6):
    derivs, Vx, Vxx = calc_derivatives(problem, traj)
    res = backward_pass(derivs, Vx, Vxx, lambda_=lam)
    assert res.success
    return res


def initial_traj(problem, N=5):
    return rollout(problem, torch.zeros(1, dtype=DTYPE), torch.zeros(N, 1, dtype=DTYPE))


def test_zero_step_reproduces_trajectory():
    problem = scalar_problem()
    traj = initial_traj(problem)
    res = gains_for(problem, traj)
    cand = forward_pass(problem, traj, res.k_list, res.K_list, 0.0)
    assert torch.equal(cand.x_list, traj.x_list)
    assert torch.equal(cand.u_list, traj.u_list)
    assert torch.equal(cand.cost_list, traj.cost_list)


@pytest.mark.parametrize("alpha", [1.0, 0.3, 1e-3])
def test_initial_state_is_kept(alpha):
    problem = scalar_problem()
    traj = rollout(problem, torch.tensor([0.7], dtype=DTYPE), torch.full((5, 1), 0.1, dtype=DTYPE))
    res = gains_for(problem, traj)
    cand = forward_pass(problem, traj, res.k_list, res.K_list, alpha)
    assert torch.equal(cand.x_list[0], traj.x_list[0])
    assert cand is not traj


def test_candidate_is_consistent_rollout():
    problem = scalar_problem()
    traj = initial_traj(problem)
    res = gains_for(problem, traj)
    cand = forward_pass(problem, traj, res.k_list, res.K_list, 0.5)
    replay = rollout(problem, cand.x_list[0], cand.u_list)
    assert torch.equal(replay.x_list, cand.x_list)
    assert torch.equal(replay.cost_list, cand.cost_list)


def test_full_step_accepted_on_linear_quadratic():
    problem = scalar_problem()
    traj = initial_traj(problem)
    res = gains_for(problem, traj)
    ls = line_search(problem, traj, res.k_list, res.K_list, res.dV, alpha_list=(1.0, 0.5, 0.1))
    assert ls.success
    assert ls.alpha == 1.0
    assert ls.cost_update_actual > 0.0
    assert ls.cost_update_expected > 0.0
    # the quadratic model is exact for a linear-quadratic problem
    assert ls.cost_update_ratio == pytest.approx(1.0, rel=1e-6)
    assert ls.candidate.total_cost() < traj.total_cost()


def test_first_acceptable_step_in_list_order_wins():
    problem = scalar_problem()
    traj = initial_traj(problem)
    res = gains_for(problem, traj)
    ls = line_search(problem, traj, res.k_list, res.K_list, res.dV, alpha_list=(0.5, 1.0))
    assert ls.success
    assert ls.alpha == 0.5


def test_empty_step_list_fails():
    problem = scalar_problem()
    traj = initial_traj(problem)
    res = gains_for(problem, traj)
    ls = line_search(problem, traj, res.k_list, res.K_list, res.dV, alpha_list=())
    assert not ls.success
    assert ls.candidate is None


def test_non_finite_candidate_cost_is_rejected():
    problem = CappedInputProblem(scalar_problem(), cap=0.1)
    traj = initial_traj(problem)
    res = gains_for(problem, traj)
    # the full step needs inputs of about 0.2 and hits the cap
    ls = line_search(problem, traj, res.k_list, res.K_list, res.dV, alpha_list=(1.0, 0.1))
    assert ls.success
    assert ls.alpha == 0.1


def test_all_candidates_non_finite():
    problem = CappedInputProblem(scalar_problem(), cap=1e-6)
    traj = initial_traj(problem)
    res = gains_for(problem, traj)
    ls = line_search(problem, traj, res.k_list, res.K_list, res.dV, alpha_list=(1.0, 0.5))
    assert not ls.success


def test_no_predicted_improvement_rejects_zero_update():
    problem = scalar_problem()
    traj = initial_traj(problem)
    res = gains_for(problem, traj)
    zeros_k = torch.zeros_like(res.k_list)
    zeros_K = torch.zeros_like(res.K_list)
    ls = line_search(problem, traj, zeros_k, zeros_K, torch.zeros(2, dtype=DTYPE), alpha_list=(1.0,))
    assert not ls.success
    assert ls.cost_update_actual == 0.0


def test_parallel_rollouts_select_same_candidate():
    problem = CappedInputProblem(scalar_problem(), cap=0.1)
    traj = initial_traj(problem)
    res = gains_for(problem, traj)
    alphas = (1.0, 0.5, 0.1, 0.05)
    seq = line_search(problem, traj, res.k_list, res.K_list, res.dV, alpha_list=alphas)
    with ThreadPoolExecutor(max_workers=3) as ex:
        par = line_search(problem, traj, res.k_list, res.K_list, res.dV, alpha_list=alphas, executor=ex)
    assert par.success and seq.success
    assert par.alpha == seq.alpha
    assert torch.equal(par.candidate.u_list, seq.candidate.u_list)


class CollapsedStateProblem(LinearProblem):
    """State equation returns a single entry instead of the full state."""

    def state_eq(self, x, u):
        return (x.sum() + u.sum()).reshape(1)


class VectorCostProblem(LinearProblem):
    def running_cost(self, x, u):
        return super().running_cost(x, u).reshape(1)


def three_state_problem(cls):
    eye = torch.eye(3, dtype=DTYPE)
    return cls(eye, torch.ones(3, 1, dtype=DTYPE), eye, torch.eye(1, dtype=DTYPE), eye)


@pytest.mark.parametrize("cls,name", [(CollapsedStateProblem, "state_eq"), (VectorCostProblem, "running_cost")])
def test_rollout_rejects_wrong_model_output_shape(cls, name):
    problem = three_state_problem(cls)
    with pytest.raises(ValueError, match=name):
        rollout(problem, torch.zeros(3, dtype=DTYPE), torch.ones(2, 1, dtype=DTYPE))


@pytest.mark.parametrize("cls,name", [(CollapsedStateProblem, "state_eq"), (VectorCostProblem, "running_cost")])
def test_forward_pass_rejects_wrong_model_output_shape(cls, name):
    good = three_state_problem(LinearProblem)
    traj = rollout(good, torch.zeros(3, dtype=DTYPE), torch.ones(2, 1, dtype=DTYPE))
    k_list = torch.zeros(2, 1, dtype=DTYPE)
    K_list = torch.zeros(2, 1, 3, dtype=DTYPE)
    with pytest.raises(ValueError, match=name):
        forward_pass(three_state_problem(cls), traj, k_list, K_list, 1.0)
