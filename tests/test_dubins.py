# test_dubins.py

import pytest
import torch

from noc_ddp import AutodiffDDPProblem
from noc_ddp.systems import CircleObstacle, DubinsConfig, DubinsProblem
from noc_ddp.systems.dubins import grad_h_circle_obstacle, h_circle_obstacle

DTYPE = torch.float64


@pytest.fixture
def problems():
    cfg = DubinsConfig(
        dt=0.1,
        x_target=(1.0, 1.0, 0.5),
        Q=(0.3, 0.2, 0.1),
        R=(1e-2, 2e-2),
        Qf=(100.0, 100.0, 10.0),
        obstacles=(CircleObstacle(center=(0.5, 0.5), radius=0.5),),
        q_obs=5.0,
        obs_margin=0.1,
    )
    analytic = DubinsProblem(cfg)
    autodiff = AutodiffDDPProblem(
        3,
        2,
        state_eq=analytic.state_eq,
        running_cost=analytic.running_cost,
        terminal_cost=analytic.terminal_cost,
    )
    return analytic, autodiff


# The first point lies inside the obstacle so the penalty is active there.
POINTS = [
    (torch.tensor([0.6, 0.4, 0.3], dtype=DTYPE), torch.tensor([0.7, -0.2], dtype=DTYPE)),
    (torch.tensor([-1.0, 2.0, -1.2], dtype=DTYPE), torch.tensor([1.5, 0.4], dtype=DTYPE)),
]


@pytest.mark.parametrize("x,u", POINTS)
def test_state_eq_jacobians(problems, x, u):
    analytic, autodiff = problems
    for a, b in zip(analytic.calc_state_eq_deriv(x, u), autodiff.calc_state_eq_deriv(x, u)):
        torch.testing.assert_close(a, b)


@pytest.mark.parametrize("x,u", POINTS)
def test_state_eq_second_derivatives(problems, x, u):
    analytic, autodiff = problems
    for a, b in zip(analytic.calc_state_eq_deriv_second(x, u), autodiff.calc_state_eq_deriv_second(x, u)):
        torch.testing.assert_close(a, b)


@pytest.mark.parametrize("x,u", POINTS)
def test_running_cost_derivatives(problems, x, u):
    analytic, autodiff = problems
    for a, b in zip(analytic.calc_running_cost_deriv(x, u), autodiff.calc_running_cost_deriv(x, u)):
        torch.testing.assert_close(a, b)


def test_terminal_cost_derivatives(problems):
    analytic, autodiff = problems
    x = torch.tensor([0.2, -0.3, 1.0], dtype=DTYPE)
    for a, b in zip(analytic.calc_terminal_cost_deriv(x), autodiff.calc_terminal_cost_deriv(x)):
        torch.testing.assert_close(a, b)


def test_obstacle_penalty_only_inside_margin(problems):
    analytic, _ = problems
    u = torch.zeros(2, dtype=DTYPE)
    inside = torch.tensor([0.6, 0.4, 0.0], dtype=DTYPE)
    outside = torch.tensor([3.0, 3.0, 0.0], dtype=DTYPE)
    assert float(analytic._obstacle_cost(inside)) > 0.0
    assert float(analytic._obstacle_cost(outside)) == 0.0
    assert float(analytic.running_cost(outside, u)) > 0.0


def test_circle_safety_function():
    obs = CircleObstacle(center=(1.0, 2.0), radius=0.5)
    x = torch.tensor([1.0, 3.0, 0.7], dtype=DTYPE)
    assert float(h_circle_obstacle(x, obs=obs)) == pytest.approx(0.75)
    torch.testing.assert_close(grad_h_circle_obstacle(x, obs=obs), torch.tensor([0.0, 2.0, 0.0], dtype=DTYPE))


def test_step_moves_along_heading():
    cfg = DubinsConfig(dt=0.5)
    x = torch.tensor([0.0, 0.0, torch.pi / 2], dtype=DTYPE)
    u = torch.tensor([2.0, 0.2], dtype=DTYPE)
    x_next = DubinsProblem(cfg).state_eq(x, u)
    torch.testing.assert_close(x_next, torch.tensor([0.0, 1.0, torch.pi / 2 + 0.1], dtype=DTYPE))
