# test_regularization.py

import pytest

from noc_ddp import Regularization


def make_reg(**kwargs):
    params = dict(initial_lambda=1e-6, initial_dlambda=1.0, factor=1.6, lambda_min=1e-6, lambda_max=1e10)
    params.update(kwargs)
    return Regularization(**params)


def test_increase_from_initial():
    reg = make_reg()
    assert reg.increase()
    assert reg.dlambda == pytest.approx(1.6)
    assert reg.lambda_ == pytest.approx(1.6e-6)


def test_increase_compounds_scaling():
    reg = make_reg()
    reg.increase()
    reg.increase()
    assert reg.dlambda == pytest.approx(1.6 ** 2)
    assert reg.lambda_ == pytest.approx(1e-6 * 1.6 * 1.6 ** 2)


def test_decrease_below_minimum_snaps_to_zero():
    reg = make_reg()
    reg.decrease()
    assert reg.dlambda == pytest.approx(1 / 1.6)
    assert reg.lambda_ == 0.0


def test_decrease_above_minimum():
    reg = make_reg(initial_lambda=1.0)
    reg.decrease()
    assert reg.lambda_ == pytest.approx(1 / 1.6)
    reg.decrease()
    # dlambda is capped at 1/factor after a decrease
    assert reg.dlambda == pytest.approx(1 / 1.6 ** 2)
    assert reg.lambda_ == pytest.approx(1 / 1.6 ** 3)


def test_increase_from_zero_restarts_at_minimum():
    reg = make_reg()
    reg.decrease()
    assert reg.lambda_ == 0.0
    assert reg.increase()
    assert reg.lambda_ == pytest.approx(1e-6)
    # growth after a decrease restarts from the factor itself
    assert reg.dlambda == pytest.approx(1.6)


def test_increase_reaches_maximum_in_bounded_steps():
    reg = make_reg()
    history = []
    for _ in range(100):
        ok = reg.increase()
        history.append(reg.lambda_)
        if not ok:
            break
    assert not ok
    assert reg.exceeded
    assert len(history) < 20
    for lam in history[:-1]:
        assert 1e-6 <= lam <= 1e10
    assert history[-1] > 1e10


def test_reset():
    reg = make_reg()
    reg.increase()
    reg.increase()
    reg.reset()
    assert reg.lambda_ == 1e-6
    assert reg.dlambda == 1.0
    assert not reg.exceeded


@pytest.mark.parametrize("kwargs", [dict(lambda_min=0.0), dict(lambda_min=-1e-6), dict(factor=1.0)])
def test_schedule_that_cannot_grow_is_rejected(kwargs):
    with pytest.raises(ValueError):
        make_reg(**kwargs)


def test_increase_from_zero_initial_lambda_grows():
    reg = make_reg(initial_lambda=0.0)
    assert reg.increase()
    assert reg.lambda_ == pytest.approx(1e-6)
    for _ in range(100):
        if not reg.increase():
            break
    assert reg.exceeded
