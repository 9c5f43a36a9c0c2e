from __future__ import annotations


class Regularization:
    """Levenberg-Marquardt style schedule of the regularization coefficient.

    ``lambda_`` is the damping added in the backward pass, ``dlambda`` its
    multiplicative scaling factor. Failures grow both multiplicatively,
    accepted iterations shrink them, and ``lambda_`` snaps to zero once it
    would fall below ``lambda_min``.
    """

    def __init__(
        self,
        *,
        initial_lambda: float,
        initial_dlambda: float,
        factor: float,
        lambda_min: float,
        lambda_max: float,
    ) -> None:
        # A zero floor would keep increase() at lambda = 0 forever.
        if lambda_min <= 0.0:
            raise ValueError(f"lambda_min must be positive, got {lambda_min}")
        if factor <= 1.0:
            raise ValueError(f"factor must be greater than 1, got {factor}")
        self.initial_lambda = float(initial_lambda)
        self.initial_dlambda = float(initial_dlambda)
        self.factor = float(factor)
        self.lambda_min = float(lambda_min)
        self.lambda_max = float(lambda_max)
        self.reset()

    def reset(self) -> None:
        self.lambda_ = self.initial_lambda
        self.dlambda = self.initial_dlambda

    @property
    def exceeded(self) -> bool:
        return self.lambda_ > self.lambda_max

    def increase(self) -> bool:
        """Grow the regularization. Returns False once lambda exceeds its maximum."""
        self.dlambda = max(self.dlambda * self.factor, self.factor)
        self.lambda_ = max(self.lambda_ * self.dlambda, self.lambda_min)
        return not self.exceeded

    def decrease(self) -> None:
        self.dlambda = min(self.dlambda / self.factor, 1.0 / self.factor)
        lam = self.lambda_ * self.dlambda
        self.lambda_ = lam if lam >= self.lambda_min else 0.0

    def __repr__(self) -> str:
        return f"Regularization(lambda_={self.lambda_:.3e}, dlambda={self.dlambda:.3e})"
