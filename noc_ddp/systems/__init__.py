from .dubins import CircleObstacle, DubinsConfig, DubinsProblem
from .linear import LinearProblem

__all__ = [
    "CircleObstacle",
    "DubinsConfig",
    "DubinsProblem",
    "LinearProblem",
]
