# Copyright (c) 2025.
# This file is part of lmgraph, released under the MIT License.
"""Adaptive damping policy for Levenberg-Marquardt."""

from __future__ import annotations

import math
from dataclasses import dataclass

from .params import ConfigurationError, LMParams


@dataclass(frozen=True)
class LambdaController:
    """
    Owns the rules for moving lambda between damping attempts.

    Lambda is only ever divided by ``lambda_factor`` on acceptance or
    multiplied by it on rejection, so it stays strictly positive.
    """
    lambda_factor: float = 10.0
    lambda_upper_bound: float = 1e5

    def __post_init__(self) -> None:
        if not self.lambda_factor > 1.0:
            raise ConfigurationError(f"lambda_factor must be > 1, got {self.lambda_factor}")
        if not self.lambda_upper_bound > 0.0:
            raise ConfigurationError(
                f"lambda_upper_bound must be > 0, got {self.lambda_upper_bound}"
            )

    @staticmethod
    def from_params(params: LMParams) -> "LambdaController":
        return LambdaController(
            lambda_factor=params.lambda_factor,
            lambda_upper_bound=params.lambda_upper_bound,
        )

    def shrink(self, lambda_: float) -> float:
        return lambda_ / self.lambda_factor

    def grow(self, lambda_: float) -> float:
        return lambda_ * self.lambda_factor

    def exhausted(self, lambda_: float) -> bool:
        return lambda_ >= self.lambda_upper_bound

    @staticmethod
    def accepts(candidate_error: float, current_error: float) -> bool:
        # Equal error counts as progress so plateaus cannot stall the loop.
        return candidate_error <= current_error

    def max_attempts(self, lambda_: float) -> int:
        """Upper bound on damping attempts in one iterate starting at ``lambda_``."""
        if self.exhausted(lambda_):
            return 1
        ratio = math.log(self.lambda_upper_bound / lambda_) / math.log(self.lambda_factor)
        # log round-off must not push an exact power of the factor up a step
        return int(math.ceil(ratio - 1e-9)) + 1
