# Copyright (c) 2025.
# This file is part of lmgraph, released under the MIT License.
"""
Configuration for the Levenberg-Marquardt optimizer.

:class:`LMParams` follows the same pattern as the solver configs elsewhere in
the package: a small dataclass of plain values with defaults. It is frozen,
and validated on construction so a bad setup fails before the first
iteration rather than in the middle of a run.

Enumerated options accept either the enum member or its name as a
case-insensitive string, so configs loaded from JSON/YAML work unchanged::

    LMParams(factorization="qr", elimination="sequential", lm_verbosity="trylambda")
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Mapping, Type, TypeVar


class ConfigurationError(ValueError):
    """Invalid optimizer configuration. Always fatal."""


class Factorization(Enum):
    LDL = "LDL"  # Cholesky on the information form
    QR = "QR"    # Householder QR on the stacked Jacobian


class Elimination(Enum):
    SEQUENTIAL = "SEQUENTIAL"
    MULTIFRONTAL = "MULTIFRONTAL"


class Verbosity(IntEnum):
    SILENT = 0
    ERROR = 1
    VALUES = 2
    DELTA = 3
    LINEAR = 4


class LMVerbosity(IntEnum):
    SILENT = 0
    LAMBDA = 1
    TRYLAMBDA = 2
    TRYCONFIG = 3
    TRYDELTA = 4
    DAMPED = 5


E = TypeVar("E", bound=Enum)


def coerce_option(enum_cls: Type[E], value: Any, option: str) -> E:
    """Map ``value`` onto ``enum_cls`` or raise :class:`ConfigurationError`."""
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        try:
            return enum_cls[value.strip().upper()]
        except KeyError:
            pass
    elif issubclass(enum_cls, IntEnum) and isinstance(value, int) and not isinstance(value, bool):
        try:
            return enum_cls(value)
        except ValueError:
            pass
    choices = ", ".join(m.name for m in enum_cls)
    raise ConfigurationError(
        f"Optimization parameter is invalid: {option}={value!r} (expected one of {choices})"
    )


@dataclass(frozen=True)
class LMParams:
    # Linear solver
    factorization: Factorization = Factorization.LDL
    elimination: Elimination = Elimination.MULTIFRONTAL

    # Damping policy
    lambda_initial: float = 1e-5
    lambda_factor: float = 10.0
    lambda_upper_bound: float = 1e5

    # Driver loop
    max_iterations: int = 100
    relative_error_tol: float = 1e-5
    absolute_error_tol: float = 1e-5
    error_tol: float = 0.0

    # Reporting only; never changes control flow
    verbosity: Verbosity = Verbosity.SILENT
    lm_verbosity: LMVerbosity = LMVerbosity.SILENT

    def __post_init__(self) -> None:
        coerced = {
            "factorization": coerce_option(Factorization, self.factorization, "factorization"),
            "elimination": coerce_option(Elimination, self.elimination, "elimination"),
            "verbosity": coerce_option(Verbosity, self.verbosity, "verbosity"),
            "lm_verbosity": coerce_option(LMVerbosity, self.lm_verbosity, "lm_verbosity"),
        }
        for name, value in coerced.items():
            object.__setattr__(self, name, value)

        if not self.lambda_initial > 0.0:
            raise ConfigurationError(f"lambda_initial must be > 0, got {self.lambda_initial}")
        if not self.lambda_factor > 1.0:
            raise ConfigurationError(f"lambda_factor must be > 1, got {self.lambda_factor}")
        if not self.lambda_upper_bound > 0.0:
            raise ConfigurationError(
                f"lambda_upper_bound must be > 0, got {self.lambda_upper_bound}"
            )
        if self.max_iterations < 0:
            raise ConfigurationError(f"max_iterations must be >= 0, got {self.max_iterations}")
        for name in ("relative_error_tol", "absolute_error_tol", "error_tol"):
            if getattr(self, name) < 0.0:
                raise ConfigurationError(f"{name} must be >= 0, got {getattr(self, name)}")

    @classmethod
    def from_dict(cls, options: Mapping[str, Any]) -> "LMParams":
        """Build params from a plain mapping; unknown keys are an error."""
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(options) - known)
        if unknown:
            raise ConfigurationError(f"Unknown optimizer option(s): {', '.join(unknown)}")
        return cls(**dict(options))
