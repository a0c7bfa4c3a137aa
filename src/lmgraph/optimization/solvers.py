# Copyright (c) 2025.
# This file is part of lmgraph, released under the MIT License.
"""
Levenberg-Marquardt optimization for nonlinear factor graphs.

This module implements the iterative core of the package: a damped
Gauss-Newton (Levenberg-Marquardt) loop over any object that satisfies the
`NonlinearSystem` contract, `core.factor_graph.FactorGraph` being the
default one.

Key Concepts
------------
LMState
    Immutable snapshot ``(values, error, lambda_, iterations)``. Each call
    to `LevenbergMarquardtOptimizer.iterate` consumes one state and returns
    a new one; states are never modified in place.

LevenbergMarquardtOptimizer.iterate(state)
    One outer iteration:

        1. linearize the system at ``state.values`` (once per call)
        2. build the damped system for the current lambda
        3. solve it; a `NumericalFailure` counts as a rejected step
        4. retract the step and evaluate the true error
        5. accept if the error did not increase (shrink lambda), otherwise
           grow lambda and go back to 2 with the same linearization

    The sub-loop ends on acceptance or once lambda has reached
    ``lambda_upper_bound`` (give up: values and error are returned
    unchanged with the final lambda). Every rejection multiplies lambda by
    ``lambda_factor > 1``, so the number of attempts is bounded by
    `LambdaController.max_attempts`.

LevenbergMarquardtOptimizer.optimize(values)
    Driver loop: iterate until `check_convergence` says stop or
    ``max_iterations`` is reached.

Notes
-----
Reporting goes through the ``lmgraph.optimization`` logger, gated by
``LMParams.verbosity`` / ``LMParams.lm_verbosity``. Verbosity never changes
control flow. Errors raised by the system while linearizing or retracting
propagate unchanged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import jax.numpy as jnp

from ..core.types import Ordering, Values, VariableDimensions
from ..linear.damping import build_damped_system
from ..linear.elimination import GaussianSolver, NumericalFailure, make_solver
from ..linear.gaussian import GaussianFactorGraph, VectorValues
from .lambda_policy import LambdaController
from .params import LMParams, LMVerbosity, Verbosity

logger = logging.getLogger("lmgraph.optimization")


class NonlinearSystem(Protocol):
    def linearize(self, values: Values, ordering: Ordering) -> GaussianFactorGraph: ...

    def error(self, values: Values) -> float: ...

    def dims(self, values: Values, ordering: Ordering) -> VariableDimensions: ...

    def retract(self, values: Values, delta: VectorValues, ordering: Ordering) -> Values: ...

    def ordering(self, values: Optional[Values] = None) -> Ordering: ...


@dataclass(frozen=True)
class LMState:
    values: Values
    error: float
    lambda_: float
    iterations: int = 0


def check_convergence(
    relative_error_tol: float,
    absolute_error_tol: float,
    error_tol: float,
    current_error: float,
    new_error: float,
    verbosity: Verbosity = Verbosity.SILENT,
) -> bool:
    """
    Decide whether the driver loop should stop after an iteration.

    Stops when ``new_error <= error_tol``, or when the absolute or relative
    decrease falls to or below its tolerance. An error *increase* also
    stops the loop (the decrease is negative), with a warning.
    """
    if new_error <= error_tol:
        if verbosity >= Verbosity.ERROR:
            logger.info("errorThreshold: %g <= %g", new_error, error_tol)
        return True

    absolute_decrease = current_error - new_error
    relative_decrease = absolute_decrease / current_error if current_error > 0.0 else 0.0

    converged = (
        relative_decrease <= relative_error_tol or absolute_decrease <= absolute_error_tol
    )
    if converged and verbosity >= Verbosity.ERROR:
        if absolute_decrease >= 0.0:
            logger.info(
                "converged: absoluteDecrease %g, relativeDecrease %g",
                absolute_decrease,
                relative_decrease,
            )
        else:
            logger.warning("stopping nonlinear iterations because error increased")
    return converged


class LevenbergMarquardtOptimizer:
    """
    Levenberg-Marquardt over a `NonlinearSystem`.

    :param graph: The nonlinear system (usually a `FactorGraph`).
    :param initial_values: Starting assignment. Defaults to
        ``graph.initial_values()``; required when the system has no such
        method, since `NonlinearSystem` does not ask for one.
    :param params: `LMParams`; defaults are used when omitted.
    :param ordering: Fixed variable ordering; defaults to ``graph.ordering``.
        It is only recomputed if the variable set changes.
    :param solver: Linear solver backend; defaults to ``make_solver(params)``.
    """

    def __init__(
        self,
        graph: NonlinearSystem,
        initial_values: Optional[Values] = None,
        params: Optional[LMParams] = None,
        ordering: Optional[Ordering] = None,
        solver: Optional[GaussianSolver] = None,
    ) -> None:
        self.graph = graph
        self.params = params if params is not None else LMParams()
        self.solver = solver if solver is not None else make_solver(self.params)
        self.lambda_policy = LambdaController.from_params(self.params)
        if initial_values is None:
            if not hasattr(graph, "initial_values"):
                raise TypeError(
                    f"{type(graph).__name__} has no initial_values(); pass initial_values explicitly"
                )
            initial_values = graph.initial_values()
        self.initial_values: Values = dict(initial_values)

        self._ordering: Optional[Ordering] = tuple(ordering) if ordering is not None else None
        # Filled on the first iterate; refreshed only when the variable set changes.
        self._dimensions: Optional[VariableDimensions] = None
        self._dimension_keys: Optional[frozenset] = None

    # --- Cached structure ---

    def ordering(self, values: Values) -> Ordering:
        if self._ordering is None or set(self._ordering) != set(values):
            self._ordering = tuple(self.graph.ordering(values))
        return self._ordering

    def dimensions(self, values: Values, ordering: Ordering) -> VariableDimensions:
        keys = frozenset(ordering)
        if self._dimensions is None or keys != self._dimension_keys:
            self._dimensions = tuple(self.graph.dims(values, ordering))
            self._dimension_keys = keys
        return self._dimensions

    # --- State machine ---

    def initial_state(self, values: Optional[Values] = None) -> LMState:
        start = dict(values) if values is not None else dict(self.initial_values)
        return LMState(
            values=start,
            error=self.graph.error(start),
            lambda_=self.params.lambda_initial,
            iterations=0,
        )

    def _try_lambda(
        self,
        current: LMState,
        linear: GaussianFactorGraph,
        dimensions: VariableDimensions,
        ordering: Ordering,
        lambda_: float,
    ) -> Optional[LMState]:
        """One damping attempt; returns the candidate state if accepted."""
        lm_verbosity = self.params.lm_verbosity
        if lm_verbosity >= LMVerbosity.TRYLAMBDA:
            logger.info("trying lambda = %g", lambda_)

        damped = build_damped_system(linear, dimensions, lambda_)
        if lm_verbosity >= LMVerbosity.DAMPED:
            logger.info("damped: %s", damped.summary())

        result = self.solver.solve(damped)
        if isinstance(result, NumericalFailure):
            if lm_verbosity >= LMVerbosity.LAMBDA:
                logger.info("Negative matrix, increasing lambda (%s)", result.reason)
            return None

        delta = result.delta
        if lm_verbosity >= LMVerbosity.TRYLAMBDA:
            norm = jnp.sqrt(sum(jnp.sum(d ** 2) for d in delta.values()))
            logger.info("linear delta norm = %g", float(norm))
        if lm_verbosity >= LMVerbosity.TRYDELTA:
            logger.info("delta: %s", {j: d.tolist() for j, d in sorted(delta.items())})

        values = self.graph.retract(current.values, delta, ordering)
        error = self.graph.error(values)
        if lm_verbosity >= LMVerbosity.TRYLAMBDA:
            logger.info("next error = %g", error)

        if not self.lambda_policy.accepts(error, current.error):
            return None
        return LMState(
            values=values,
            error=error,
            lambda_=self.lambda_policy.shrink(lambda_),
            iterations=current.iterations + 1,
        )

    def iterate(self, current: LMState) -> LMState:
        """
        One Levenberg-Marquardt iteration from ``current``.

        Never raises for numerical trouble in the linear solve; if no lambda
        up to the bound yields a non-increasing error the input values and
        error come back unchanged, with the final lambda.
        """
        ordering = self.ordering(current.values)
        linear = self.graph.linearize(current.values, ordering)
        dimensions = self.dimensions(current.values, ordering)

        lambda_ = current.lambda_
        while True:
            accepted = self._try_lambda(current, linear, dimensions, ordering, lambda_)
            if accepted is not None:
                return accepted
            if self.lambda_policy.exhausted(lambda_):
                break
            lambda_ = self.lambda_policy.grow(lambda_)

        if self.params.verbosity >= Verbosity.ERROR:
            logger.warning(
                "Levenberg-Marquardt giving up because cannot decrease error with maximum lambda"
            )
        return LMState(
            values=dict(current.values),
            error=current.error,
            lambda_=lambda_,
            iterations=current.iterations + 1,
        )

    # --- Driver ---

    def optimize(self, values: Optional[Values] = None) -> LMState:
        """Iterate from ``values`` until convergence or ``max_iterations``."""
        params = self.params
        state = self.initial_state(values)
        if params.verbosity >= Verbosity.ERROR:
            logger.info("Initial error: %g", state.error)

        if state.error <= params.error_tol:
            return state

        while state.iterations < params.max_iterations:
            new_state = self.iterate(state)
            if params.verbosity >= Verbosity.ERROR:
                logger.info("newError: %g", new_state.error)
            if params.verbosity >= Verbosity.VALUES:
                logger.info(
                    "newValues: %s",
                    {int(k): jnp.asarray(v).tolist() for k, v in new_state.values.items()},
                )

            converged = check_convergence(
                params.relative_error_tol,
                params.absolute_error_tol,
                params.error_tol,
                state.error,
                new_state.error,
                params.verbosity,
            )
            state = new_state
            if converged:
                return state

        if params.verbosity >= Verbosity.ERROR:
            logger.warning("Terminating because reached maximum iterations")
        return state
