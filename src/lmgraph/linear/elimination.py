# Copyright (c) 2025.
# This file is part of lmgraph, released under the MIT License.
"""
Sparse solver backend for Gaussian factor graphs.

Solving a :class:`linear.gaussian.GaussianFactorGraph` is done by variable
elimination: variables are removed front by front, each elimination producing
a :class:`GaussianConditional` on the eliminated (frontal) variables and a new
factor on the remaining (separator) variables. Back-substitution over the
conditionals, in reverse order, yields the step.

Factorization
-------------
LDL
    Each front is eliminated from its dense information matrix by a Cholesky
    factorization of the frontal block. An indefinite frontal block is the
    expected failure mode of an under-damped system.

QR
    Involved factors are stacked as ``[A | b]`` and reduced with a QR
    decomposition. Hessian factors are first converted to Jacobian form by
    Cholesky, so an indefinite Hessian fails here as well.

Elimination strategy
--------------------
SequentialSolver
    One variable per front, in ordering order.

MultifrontalSolver
    One dense front per connected component of the variable graph. Components
    share no factors, so each is factored independently. Within a component
    there is no elimination tree: a connected graph is solved as a single
    dense Cholesky or QR, so fill-in is not exploited and the cost grows with
    the cube of the component dimension.

Failure reporting
-----------------
Numerical breakdown is *returned* as a :class:`NumericalFailure` value, not
raised: the optimizer's damping loop dispatches on the result type and grows
lambda. Only malformed input (e.g. inconsistent dimensions) raises.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple, Union

import jax.numpy as jnp
import networkx as nx
from jax.scipy.linalg import solve_triangular

from .gaussian import (
    GaussianFactor,
    GaussianFactorGraph,
    HessianFactor,
    JacobianFactor,
    VectorValues,
    accumulate_information,
    _offsets,
)
from ..optimization.params import (
    ConfigurationError,
    Elimination,
    Factorization,
    LMParams,
    coerce_option,
)

_RANK_TOL = 1e-12


@dataclass(frozen=True)
class Solution:
    delta: VectorValues


@dataclass(frozen=True)
class NumericalFailure:
    """The system could not be factored (not positive-definite / rank-deficient)."""
    reason: str
    key: Optional[int] = None


SolveResult = Union[Solution, NumericalFailure]


@dataclass(frozen=True)
class GaussianConditional:
    """``R x_F + S x_S = d`` with ``R`` upper-triangular."""
    frontals: Tuple[int, ...]
    frontal_dims: Tuple[int, ...]
    parents: Tuple[int, ...]
    R: jnp.ndarray
    S: jnp.ndarray
    d: jnp.ndarray

    def solve(self, delta: VectorValues) -> VectorValues:
        rhs = self.d
        if self.parents:
            x_s = jnp.concatenate([delta[j] for j in self.parents])
            rhs = rhs - self.S @ x_s
        x_f = solve_triangular(self.R, rhs, lower=False)

        out: VectorValues = {}
        offset = 0
        for j, dim in zip(self.frontals, self.frontal_dims):
            out[j] = x_f[offset:offset + dim]
            offset += dim
        return out


EliminationResult = Union[Tuple[GaussianConditional, Optional[GaussianFactor]], NumericalFailure]


def _front_keys(
    factors: Sequence[GaussianFactor], frontals: Sequence[int]
) -> Tuple[int, ...]:
    frontal_set = set(frontals)
    separator = sorted({j for f in factors for j in f.keys if j not in frontal_set})
    return tuple(separator)


def _is_positive_cholesky(L: jnp.ndarray) -> bool:
    return bool(jnp.all(jnp.isfinite(L))) and bool(jnp.all(jnp.diag(L) > 0.0))


def eliminate_cholesky(
    factors: Sequence[GaussianFactor],
    frontals: Sequence[int],
    dims: Dict[int, int],
) -> EliminationResult:
    """Eliminate ``frontals`` from the information form of ``factors``."""
    separator = _front_keys(factors, frontals)
    keys = tuple(frontals) + separator
    index = _offsets(keys, dims)
    n = sum(dims[j] for j in keys)
    n_f = sum(dims[j] for j in frontals)

    G = jnp.zeros((n, n))
    g = jnp.zeros((n,))
    for f in factors:
        G, g = accumulate_information(f, index, G, g)

    L = jnp.linalg.cholesky(G[:n_f, :n_f])
    if not _is_positive_cholesky(L):
        return NumericalFailure("frontal block is not positive definite", key=frontals[0])

    S = solve_triangular(L, G[:n_f, n_f:], lower=True)
    d = solve_triangular(L, g[:n_f], lower=True)
    conditional = GaussianConditional(
        frontals=tuple(frontals),
        frontal_dims=tuple(dims[j] for j in frontals),
        parents=separator,
        R=L.T,
        S=S,
        d=d,
    )

    if not separator:
        return conditional, None
    remaining = HessianFactor(
        keys=separator,
        key_dims=tuple(dims[j] for j in separator),
        info=G[n_f:, n_f:] - S.T @ S,
        linear=g[n_f:] - S.T @ d,
    )
    return conditional, remaining


def hessian_to_jacobian(f: HessianFactor) -> Union[JacobianFactor, NumericalFailure]:
    """``G = L L^T`` gives ``A = L^T`` and ``b = L^{-1} g``; the constant is dropped."""
    L = jnp.linalg.cholesky(f.info)
    if not _is_positive_cholesky(L):
        return NumericalFailure("hessian factor is not positive definite", key=f.keys[0])
    A = L.T
    b = solve_triangular(L, f.linear, lower=True)
    blocks = []
    offset = 0
    for dim in f.key_dims:
        blocks.append(A[:, offset:offset + dim])
        offset += dim
    return JacobianFactor(keys=f.keys, blocks=tuple(blocks), b=b)


def eliminate_qr(
    factors: Sequence[GaussianFactor],
    frontals: Sequence[int],
    dims: Dict[int, int],
) -> EliminationResult:
    """Eliminate ``frontals`` by QR of the stacked, augmented Jacobian."""
    jacobians: List[JacobianFactor] = []
    for f in factors:
        if isinstance(f, HessianFactor):
            converted = hessian_to_jacobian(f)
            if isinstance(converted, NumericalFailure):
                return converted
            f = converted
        jacobians.append(f)

    separator = _front_keys(jacobians, frontals)
    keys = tuple(frontals) + separator
    index = _offsets(keys, dims)
    n = sum(dims[j] for j in keys)
    n_f = sum(dims[j] for j in frontals)
    m = sum(f.rows() for f in jacobians)
    if m < n_f:
        return NumericalFailure("fewer rows than frontal unknowns", key=frontals[0])

    Ab = jnp.zeros((m, n + 1))
    row = 0
    for f in jacobians:
        rows = f.rows()
        for j, A in zip(f.keys, f.blocks):
            start, dim = index[j]
            Ab = Ab.at[row:row + rows, start:start + dim].set(A)
        Ab = Ab.at[row:row + rows, n].set(f.b)
        row += rows

    R_full = jnp.linalg.qr(Ab, mode="r")
    R = R_full[:n_f, :n_f]
    diag = jnp.abs(jnp.diag(R))
    scale = max(1.0, float(jnp.max(diag)))
    if not bool(jnp.all(jnp.isfinite(R_full))) or bool(jnp.any(diag <= _RANK_TOL * scale)):
        return NumericalFailure("frontal block is rank deficient", key=frontals[0])

    conditional = GaussianConditional(
        frontals=tuple(frontals),
        frontal_dims=tuple(dims[j] for j in frontals),
        parents=separator,
        R=R,
        S=R_full[:n_f, n_f:n],
        d=R_full[:n_f, n],
    )

    rest = R_full[n_f:, n_f:]
    if not separator or rest.shape[0] == 0:
        return conditional, None
    blocks = []
    offset = 0
    for j in separator:
        blocks.append(rest[:, offset:offset + dims[j]])
        offset += dims[j]
    return conditional, JacobianFactor(keys=separator, blocks=tuple(blocks), b=rest[:, -1])


_ELIMINATE = {
    Factorization.LDL: eliminate_cholesky,
    Factorization.QR: eliminate_qr,
}


class GaussianSolver:
    """
    Base class: eliminate the graph front by front, then back-substitute.

    Subclasses only decide how variables are grouped into fronts.
    """

    def __init__(self, factorization: Factorization = Factorization.LDL) -> None:
        self.factorization = coerce_option(Factorization, factorization, "factorization")

    def fronts(self, graph: GaussianFactorGraph) -> List[Tuple[int, ...]]:
        raise NotImplementedError

    def eliminate(
        self, graph: GaussianFactorGraph
    ) -> Union[List[GaussianConditional], NumericalFailure]:
        eliminate_front = _ELIMINATE[self.factorization]
        dims = graph.dims()
        pool: List[GaussianFactor] = list(graph.factors)
        conditionals: List[GaussianConditional] = []

        for frontals in self.fronts(graph):
            frontal_set = set(frontals)
            involved = [f for f in pool if frontal_set.intersection(f.keys)]
            pool = [f for f in pool if not frontal_set.intersection(f.keys)]

            result = eliminate_front(involved, frontals, dims)
            if isinstance(result, NumericalFailure):
                return result
            conditional, remaining = result
            conditionals.append(conditional)
            if remaining is not None:
                pool.append(remaining)

        return conditionals

    def solve(self, graph: GaussianFactorGraph) -> SolveResult:
        eliminated = self.eliminate(graph)
        if isinstance(eliminated, NumericalFailure):
            return eliminated

        delta: VectorValues = {}
        for conditional in reversed(eliminated):
            delta.update(conditional.solve(delta))
        return Solution(delta=delta)


class SequentialSolver(GaussianSolver):
    """Eliminate one variable at a time, in ordering-index order."""

    def fronts(self, graph: GaussianFactorGraph) -> List[Tuple[int, ...]]:
        return [(j,) for j in graph.keys()]


class MultifrontalSolver(GaussianSolver):
    """Eliminate each connected component of the graph as a single dense front."""

    def fronts(self, graph: GaussianFactorGraph) -> List[Tuple[int, ...]]:
        variables = nx.Graph()
        variables.add_nodes_from(graph.keys())
        for f in graph.factors:
            variables.add_edges_from(zip(f.keys[:-1], f.keys[1:]))
        components = (tuple(sorted(c)) for c in nx.connected_components(variables))
        return sorted(components, key=lambda c: c[0])


def make_solver(params: LMParams) -> GaussianSolver:
    """Pick the solver backend for ``params``; invalid selections are fatal."""
    factorization = coerce_option(Factorization, params.factorization, "factorization")
    elimination = coerce_option(Elimination, params.elimination, "elimination")
    if elimination is Elimination.MULTIFRONTAL:
        return MultifrontalSolver(factorization)
    if elimination is Elimination.SEQUENTIAL:
        return SequentialSolver(factorization)
    raise ConfigurationError(f"Optimization parameter is invalid: elimination={elimination!r}")
