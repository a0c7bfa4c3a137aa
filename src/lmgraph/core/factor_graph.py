# Copyright (c) 2025.
# This file is part of lmgraph, released under the MIT License.
"""
Nonlinear factor graph for lmgraph.

The FactorGraph stores:
    - Variables (typed nodes with initial values)
    - Factors (constraints between variables)
    - Registered residual functions (by factor type)

and implements the nonlinear-system contract the Levenberg-Marquardt
optimizer in `optimization/solvers.py` relies on:

error(values)
    Total squared residual ``sum_f ||r_f(values)||^2``.

linearize(values, ordering)
    A `linear.gaussian.GaussianFactorGraph` with one whitened
    `JacobianFactor` per nonlinear factor, ``A = dr/d(delta)`` and ``b = -r``,
    keyed by each variable's position in ``ordering``.

dims(values, ordering)
    Local (tangent) dimension of each ordered variable.

retract(values, delta, ordering)
    Apply a step, using each variable's manifold (`slam.manifold`).

Key Features
------------
• Manifold-aware Jacobians
    Jacobians are taken with respect to the local step through the same
    retraction used to apply it, so SE(3) poses linearize correctly.

• JIT-compiled linearization
    Each factor signature (type, manifolds, sizes) is compiled once into a
    `optimization.jit_wrappers.JittedLinearizer` and cached on the graph.

Notes
-----
Variable values held by the graph are only the *initial* assignment. The
optimizer works on separate `Values` dictionaries and never mutates the graph.
"""


from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Callable, Optional, Tuple

import jax.numpy as jnp

from .types import NodeId, FactorId, Variable, Factor, Ordering, Values, VariableDimensions
from ..linear.gaussian import GaussianFactorGraph, JacobianFactor, VectorValues
from ..optimization.jit_wrappers import JittedLinearizer
from ..slam.manifold import get_manifold_for_var_type, local_dim, retract


# Type aliases for clarity
ResidualFn = Callable[[jnp.ndarray, Dict[str, jnp.ndarray]], jnp.ndarray]


@dataclass
class FactorGraph:
    """
    Nonlinear factor graph.

    - variables: mapping from NodeId -> Variable
    - factors: mapping from FactorId -> Factor
    - residual_fns: mapping factor.type -> callable that computes residuals
    """
    variables: Dict[NodeId, Variable] = field(default_factory=dict)
    factors: Dict[FactorId, Factor] = field(default_factory=dict)
    residual_fns: Dict[str, ResidualFn] = field(default_factory=dict)
    _linearizers: Dict[Tuple, JittedLinearizer] = field(default_factory=dict, repr=False)

    def add_variable(self, var: Variable) -> None:
        assert var.id not in self.variables
        self.variables[var.id] = var

    def add_factor(self, factor: Factor) -> None:
        assert factor.id not in self.factors
        self.factors[factor.id] = factor

    def register_residual(self, factor_type: str, fn: ResidualFn) -> None:
        self.residual_fns[factor_type] = fn
        self._linearizers = {
            key: lin for key, lin in self._linearizers.items() if key[0] != factor_type
        }

    # --- Assignments ---

    def initial_values(self) -> Values:
        return {nid: jnp.asarray(var.value) for nid, var in self.variables.items()}

    def manifold_types(self) -> Dict[NodeId, str]:
        return {nid: get_manifold_for_var_type(var.type) for nid, var in self.variables.items()}

    def ordering(self, values: Optional[Values] = None) -> Ordering:
        """Ascending NodeId order over ``values`` (or over the graph's variables)."""
        keys = self.variables.keys() if values is None else values.keys()
        return tuple(sorted(keys))

    def dims(self, values: Values, ordering: Ordering) -> VariableDimensions:
        manifolds = self.manifold_types()
        return tuple(local_dim(manifolds[nid], values[nid]) for nid in ordering)

    # --- Objective ---

    def _residual_fn(self, factor: Factor) -> ResidualFn:
        residual_fn = self.residual_fns.get(factor.type, None)
        if residual_fn is None:
            raise ValueError(f"No residual fn registered for factor type '{factor.type}'")
        return residual_fn

    def _stack(self, factor: Factor, values: Values) -> jnp.ndarray:
        return jnp.concatenate([jnp.asarray(values[nid]) for nid in factor.var_ids])

    def error(self, values: Values) -> float:
        """Total squared residual at ``values``."""
        total = 0.0
        for factor in self.factors.values():
            r = self._residual_fn(factor)(self._stack(factor, values), factor.params)
            total += float(jnp.sum(jnp.asarray(r) ** 2))
        return total

    # --- Linearization ---

    def _linearizer(self, factor: Factor, values: Values) -> JittedLinearizer:
        manifolds = self.manifold_types()
        sig_manifolds = tuple(manifolds[nid] for nid in factor.var_ids)
        sizes = tuple(int(jnp.asarray(values[nid]).shape[0]) for nid in factor.var_ids)
        key = (factor.type, sig_manifolds, sizes)

        lin = self._linearizers.get(key)
        if lin is None:
            local_dims = tuple(
                local_dim(m, values[nid]) for m, nid in zip(sig_manifolds, factor.var_ids)
            )
            lin = JittedLinearizer.from_residual(
                self._residual_fn(factor), sig_manifolds, sizes, local_dims
            )
            self._linearizers[key] = lin
        return lin

    def linearize(self, values: Values, ordering: Ordering) -> GaussianFactorGraph:
        """
        Linear system at ``values``: one `JacobianFactor` per factor.

        Variables are keyed by their position in ``ordering``; a factor over a
        variable missing from ``ordering`` or ``values`` raises ``KeyError``.
        """
        position = {nid: j for j, nid in enumerate(ordering)}
        linear = GaussianFactorGraph()

        for factor in self.factors.values():
            lin = self._linearizer(factor, values)
            r, J = lin(self._stack(factor, values), factor.params)

            keys, blocks, offset = [], [], 0
            for nid, dim in zip(factor.var_ids, lin.local_dims):
                keys.append(position[nid])
                blocks.append(J[:, offset:offset + dim])
                offset += dim

            linear.add(JacobianFactor(keys=tuple(keys), blocks=tuple(blocks), b=-r))

        return linear

    def retract(self, values: Values, delta: VectorValues, ordering: Ordering) -> Values:
        return retract(values, delta, ordering, self.manifold_types())
