# Copyright (c) 2025.
# This file is part of lmgraph, released under the MIT License.
"""
JIT-compiled factor linearizers.

Linearizing a nonlinear factor means evaluating its residual ``r`` and the
Jacobian of ``r`` with respect to a *local* step on each of its variables::

    r(delta) = residual(concat_k retract_k(x_k, delta_k), params)
    J        = d r / d delta   at delta = 0

Taking the Jacobian through the retraction is what makes the linear step
consistent with the update applied afterwards by `slam.manifold.retract`.

`JittedLinearizer` wraps this computation for one factor *signature*
(residual function, manifold of each variable, value size of each variable)
and compiles it once with ``jax.jit``. The factor graph caches one instance
per signature, so every factor of the same type and shape shares a single
compiled function across all Levenberg-Marquardt iterations.

Notes
-----
``params`` is passed as a traced argument, so residuals must not branch in
Python on parameter values, and params must be arrays or numbers.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Tuple

import jax
import jax.numpy as jnp

from ..slam.manifold import retract_block

ResidualFn = Callable[[jnp.ndarray, Dict[str, jnp.ndarray]], jnp.ndarray]
LinearizeFn = Callable[[jnp.ndarray, Dict[str, jnp.ndarray]], Tuple[jnp.ndarray, jnp.ndarray]]


@dataclass
class JittedLinearizer:
    """
    Compiled ``(x, params) -> (r, J)`` for one factor signature.

    ``x`` is the stacked variable values; ``J`` has one column per local
    degree of freedom, blocks in ``var_ids`` order.
    """
    fn: LinearizeFn
    manifolds: Tuple[str, ...]
    sizes: Tuple[int, ...]
    local_dims: Tuple[int, ...]

    def __call__(self, x: jnp.ndarray, params: Dict[str, jnp.ndarray]) -> Tuple[jnp.ndarray, jnp.ndarray]:
        return self.fn(x, params)

    @staticmethod
    def from_residual(
        residual_fn: ResidualFn,
        manifolds: Tuple[str, ...],
        sizes: Tuple[int, ...],
        local_dims: Tuple[int, ...],
    ) -> "JittedLinearizer":
        def split(v: jnp.ndarray, widths: Tuple[int, ...]):
            out, offset = [], 0
            for w in widths:
                out.append(v[offset:offset + w])
                offset += w
            return out

        def linearize(x: jnp.ndarray, params: Dict[str, jnp.ndarray]):
            blocks = split(x, sizes)

            def local_residual(delta: jnp.ndarray) -> jnp.ndarray:
                steps = split(delta, local_dims)
                moved = [retract_block(m, b, d) for m, b, d in zip(manifolds, blocks, steps)]
                return jnp.reshape(residual_fn(jnp.concatenate(moved), params), (-1,))

            zero = jnp.zeros((sum(local_dims),), dtype=x.dtype)
            r = local_residual(zero)
            J = jax.jacfwd(local_residual)(zero)
            return r, J

        return JittedLinearizer(
            fn=jax.jit(linearize),
            manifolds=manifolds,
            sizes=sizes,
            local_dims=local_dims,
        )
