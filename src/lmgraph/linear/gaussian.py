# Copyright (c) 2025.
# This file is part of lmgraph, released under the MIT License.
"""
Linear (Gaussian) factor graphs.

A nonlinear :class:`core.factor_graph.FactorGraph` linearized at a point
becomes a :class:`GaussianFactorGraph`: a list of linear factors over the
step vector ``delta``. Factors are keyed by *ordering index* ``j`` (the
position of the variable in the optimizer's ordering), not by NodeId, so the
solver backend can work with plain integers.

Two factor forms are supported:

JacobianFactor
    Whitened least-squares rows, error ``||sum_k A_k delta_k - b||^2``.
    This is what residual-based factors linearize to.

HessianFactor
    Information form, error ``delta^T G delta - 2 delta^T g + f``.
    ``G`` may be indefinite (e.g. a full second-order expansion), which is
    exactly the case the damping loop has to recover from.

Both forms agree when ``G = A^T A``, ``g = A^T b`` and ``f = b^T b``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Sequence, Tuple, Union

import jax.numpy as jnp

# Ordering index -> step block
VectorValues = Dict[int, jnp.ndarray]


def _offsets(keys: Sequence[int], dims: Dict[int, int]) -> Dict[int, Tuple[int, int]]:
    index: Dict[int, Tuple[int, int]] = {}
    offset = 0
    for j in keys:
        index[j] = (offset, dims[j])
        offset += dims[j]
    return index


@dataclass(frozen=True)
class JacobianFactor:
    """Whitened linear factor ``||sum_k A_k delta_k - b||^2``."""
    keys: Tuple[int, ...]
    blocks: Tuple[jnp.ndarray, ...]
    b: jnp.ndarray

    @staticmethod
    def isotropic(key: int, A: jnp.ndarray, b: jnp.ndarray, sigma: float) -> "JacobianFactor":
        """Single-key factor with an isotropic noise model of std ``sigma``."""
        inv_sigma = 1.0 / sigma
        return JacobianFactor(
            keys=(key,),
            blocks=(jnp.asarray(A) * inv_sigma,),
            b=jnp.asarray(b) * inv_sigma,
        )

    def dims(self) -> Dict[int, int]:
        return {j: int(A.shape[1]) for j, A in zip(self.keys, self.blocks)}

    def rows(self) -> int:
        return int(self.b.shape[0])

    def error(self, delta: VectorValues) -> float:
        r = -self.b
        for j, A in zip(self.keys, self.blocks):
            r = r + A @ delta[j]
        return float(jnp.sum(r ** 2))


@dataclass(frozen=True)
class HessianFactor:
    """
    Information-form factor over ``keys``.

    ``info`` is the dense ``G`` over the concatenated key blocks (in the
    order of ``keys``); ``linear`` is ``g``; ``constant`` is ``f``.
    """
    keys: Tuple[int, ...]
    key_dims: Tuple[int, ...]
    info: jnp.ndarray
    linear: jnp.ndarray
    constant: float = 0.0

    def dims(self) -> Dict[int, int]:
        return dict(zip(self.keys, self.key_dims))

    def error(self, delta: VectorValues) -> float:
        x = jnp.concatenate([delta[j] for j in self.keys])
        return float(x @ self.info @ x - 2.0 * x @ self.linear + self.constant)


GaussianFactor = Union[JacobianFactor, HessianFactor]


@dataclass
class GaussianFactorGraph:
    """
    A linear system: an ordered collection of Gaussian factors.

    The graph is treated as a value. :meth:`augmented` returns a new graph
    and never modifies ``self``.
    """
    factors: List[GaussianFactor] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.factors)

    def __iter__(self):
        return iter(self.factors)

    def add(self, factor: GaussianFactor) -> None:
        self.factors.append(factor)

    def augmented(self, extra: Iterable[GaussianFactor]) -> "GaussianFactorGraph":
        return GaussianFactorGraph(factors=list(self.factors) + list(extra))

    def keys(self) -> List[int]:
        seen = set()
        for f in self.factors:
            seen.update(f.keys)
        return sorted(seen)

    def dims(self) -> Dict[int, int]:
        out: Dict[int, int] = {}
        for f in self.factors:
            for j, d in f.dims().items():
                if out.setdefault(j, d) != d:
                    raise ValueError(
                        f"Inconsistent dimension for key {j}: {out[j]} vs {d}"
                    )
        return out

    def error(self, delta: VectorValues) -> float:
        return sum(f.error(delta) for f in self.factors)

    def hessian(self, keys: Sequence[int]) -> Tuple[jnp.ndarray, jnp.ndarray]:
        """
        Dense information form ``(G, g)`` over ``keys``, accumulated from
        every factor touching them. Factors must only involve ``keys``.
        """
        dims = self.dims()
        index = _offsets(keys, dims)
        n = sum(dims[j] for j in keys)
        G = jnp.zeros((n, n))
        g = jnp.zeros((n,))
        for f in self.factors:
            G, g = accumulate_information(f, index, G, g)
        return G, g

    def summary(self) -> str:
        n_jac = sum(isinstance(f, JacobianFactor) for f in self.factors)
        n_hes = len(self.factors) - n_jac
        return (
            f"GaussianFactorGraph({len(self.factors)} factors: "
            f"{n_jac} jacobian, {n_hes} hessian; keys={self.keys()})"
        )


def accumulate_information(
    f: GaussianFactor,
    index: Dict[int, Tuple[int, int]],
    G: jnp.ndarray,
    g: jnp.ndarray,
) -> Tuple[jnp.ndarray, jnp.ndarray]:
    """Add factor ``f`` into the dense information pair ``(G, g)``."""
    if isinstance(f, JacobianFactor):
        for ja, Aa in zip(f.keys, f.blocks):
            sa, da = index[ja]
            g = g.at[sa:sa + da].add(Aa.T @ f.b)
            for jb, Ab in zip(f.keys, f.blocks):
                sb, db = index[jb]
                G = G.at[sa:sa + da, sb:sb + db].add(Aa.T @ Ab)
        return G, g

    local = _offsets(f.keys, f.dims())
    for ja in f.keys:
        sa, da = index[ja]
        la, _ = local[ja]
        g = g.at[sa:sa + da].add(f.linear[la:la + da])
        for jb in f.keys:
            sb, db = index[jb]
            lb, _ = local[jb]
            G = G.at[sa:sa + da, sb:sb + db].add(f.info[la:la + da, lb:lb + db])
    return G, g
