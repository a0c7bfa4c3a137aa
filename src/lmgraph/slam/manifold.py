# Copyright (c) 2025.
# This file is part of lmgraph, released under the MIT License.
"""
Manifold metadata and retraction for lmgraph variables.

The optimizer computes steps in each variable's local (tangent) coordinates
and maps them back onto the variable's domain with a retraction:

    • "se3":       6D pose [t, w], updated by left-multiplicative Exp(delta)
    • "euclidean": any vector, updated additively

Factor graphs use the same retraction when linearizing, so the Jacobians they
produce are taken with respect to exactly the step that is later applied.

Extending
---------
To support a new manifold:

    • Add the variable type to `TYPE_TO_MANIFOLD`
    • Add a branch to `retract_block` and `local_dim`
"""

from __future__ import annotations

from typing import Dict, Mapping

import jax.numpy as jnp

from ..core.math3d import se3_retract_left
from ..core.types import NodeId, Ordering, Values
from ..linear.gaussian import VectorValues

TYPE_TO_MANIFOLD: Dict[str, str] = {
    "pose_se3": "se3",
    "pose": "euclidean",
    "pose1d": "euclidean",
    "point2": "euclidean",
    "point3": "euclidean",
    "landmark3d": "euclidean",
    "scalar": "euclidean",
}


def get_manifold_for_var_type(var_type: str) -> str:
    return TYPE_TO_MANIFOLD.get(var_type, "euclidean")


def local_dim(manifold: str, value: jnp.ndarray) -> int:
    """Dimension of the tangent space at ``value``."""
    if manifold == "se3":
        return 6
    if manifold == "euclidean":
        return int(jnp.asarray(value).shape[0])
    raise ValueError(f"Unknown manifold '{manifold}'")


def retract_block(manifold: str, x: jnp.ndarray, d: jnp.ndarray) -> jnp.ndarray:
    """Apply tangent step ``d`` to a single variable value ``x``."""
    if manifold == "se3":
        return se3_retract_left(x, d)
    if manifold == "euclidean":
        return x + d
    raise ValueError(f"Unknown manifold '{manifold}'")


def retract(
    values: Values,
    delta: VectorValues,
    ordering: Ordering,
    manifold_types: Mapping[NodeId, str],
) -> Values:
    """
    Return a new assignment with ``delta[j]`` applied to ``ordering[j]``.

    Variables without a step are carried over unchanged. ``values`` is not
    modified.
    """
    updated: Values = dict(values)
    for j, nid in enumerate(ordering):
        d = delta.get(j)
        if d is None:
            continue
        updated[nid] = retract_block(manifold_types[nid], values[nid], d)
    return updated
