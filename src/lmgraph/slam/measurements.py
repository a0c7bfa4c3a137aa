# Copyright (c) 2025.
# This file is part of lmgraph, released under the MIT License.
"""
Residual functions for common measurement factors.

Every residual has the signature::

    residual(x: jnp.ndarray, params: Dict[str, jnp.ndarray]) -> jnp.ndarray

where ``x`` is the concatenation of the factor's variable values (in
``Factor.var_ids`` order) and ``params`` holds the measurement and optional
weight. The factor graph differentiates residuals with ``jax.jacfwd``, so they
must be written with JAX primitives only.

Adding a factor type::

    fg.register_residual("my_factor", my_factor_residual)

Available residuals
-------------------
prior_residual
    ``x - target`` on a single variable of any dimension.
odom_residual
    ``(x1 - x0) - measurement`` between two Euclidean variables.
odom_se3_residual
    ``log(T0^{-1} T1) - measurement`` between two SE(3) poses.
range_residual
    ``||p1 - p0|| - range`` between two points (or pose translations).
"""

from __future__ import annotations
from typing import Dict

import jax.numpy as jnp

from ..core.math3d import relative_pose_se3


def _apply_weight(residual: jnp.ndarray, params: dict, key: str = "weight") -> jnp.ndarray:
    """
    Optional weighting of residuals.

    If params[key] is:
      - missing: no change
      - scalar:  r' = sqrt(w) * r          (information weight)
      - vector:  r' = w * r                (per-component sqrt-information)
    """
    w = params.get(key, None)
    if w is None:
        return residual

    w = jnp.asarray(w)
    if w.ndim == 0:
        return jnp.sqrt(w) * residual
    return w * residual


def sigma_to_weight(sigma):
    """Standard deviation(s) -> information weight(s), ``1 / sigma^2``."""
    s = jnp.asarray(sigma)
    return 1.0 / (s * s)


def prior_residual(x: jnp.ndarray, params: Dict[str, jnp.ndarray]) -> jnp.ndarray:
    r = x - params["target"]
    return _apply_weight(r, params)


def odom_residual(x: jnp.ndarray, params: Dict[str, jnp.ndarray]) -> jnp.ndarray:
    """x = [x0, x1] with equal halves; residual = (x1 - x0) - measurement."""
    dim = x.shape[0] // 2
    r = (x[dim:] - x[:dim]) - params["measurement"]
    return _apply_weight(r, params)


def odom_se3_residual(x: jnp.ndarray, params: Dict[str, jnp.ndarray]) -> jnp.ndarray:
    """
    Geodesic SE(3) odometry between two stacked 6D poses.

    residual = relative_pose_se3(pose0, pose1) - measurement
    """
    if x.shape[0] != 12:
        raise ValueError(f"odom_se3_residual expects two 6D poses, got size {x.shape[0]}")
    r = relative_pose_se3(x[:6], x[6:]) - params["measurement"]
    return _apply_weight(r, params)


def range_residual(x: jnp.ndarray, params: Dict[str, jnp.ndarray]) -> jnp.ndarray:
    """
    Distance between the first three components of each variable.

    Works for point3 <-> point3 and for pose_se3 <-> point3: the first
    variable contributes its leading three entries (a pose's translation),
    the second must be a point and contributes its last three.
    """
    p0 = x[:3]
    p1 = x[-3:]
    dist = jnp.sqrt(jnp.sum((p1 - p0) ** 2) + 1e-12)
    r = jnp.reshape(dist - params["range"], (1,))
    return _apply_weight(r, params)
