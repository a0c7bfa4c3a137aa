# Copyright (c) 2025.
# This file is part of lmgraph, released under the MIT License.
"""
SO(3) / SE(3) operations used by pose variables.

Poses are stored as 6-vectors ``[tx, ty, tz, wx, wy, wz]``: a translation
followed by an axis-angle rotation vector. The optimizer never sees rotation
matrices; residuals and the ``"se3"`` retraction in :mod:`slam.manifold` go
through the helpers below.

Functions
---------
hat(w), vee(W)
    3-vector <-> skew-symmetric matrix.

so3_exp(w), so3_log(R)
    Rotation vector <-> rotation matrix, with small-angle branches so that
    ``jax.jacfwd`` stays finite at the identity. so3_log also keeps the axis
    of rotations at or near a half turn.

relative_pose_se3(a, b)
    6-vector of ``T_a^{-1} T_b``.

se3_retract_left(pose, delta)
    ``Exp(delta) * T(pose)``, the update rule for pose variables.

All functions are pure and safe to use under ``jax.jit`` and ``jax.jacfwd``.
"""

from __future__ import annotations

import jax
import jax.numpy as jnp

_SMALL_ANGLE = 1e-5
# Below this distance from pi, so3_log reads the axis from the symmetric part.
_NEAR_PI = 1e-2


def pose_vec_to_rt(v: jnp.ndarray) -> tuple[jnp.ndarray, jnp.ndarray]:
    """Split a 6D pose vector into translation and rotation vector."""
    v = jnp.asarray(v)
    return v[0:3], v[3:6]


def hat(v: jnp.ndarray) -> jnp.ndarray:
    """so(3) hat operator: R^3 -> 3x3 skew-symmetric matrix."""
    x, y, z = v[0], v[1], v[2]
    zero = jnp.zeros_like(x)
    return jnp.stack(
        [
            jnp.stack([zero, -z, y]),
            jnp.stack([z, zero, -x]),
            jnp.stack([-y, x, zero]),
        ]
    )


def vee(W: jnp.ndarray) -> jnp.ndarray:
    """Inverse of :func:`hat`, antisymmetrizing ``W`` first."""
    return 0.5 * jnp.stack([
        W[2, 1] - W[1, 2],
        W[0, 2] - W[2, 0],
        W[1, 0] - W[0, 1],
    ])


def so3_exp(w: jnp.ndarray) -> jnp.ndarray:
    """
    Rodrigues' formula, falling back to ``I + hat(w)`` below the
    small-angle threshold.
    """
    w = jnp.asarray(w)
    theta = jnp.linalg.norm(w)
    I = jnp.eye(3, dtype=w.dtype)

    def first_order(w):
        return I + hat(w)

    def rodrigues(w):
        K = hat(w / theta)
        return I + jnp.sin(theta) * K + (1.0 - jnp.cos(theta)) * (K @ K)

    return jax.lax.cond(theta < _SMALL_ANGLE, first_order, rodrigues, w)


def so3_log(R: jnp.ndarray) -> jnp.ndarray:
    """
    Rotation matrix -> rotation vector, with |w| in [0, pi].

    Three regimes:
      * theta < _SMALL_ANGLE: first order, ``vee(R - I)``.
      * theta > pi - _NEAR_PI: the antisymmetric part of R vanishes, so the
        axis is read from the symmetric part
        ``(R + R^T)/2 = cos(theta) I + (1 - cos(theta)) a a^T``.
      * otherwise: ``theta / (2 sin(theta)) * vee(R - R^T)``.

    The cosine is clipped to [-1, 1] so round-off on the trace cannot
    produce NaN.
    """
    R = jnp.asarray(R)
    cos_theta = jnp.clip((jnp.trace(R) - 1.0) / 2.0, -1.0, 1.0)
    I = jnp.eye(3, dtype=R.dtype)

    def first_order(R):
        return vee(R - I)

    def general(R):
        return theta / (2.0 * jnp.sin(theta)) * vee(R - R.T)

    def near_pi(R):
        aat = (0.5 * (R + R.T) - cos_theta * I) / (1.0 - cos_theta)
        k = jnp.argmax(jnp.diag(aat))
        axis = aat[:, k] / jnp.linalg.norm(aat[:, k])
        # vee(R - R^T) = 2 sin(theta) a picks the sign of the axis
        two_sin = jnp.dot(axis, vee(R - R.T))
        axis = jnp.where(two_sin < 0.0, -axis, axis)
        theta = jnp.arctan2(jnp.abs(two_sin) / 2.0, cos_theta)
        return theta * axis

    theta = jnp.arccos(cos_theta)
    branch = jnp.where(
        theta < _SMALL_ANGLE,
        0,
        jnp.where(theta > jnp.pi - _NEAR_PI, 2, 1),
    )
    return jax.lax.switch(branch, (first_order, general, near_pi), R)


def relative_pose_se3(a: jnp.ndarray, b: jnp.ndarray) -> jnp.ndarray:
    """
    Relative pose ``T_a^{-1} T_b`` as a 6-vector::

        t_rel = R_a^T (t_b - t_a)
        w_rel = log(R_a^T R_b)
    """
    ta, wa = pose_vec_to_rt(a)
    tb, wb = pose_vec_to_rt(b)

    Ra = so3_exp(wa)
    Rb = so3_exp(wb)

    t_rel = Ra.T @ (tb - ta)
    w_rel = so3_log(Ra.T @ Rb)
    return jnp.concatenate([t_rel, w_rel])


def se3_retract_left(pose: jnp.ndarray, delta: jnp.ndarray) -> jnp.ndarray:
    """
    Left-multiplicative SE(3) retraction::

        T_new = Exp(delta) * T_old
        R_new = R_d R,  t_new = R_d t + t_d
    """
    t, w = pose_vec_to_rt(pose)
    dt, dw = pose_vec_to_rt(delta)

    R_d = so3_exp(dw)
    R_new = R_d @ so3_exp(w)
    t_new = R_d @ t + dt

    return jnp.concatenate([t_new, so3_log(R_new)])


def se3_identity() -> jnp.ndarray:
    return jnp.zeros(6)
