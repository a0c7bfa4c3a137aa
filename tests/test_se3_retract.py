from __future__ import annotations

import jax
import jax.numpy as jnp

from lmgraph.core.math3d import se3_identity, se3_retract_left, relative_pose_se3, so3_exp
from lmgraph.core.types import NodeId
from lmgraph.slam.manifold import retract, local_dim, get_manifold_for_var_type


def test_se3_retract_zero_delta_is_identity():
    pose = se3_identity()
    delta = jnp.zeros(6)

    pose_new = se3_retract_left(pose, delta)
    assert jnp.allclose(pose_new, pose, atol=1e-12)


def test_se3_retract_pure_translation():
    pose = se3_identity()
    delta = jnp.array([1.0, 0.0, 0.0, 0.0, 0.0, 0.0])

    pose_new = se3_retract_left(pose, delta)
    assert jnp.allclose(pose_new[:3], jnp.array([1.0, 0.0, 0.0]), atol=1e-9)
    assert jnp.allclose(pose_new[3:], jnp.zeros(3), atol=1e-9)


def test_se3_retract_matches_relative_pose_for_small_delta():
    """
    Applying a small delta to identity and measuring the relative pose back
    should recover (approximately) the same delta.
    """
    delta = jnp.array([0.1, -0.05, 0.02, 0.01, 0.0, -0.02])
    pose0 = se3_identity()
    pose1 = se3_retract_left(pose0, delta)

    xi_est = relative_pose_se3(pose0, pose1)
    assert jnp.allclose(xi_est, delta, atol=1e-3)


def test_retract_dispatches_by_manifold_and_copies():
    """
    retract applies delta[j] to ordering[j] with the variable's manifold,
    leaves variables without a step alone and never mutates its input.
    """
    values = {
        NodeId(0): jnp.array([1.0, 2.0]),
        NodeId(1): se3_identity(),
        NodeId(2): jnp.array([5.0]),
    }
    manifolds = {NodeId(0): "euclidean", NodeId(1): "se3", NodeId(2): "euclidean"}
    ordering = (NodeId(0), NodeId(1), NodeId(2))
    delta = {
        0: jnp.array([0.5, -1.0]),
        1: jnp.array([0.0, 1.0, 0.0, 0.0, 0.0, 0.0]),
    }

    new_values = retract(values, delta, ordering, manifolds)

    assert new_values is not values
    assert jnp.allclose(new_values[NodeId(0)], jnp.array([1.5, 1.0]))
    assert jnp.allclose(new_values[NodeId(1)], jnp.array([0.0, 1.0, 0.0, 0.0, 0.0, 0.0]))
    assert new_values[NodeId(2)] is values[NodeId(2)]
    assert jnp.allclose(values[NodeId(0)], jnp.array([1.0, 2.0]))


def test_manifold_tags_and_local_dims():
    assert get_manifold_for_var_type("pose_se3") == "se3"
    assert get_manifold_for_var_type("point3") == "euclidean"
    assert get_manifold_for_var_type("something_new") == "euclidean"
    assert local_dim("se3", jnp.zeros(6)) == 6
    assert local_dim("euclidean", jnp.zeros(4)) == 4


def test_se3_retract_onto_half_turn():
    pose = jnp.array([1.0, 0.0, 0.0, 0.0, 0.0, 3.0])
    delta = jnp.array([0.0, 0.0, 0.0, 0.0, 0.0, jnp.pi - 3.0])

    pose_new = se3_retract_left(pose, delta)

    # a half turn about z; the sign of the rotation vector is arbitrary
    assert jnp.allclose(jnp.abs(pose_new[3:]), jnp.array([0.0, 0.0, jnp.pi]), atol=1e-9)
    assert jnp.allclose(
        so3_exp(pose_new[3:]), so3_exp(jnp.array([0.0, 0.0, jnp.pi])), atol=1e-9
    )
    assert jnp.allclose(pose_new[:3], so3_exp(delta[3:]) @ pose[:3], atol=1e-12)


def test_relative_pose_of_half_turn_yaw():
    a = se3_identity()
    b = jnp.array([0.0, 0.0, 0.0, 0.0, 0.0, jnp.pi - 1e-4])

    xi = relative_pose_se3(a, b)

    assert jnp.allclose(xi, b, atol=1e-9)


def test_se3_retract_jacobian_finite_at_half_turn():
    pose = jnp.array([0.5, -0.2, 0.1, 0.0, 0.0, jnp.pi])
    J = jax.jacfwd(lambda d: se3_retract_left(pose, d))(jnp.zeros(6))
    assert J.shape == (6, 6)
    assert jnp.all(jnp.isfinite(J))
