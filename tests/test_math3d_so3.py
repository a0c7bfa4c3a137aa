import jax
import jax.numpy as jnp
import pytest

from lmgraph.core.math3d import so3_exp, so3_log, hat, vee


def test_so3_log_exp_roundtrip_small_angle():
    w = jnp.array([0.1, -0.05, 0.02])
    R = so3_exp(w)
    w_est = so3_log(R)
    assert jnp.all(jnp.isfinite(w_est))
    assert jnp.allclose(w_est, w, atol=1e-8)


def test_so3_log_no_nan_for_identity():
    R = jnp.eye(3)
    w = so3_log(R)
    assert jnp.all(jnp.isfinite(w))
    assert jnp.linalg.norm(w) < 1e-12


def test_hat_vee_inverse():
    v = jnp.array([0.3, -1.2, 2.0])
    assert jnp.allclose(vee(hat(v)), v)


def test_so3_exp_jacobian_finite_at_zero():
    J = jax.jacfwd(so3_exp)(jnp.zeros(3))
    assert J.shape == (3, 3, 3)
    assert jnp.all(jnp.isfinite(J))


def test_so3_log_exp_roundtrip_near_half_turn():
    axis = jnp.array([1.0, 2.0, 2.0]) / 3.0
    w = (jnp.pi - 1e-3) * axis
    w_est = so3_log(so3_exp(w))
    assert jnp.all(jnp.isfinite(w_est))
    assert jnp.allclose(w_est, w, atol=1e-9)


def test_so3_log_exact_half_turn_keeps_axis():
    """At theta = pi, w and -w are the same rotation; either is accepted."""
    axis = jnp.array([1.0, 2.0, 2.0]) / 3.0
    R = so3_exp(jnp.pi * axis)
    w_est = so3_log(R)

    assert jnp.linalg.norm(w_est) == pytest.approx(jnp.pi, abs=1e-9)
    assert abs(float(jnp.dot(w_est / jnp.linalg.norm(w_est), axis))) == pytest.approx(1.0, abs=1e-9)
    assert jnp.allclose(so3_exp(w_est), R, atol=1e-9)


def test_so3_log_general_branch_unchanged():
    w = jnp.array([0.4, -1.1, 0.9])
    assert jnp.allclose(so3_log(so3_exp(w)), w, atol=1e-10)
