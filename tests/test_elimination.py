from __future__ import annotations

import jax.numpy as jnp
import pytest

from lmgraph.linear.damping import build_damped_system
from lmgraph.linear.elimination import (
    MultifrontalSolver,
    NumericalFailure,
    SequentialSolver,
    Solution,
    hessian_to_jacobian,
    make_solver,
)
from lmgraph.linear.gaussian import GaussianFactorGraph, HessianFactor, JacobianFactor
from lmgraph.optimization.params import (
    ConfigurationError,
    Elimination,
    Factorization,
    LMParams,
)

SOLVERS = [
    SequentialSolver(Factorization.LDL),
    SequentialSolver(Factorization.QR),
    MultifrontalSolver(Factorization.LDL),
    MultifrontalSolver(Factorization.QR),
]


def _chain_plus_island() -> GaussianFactorGraph:
    """
    Variables 0 (dim 2) - 1 (dim 1) - 2 (dim 3) form a chain; variable 3
    (dim 1) is its own component.
    """
    return GaussianFactorGraph([
        JacobianFactor(keys=(0,), blocks=(jnp.array([[2.0, 0.0], [0.5, 1.0]]),), b=jnp.array([1.0, -1.0])),
        JacobianFactor(
            keys=(0, 1),
            blocks=(jnp.array([[1.0, -1.0]]), jnp.array([[3.0]])),
            b=jnp.array([0.5]),
        ),
        JacobianFactor(
            keys=(1, 2),
            blocks=(jnp.array([[1.0], [0.0], [2.0]]), jnp.array([[1.0, 0.0, 0.0], [0.0, 2.0, 0.0], [0.0, 1.0, 1.0]])),
            b=jnp.array([1.0, 2.0, 3.0]),
        ),
        JacobianFactor(keys=(2,), blocks=(jnp.eye(3),), b=jnp.array([0.0, 1.0, 0.0])),
        JacobianFactor(keys=(3,), blocks=(jnp.array([[4.0]]),), b=jnp.array([2.0])),
    ])


def _dense_solution(graph: GaussianFactorGraph) -> jnp.ndarray:
    keys = graph.keys()
    G, g = graph.hessian(keys)
    return jnp.linalg.solve(G, g)


def _flatten(delta) -> jnp.ndarray:
    return jnp.concatenate([delta[j] for j in sorted(delta)])


@pytest.mark.parametrize("solver", SOLVERS, ids=lambda s: f"{type(s).__name__}-{s.factorization.name}")
def test_solvers_match_dense_normal_equations(solver):
    graph = _chain_plus_island()
    result = solver.solve(graph)

    assert isinstance(result, Solution)
    assert sorted(result.delta) == [0, 1, 2, 3]
    assert result.delta[2].shape == (3,)
    assert jnp.allclose(_flatten(result.delta), _dense_solution(graph), atol=1e-9)


@pytest.mark.parametrize("solver", SOLVERS, ids=lambda s: f"{type(s).__name__}-{s.factorization.name}")
def test_solvers_handle_positive_definite_hessian_factors(solver):
    graph = _chain_plus_island()
    graph.add(HessianFactor(
        keys=(1, 3),
        key_dims=(1, 1),
        info=jnp.array([[2.0, 0.5], [0.5, 1.0]]),
        linear=jnp.array([1.0, -1.0]),
    ))

    result = solver.solve(graph)

    assert isinstance(result, Solution)
    assert jnp.allclose(_flatten(result.delta), _dense_solution(graph), atol=1e-9)


@pytest.mark.parametrize("solver", SOLVERS, ids=lambda s: f"{type(s).__name__}-{s.factorization.name}")
def test_indefinite_system_is_reported_not_raised(solver):
    graph = GaussianFactorGraph([
        HessianFactor(keys=(0,), key_dims=(1,), info=jnp.array([[-1.0]]), linear=jnp.array([1.0])),
    ])

    result = solver.solve(graph)

    assert isinstance(result, NumericalFailure)
    assert result.key == 0


def test_damping_makes_indefinite_hessian_solvable_with_ldl():
    """
    G = -1 is indefinite; the damped frontal block is -1 + lambda, which
    only becomes positive-definite once lambda > 1.
    """
    graph = GaussianFactorGraph([
        HessianFactor(keys=(0,), key_dims=(1,), info=jnp.array([[-1.0]]), linear=jnp.array([1.0])),
    ])
    solver = SequentialSolver(Factorization.LDL)

    assert isinstance(solver.solve(build_damped_system(graph, (1,), 0.5)), NumericalFailure)
    assert isinstance(solver.solve(build_damped_system(graph, (1,), 1.0)), NumericalFailure)

    result = solver.solve(build_damped_system(graph, (1,), 5.0))
    assert isinstance(result, Solution)
    assert float(result.delta[0][0]) == pytest.approx(1.0 / 4.0)


def test_qr_reports_underdetermined_front():
    graph = GaussianFactorGraph([
        JacobianFactor(keys=(0,), blocks=(jnp.array([[1.0, 1.0]]),), b=jnp.array([1.0])),
    ])

    assert isinstance(SequentialSolver(Factorization.QR).solve(graph), NumericalFailure)
    assert isinstance(SequentialSolver(Factorization.LDL).solve(graph), NumericalFailure)


def test_hessian_to_jacobian_roundtrip():
    f = HessianFactor(
        keys=(0, 1),
        key_dims=(1, 1),
        info=jnp.array([[4.0, 2.0], [2.0, 3.0]]),
        linear=jnp.array([1.0, 2.0]),
    )
    jf = hessian_to_jacobian(f)

    A = jnp.concatenate(jf.blocks, axis=1)
    assert jnp.allclose(A.T @ A, f.info)
    assert jnp.allclose(A.T @ jf.b, f.linear)


def test_multifrontal_fronts_are_connected_components():
    fronts = MultifrontalSolver().fronts(_chain_plus_island())
    assert fronts == [(0, 1, 2), (3,)]


def test_multifrontal_groups_across_non_adjacent_keys():
    """A ternary factor and a long-range link join keys that are not neighbours."""
    graph = GaussianFactorGraph([
        JacobianFactor(
            keys=(0, 4, 2),
            blocks=(jnp.eye(1), jnp.eye(1), jnp.eye(1)),
            b=jnp.array([1.0]),
        ),
        JacobianFactor(keys=(5, 1), blocks=(jnp.eye(1), -jnp.eye(1)), b=jnp.array([0.0])),
        JacobianFactor.isotropic(3, jnp.eye(1), jnp.array([2.0]), 1.0),
    ])

    assert MultifrontalSolver().fronts(graph) == [(0, 2, 4), (1, 5), (3,)]


def test_sequential_fronts_follow_ordering():
    fronts = SequentialSolver().fronts(_chain_plus_island())
    assert fronts == [(0,), (1,), (2,), (3,)]


def test_make_solver_selects_backend():
    seq = make_solver(LMParams(elimination="sequential", factorization="qr"))
    multi = make_solver(LMParams(elimination=Elimination.MULTIFRONTAL))

    assert isinstance(seq, SequentialSolver)
    assert seq.factorization is Factorization.QR
    assert isinstance(multi, MultifrontalSolver)
    assert multi.factorization is Factorization.LDL


def test_invalid_factorization_is_configuration_error():
    with pytest.raises(ConfigurationError):
        SequentialSolver("cholmod")
