# Copyright (c) 2025.
# This file is part of lmgraph, released under the MIT License.
"""Levenberg-Marquardt damping of a linear system."""

from __future__ import annotations

import math
from typing import Sequence

import jax.numpy as jnp

from .gaussian import GaussianFactorGraph, JacobianFactor


def build_damped_system(
    linear: GaussianFactorGraph,
    dimensions: Sequence[int],
    lambda_: float,
) -> GaussianFactorGraph:
    """
    Return ``linear`` plus one zero-mean prior per variable.

    Variable ``j`` of dimension ``d`` gets ``I_d * delta_j = 0`` with an
    isotropic noise model of sigma ``1 / sqrt(lambda_)``. Larger lambda
    means a tighter prior and a shorter step. ``linear`` is left untouched.
    """
    if not lambda_ > 0.0:
        raise ValueError(f"lambda must be positive, got {lambda_}")

    sigma = 1.0 / math.sqrt(lambda_)
    priors = [
        JacobianFactor.isotropic(j, jnp.eye(dim), jnp.zeros(dim), sigma)
        for j, dim in enumerate(dimensions)
    ]
    return linear.augmented(priors)
