# Copyright (c) 2025.
# This file is part of lmgraph, released under the MIT License.
"""
Core typed data structures for lmgraph.

This module defines the lightweight container classes shared by the nonlinear
factor graph, the linear solver backend and the Levenberg-Marquardt loop.
They store structure and values only; all numerical work is done by JAX
functions in the graph, linear and optimization layers.

Classes
-------
Variable
    A node in the factor graph:
    - id: Unique identifier
    - type: Variable type key (selects the manifold used for retraction)
    - value: Initial numeric state, a 1-D JAX array

Factor
    A nonlinear constraint between one or more variables:
    - id: Unique identifier
    - type: String key selecting a residual function
    - var_ids: Ordered tuple of variable ids used by the residual
    - params: Dictionary passed into the residual (measurements, weights)

Aliases
-------
Values
    A variable assignment, NodeId -> value. Treated as immutable: every
    update builds a new dictionary.

Ordering
    A fixed total order over variable ids. Position ``j`` in the ordering is
    the integer key used by the linear layer.

VariableDimensions
    Local (tangent) dimension of each variable, in ordering order.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import NewType, Dict, Any, Tuple

import jax.numpy as jnp

NodeId = NewType("NodeId", int)
FactorId = NewType("FactorId", int)

Values = Dict[NodeId, jnp.ndarray]
Ordering = Tuple[NodeId, ...]
VariableDimensions = Tuple[int, ...]


@dataclass
class Variable:
    """Generic optimization variable node in the factor graph."""
    id: NodeId
    type: str          # e.g. "pose_se3", "point3", "scalar"
    value: Any         # 1-D JAX array


@dataclass
class Factor:
    """Nonlinear factor connecting variables."""
    id: FactorId
    type: str          # e.g. "prior", "odom", "range"
    var_ids: tuple[NodeId, ...]
    params: Dict[str, Any]  # Measurement, weight, etc.
