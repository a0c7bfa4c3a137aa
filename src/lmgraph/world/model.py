# Copyright (c) 2025.
# This file is part of lmgraph, released under the MIT License.
"""
World-level wrapper around the core factor graph.

`WorldModel` is a thin, typed layer on top of `core.factor_graph.FactorGraph`
for building problems without handling ids by hand:

    • Add variables and factors with automatically assigned ids.
    • Register residual functions.
    • Run Levenberg-Marquardt and write the optimized values back into the
      graph's variables.

Typical use::

    wm = WorldModel()
    p0 = wm.add_pose(jnp.zeros(6), name="start")
    p1 = wm.add_pose(jnp.array([0.9, 0.1, 0, 0, 0, 0]))
    wm.add_factor("prior", (p0,), {"target": jnp.zeros(6)})
    wm.add_factor("odom_se3", (p0, p1), {"measurement": jnp.array([1.0, 0, 0, 0, 0, 0])})
    wm.register_residual("prior", prior_residual)
    wm.register_residual("odom_se3", odom_se3_residual)
    state = wm.optimize(LMParams())
"""

from dataclasses import dataclass
from typing import Dict, Optional

import jax.numpy as jnp

from ..core.factor_graph import FactorGraph, ResidualFn
from ..core.types import Variable, Factor, NodeId, FactorId
from ..optimization.params import LMParams
from ..optimization.solvers import LevenbergMarquardtOptimizer, LMState


@dataclass
class WorldModel:
    """High-level model built on top of :class:`FactorGraph`.

    ``pose_ids`` is an optional name -> NodeId map; it does not affect
    optimization.
    """

    fg: FactorGraph
    pose_ids: Dict[str, NodeId]

    def __init__(self) -> None:
        self.fg = FactorGraph()
        self.pose_ids = {}

    def add_variable(self, var_type: str, value: jnp.ndarray) -> NodeId:
        """
        Allocate a new variable id, create the Variable, add it to the graph,
        and return its NodeId.
        """
        nid = NodeId(len(self.fg.variables))
        self.fg.add_variable(Variable(id=nid, type=var_type, value=jnp.asarray(value)))
        return nid

    def add_pose(self, value: jnp.ndarray, name: Optional[str] = None) -> NodeId:
        """Add an SE(3) pose variable, optionally registered under ``name``.

        :param value: Initial 6D pose ``[tx, ty, tz, wx, wy, wz]``.
        :param name: Optional key in :attr:`pose_ids`.
        :returns: The :class:`NodeId` of the new pose.
        """
        nid = self.add_variable("pose_se3", value)
        if name is not None:
            self.pose_ids[name] = nid
        return nid

    def add_factor(self, f_type: str, var_ids, params: Dict) -> FactorId:
        """
        Allocate a new factor id, create the Factor, add it to the graph,
        and return its FactorId.
        """
        fid = FactorId(len(self.fg.factors))
        node_ids = tuple(NodeId(int(vid)) for vid in var_ids)
        self.fg.add_factor(Factor(id=fid, type=f_type, var_ids=node_ids, params=params))
        return fid

    def register_residual(self, factor_type: str, fn: ResidualFn) -> None:
        self.fg.register_residual(factor_type, fn)

    def optimize(self, params: Optional[LMParams] = None) -> LMState:
        """
        Run Levenberg-Marquardt from the current variable values and write
        the result back into the graph.

        :returns: The final optimizer state.
        """
        optimizer = LevenbergMarquardtOptimizer(self.fg, params=params)
        state = optimizer.optimize()
        for nid, val in state.values.items():
            self.fg.variables[nid].value = val
        return state

    def get_variable_value(self, nid: NodeId) -> jnp.ndarray:
        return self.fg.variables[nid].value

    def error(self) -> float:
        return self.fg.error(self.fg.initial_values())
