# Copyright (c) 2025.
# This file is part of lmgraph, released under the MIT License.

import time

import jax.numpy as jnp

from lmgraph.world.model import WorldModel
from lmgraph.slam.measurements import prior_residual, odom_se3_residual
from lmgraph.optimization.params import LMParams
from lmgraph.optimization.solvers import LevenbergMarquardtOptimizer


def build_se3_chain_world_model(num_poses: int = 10):
    """
    SE3 pose chain backed by a WorldModel:
        pose0 --odom--> pose1 --odom--> ... --odom--> pose_{N-1}
    Prior on pose0, odom edges of +1m in x with a small yaw.
    """
    wm = WorldModel()
    pose_ids = []

    # Initial guesses: perturbed straight line, no rotation
    for i in range(num_poses):
        init_val = jnp.array(
            [
                i + 0.1 * jnp.sin(0.3 * i),  # tx
                0.05 * jnp.cos(0.2 * i),     # ty
                0.0,                         # tz
                0.0,
                0.0,
                0.0,                         # rotation (axis-angle)
            ]
        )
        pose_ids.append(wm.add_pose(init_val))

    wm.add_factor(
        f_type="prior",
        var_ids=(pose_ids[0],),
        params={"target": jnp.zeros(6), "weight": 1.0},
    )

    meas = jnp.array([1.0, 0.0, 0.0, 0.0, 0.0, 0.05])
    for i in range(num_poses - 1):
        wm.add_factor(
            f_type="odom_se3",
            var_ids=(pose_ids[i], pose_ids[i + 1]),
            params={"measurement": meas, "weight": 1.0},
        )

    wm.register_residual("prior", prior_residual)
    wm.register_residual("odom_se3", odom_se3_residual)

    return wm, pose_ids


def run_benchmark(num_poses: int = 50, max_iters: int = 20):
    print("=== SE3 Levenberg-Marquardt Benchmark (WorldModel) ===")
    print(f"num_poses = {num_poses}, max_iters = {max_iters}")

    for elimination in ("SEQUENTIAL", "MULTIFRONTAL"):
        for factorization in ("LDL", "QR"):
            wm, pose_ids = build_se3_chain_world_model(num_poses)
            params = LMParams(
                factorization=factorization,
                elimination=elimination,
                max_iterations=max_iters,
            )
            optimizer = LevenbergMarquardtOptimizer(wm.fg, params=params)

            # Warmup: compiles the per-factor linearizers
            optimizer.iterate(optimizer.initial_state())

            t0 = time.time()
            state = optimizer.optimize()
            t1 = time.time()

            print(
                f"{elimination:>12s}/{factorization:<3s}: {(t1 - t0) * 1000:9.3f} ms, "
                f"iters = {state.iterations}, error = {state.error:.3e}, "
                f"lambda = {state.lambda_:.1e}"
            )
            print(f"    poseN-1 (opt): {state.values[pose_ids[-1]]}")


if __name__ == "__main__":
    run_benchmark(num_poses=50, max_iters=20)
