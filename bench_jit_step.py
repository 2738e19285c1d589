"""Micro-benchmark for one simulation tick.

This script is optional; run it on a GPU build of jax to see the device
timings.

Example:
  python bench_jit_step.py --ng 256 --levels 6 --ticks 50
"""

from __future__ import annotations

import argparse
import time

import jax

import run_sim as RS
import scenarios as SC
import simulation as S


def main() -> None:
    p = argparse.ArgumentParser()
    p.add_argument("--ng", type=int, default=128)
    p.add_argument("--levels", type=int, default=5)
    p.add_argument("--iterations", type=str, default=None, help="default: 8,8 then doubling per level")
    p.add_argument("--ticks", type=int, default=20)
    p.add_argument("--spacing", type=int, default=4)
    p.add_argument("--no-multigrid", action="store_true")
    args = p.parse_args()

    cfg = S.SimConfig(
        grid_size=int(args.ng),
        levels=int(args.levels),
        iterations=RS.parse_iterations(args.iterations) if args.iterations else None,
        multigrid=not bool(args.no_multigrid),
    )
    state = SC.build("dipole", cfg, spacing=int(args.spacing))

    # Compile + warm up
    state = S.step(state, cfg)
    state.pyramid.field[0].block_until_ready()

    t0 = time.perf_counter()
    for _ in range(int(args.ticks)):
        state = S.step(state, cfg)
    state.pyramid.field[0].block_until_ready()
    t1 = time.perf_counter()

    print(f"backend={jax.default_backend()} ng={cfg.grid_size} levels={cfg.levels} ticks={int(args.ticks)}")
    print(f"elapsed_s={t1 - t0:.3f} per_tick_s={(t1 - t0) / max(int(args.ticks), 1):.4f}")


if __name__ == "__main__":
    main()
