"""Simulation configuration and the per-tick pipeline.

Per tick (strictly in this order):
  injection -> source pyramid rebuild -> V-cycle -> particle transport -> trail

State is held in immutable containers that each stage returns replaced;
all buffers are allocated once by `init_state` and keep their shapes.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
import math
from typing import NamedTuple, Optional, Tuple

import jax.numpy as jnp

import injection as I
import particles as PT
import pyramid as P
import vcycle as V

Array = jnp.ndarray


@dataclass(frozen=True)
class SimConfig:
    """Every tunable constant of a run (grid, solver schedule, injection, pacing)."""

    grid_size: int = 128
    scaling: int = 8  # display pixels per level-0 cell

    # solver
    levels: int = 5
    iterations: Optional[Tuple[int, ...]] = None  # None: vcycle.default_schedule(levels)
    omega: float = 1.0
    multigrid: bool = True
    use_curl: bool = False

    # injection / display
    max_charge: float = 5.0
    max_field: float = 5.0
    magnet_strength: float = 5.0
    brush_radius: int = 0

    # particles
    gain: float = 1.0 / 30.0
    dt: float = 1.0  # displacement per tick = velocity * dt (cells)
    trail_decay: float = 0.9

    # pacing
    tick_rate: float = 60.0

    def __post_init__(self) -> None:
        P.check_levels(int(self.grid_size), int(self.levels))
        if int(self.scaling) < 1:
            raise ValueError("scaling must be >= 1")
        if int(self.brush_radius) < 0:
            raise ValueError("brush_radius must be >= 0")
        if not (float(self.tick_rate) > 0.0):
            raise ValueError("tick_rate must be > 0")
        if not (0.0 <= float(self.trail_decay) <= 1.0):
            raise ValueError("trail_decay must be in [0, 1]")
        if not (float(self.max_field) > 0.0) or not (float(self.max_charge) > 0.0):
            raise ValueError("max_field and max_charge must be > 0")
        # validates the schedule and fills in the default one
        object.__setattr__(self, "iterations", self.solver_params().iterations)

    def solver_params(self, *, multigrid: Optional[bool] = None) -> V.SolverParams:
        return V.SolverParams(
            levels=int(self.levels),
            iterations=self.iterations,
            omega=float(self.omega),
            multigrid=bool(self.multigrid if multigrid is None else multigrid),
            use_curl=bool(self.use_curl),
        )

    def with_overrides(self, **kw) -> "SimConfig":
        """`replace` that lets a default schedule follow a change of `levels`."""
        if "levels" in kw and "iterations" not in kw and self.iterations == V.default_schedule(self.levels):
            kw["iterations"] = None
        return replace(self, **kw)


class SimState(NamedTuple):
    pyramid: V.PyramidState
    particles: PT.ParticleState
    tick: int


def init_state(cfg: SimConfig) -> SimState:
    return SimState(
        pyramid=V.allocate(cfg.grid_size, cfg.levels),
        particles=PT.allocate(cfg.grid_size),
        tick=0,
    )


def make_runtime(cfg: SimConfig) -> I.Runtime:
    return I.Runtime(levels=int(cfg.levels), multigrid=bool(cfg.multigrid))


def inject(state: SimState, cfg: SimConfig, runtime: I.Runtime) -> SimState:
    pyr = state.pyramid
    parts = state.particles
    charge0, magnet0, occ, vel = I.apply_pointer(
        runtime,
        pyr.charge[0],
        pyr.magnet[0],
        parts.occupied,
        parts.velocity,
        max_charge=cfg.max_charge,
        magnet_strength=cfg.magnet_strength,
        use_curl=cfg.use_curl,
        brush_radius=cfg.brush_radius,
    )
    return state._replace(
        pyramid=V.with_level0_sources(pyr, charge0, magnet0),
        particles=parts._replace(occupied=occ, velocity=vel),
    )


def step(state: SimState, cfg: SimConfig, runtime: Optional[I.Runtime] = None) -> SimState:
    """Advance one tick. `runtime` (if given) supplies pointer edits and the multigrid toggle."""
    multigrid = cfg.multigrid
    if runtime is not None:
        state = inject(state, cfg, runtime)
        multigrid = runtime.multigrid

    pyr = V.solve_tick(state.pyramid, cfg.solver_params(multigrid=multigrid))

    parts = PT.advect(state.particles, pyr.field[0], state.tick, cfg.gain, cfg.dt)
    parts = parts._replace(trail=PT.decay_trail(parts.trail, parts.occupied, cfg.trail_decay))

    tick = state.tick + 1
    if runtime is not None:
        runtime.tick = tick
    return SimState(pyramid=pyr, particles=parts, tick=tick)


def run_ticks(state: SimState, cfg: SimConfig, ticks: int, runtime: Optional[I.Runtime] = None) -> SimState:
    for _ in range(int(ticks)):
        state = step(state, cfg, runtime)
    return state


class TickClock:
    """Fixed-rate accumulator: tick k may start once wall time passes k / rate.

    `due(elapsed)` returns how many ticks the host must run (sequentially,
    none skipped or merged) before its next redraw.
    """

    def __init__(self, rate: float) -> None:
        if not (float(rate) > 0.0):
            raise ValueError("rate must be > 0")
        self.dt = 1.0 / float(rate)
        self.ticks = 0

    def due(self, elapsed: float) -> int:
        # ticks whose start time k*dt lies strictly before `elapsed`
        target = max(0, math.ceil(float(elapsed) / self.dt))
        n = max(0, target - self.ticks)
        self.ticks += n
        return n
