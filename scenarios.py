"""Scripted initial conditions, expressed as pointer strokes.

Each scenario drives the same injection path the interactive host uses, so a
headless run starts from exactly what a user could have drawn.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Callable, Dict, Iterable, Sequence, Tuple

import numpy as np

import injection as I
import particles as PT
import simulation as S


def stroke(
    state: S.SimState,
    cfg: S.SimConfig,
    cells: Iterable[Tuple[int, int]],
    buttons: Sequence[I.Button],
    *,
    radius: int = 0,
) -> S.SimState:
    """Hold `buttons` and drag the cursor over `cells` (no ticks run)."""
    rt = S.make_runtime(cfg)
    rt.buttons = set(buttons)
    cfg_brush = replace(cfg, brush_radius=int(radius))
    for cell in cells:
        rt.cursor = (int(cell[0]), int(cell[1])) if cell is not None else None
        state = S.inject(state, cfg_brush, rt)
    return state


def particle_lattice(state: S.SimState, *, spacing: int, margin: int = 0) -> S.SimState:
    n = int(state.particles.occupied.shape[0])
    s = max(1, int(spacing))
    coords = range(int(margin), n - int(margin), s)
    cells = [(x, y) for x in coords for y in coords]
    return state._replace(particles=PT.seed_particles(state.particles, cells))


def random_particles(state: S.SimState, *, count: int, seed: int = 0) -> S.SimState:
    n = int(state.particles.occupied.shape[0])
    rng = np.random.default_rng(int(seed))
    flat = rng.choice(n * n, size=min(int(count), n * n), replace=False)
    cells = [(int(i % n), int(i // n)) for i in flat]
    return state._replace(particles=PT.seed_particles(state.particles, cells))


def point_charge(cfg: S.SimConfig, *, spacing: int = 8) -> S.SimState:
    n = cfg.grid_size
    state = S.init_state(cfg)
    state = stroke(state, cfg, [(n // 2, n // 2)], [I.Button.RIGHT])
    return particle_lattice(state, spacing=spacing, margin=spacing // 2)


def dipole(cfg: S.SimConfig, *, spacing: int = 8) -> S.SimState:
    n = cfg.grid_size
    r = max(1, n // 32)
    state = S.init_state(cfg)
    state = stroke(state, cfg, [(n // 4, n // 2)], [I.Button.RIGHT], radius=r)
    state = stroke(state, cfg, [(3 * n // 4, n // 2)], [I.Button.LEFT], radius=r)
    return particle_lattice(state, spacing=spacing, margin=spacing // 2)


def vortex(cfg: S.SimConfig, *, spacing: int = 8) -> S.SimState:
    if not cfg.use_curl:
        raise ValueError("vortex scenario needs use_curl=True")
    n = cfg.grid_size
    state = S.init_state(cfg)
    state = stroke(state, cfg, [(n // 2, n // 2)], [I.Button.BACK], radius=max(1, n // 32))
    return particle_lattice(state, spacing=spacing, margin=spacing // 2)


def block_sources(cfg: S.SimConfig, **_) -> S.SimState:
    """Two opposite square charge blocks aligned with the coarsest level; no particles."""
    n = cfg.grid_size
    b = max(1, n >> (cfg.levels - 1))
    state = S.init_state(cfg)
    pos = [(x, y) for x in range(b, 2 * b) for y in range(b, 2 * b)]
    neg = [(x, y) for x in range(n - 2 * b, n - b) for y in range(n - 2 * b, n - b)]
    state = stroke(state, cfg, pos, [I.Button.RIGHT])
    return stroke(state, cfg, neg, [I.Button.LEFT])


def empty(cfg: S.SimConfig, **_) -> S.SimState:
    return S.init_state(cfg)


SCENARIOS: Dict[str, Callable[..., S.SimState]] = {
    "point": point_charge,
    "dipole": dipole,
    "vortex": vortex,
    "blocks": block_sources,
    "empty": empty,
}


def build(name: str, cfg: S.SimConfig, **kw) -> S.SimState:
    try:
        fn = SCENARIOS[name]
    except KeyError:
        raise ValueError(f"unknown scenario {name!r}; choose from {sorted(SCENARIOS)}") from None
    return fn(cfg, **kw)
