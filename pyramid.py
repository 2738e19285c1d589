"""Level hierarchy: source restriction and staggered-field prolongation.

Layout conventions (shared by every module):
  - arrays are indexed [x, y] (axis 0 is x)
  - level L has n = N >> L cells per axis and cell size h = 2**L (level-0 units)
  - scalar sources (charge, magnet) are (n, n)
  - the staggered field is (n+1, n+1, 2): [..., 0] is the value on a cell's
    left edge, [..., 1] on its top edge; the right/bottom edges of cell (x, y)
    are the left/top entries of (x+1, y) / (x, y+1)
"""

from __future__ import annotations

from typing import Tuple

import jax.numpy as jnp

Array = jnp.ndarray


def level_size(grid_size: int, level: int) -> int:
    return int(grid_size) >> int(level)


def cell_size(level: int) -> float:
    """Edge length of a level-`level` cell in level-0 cells."""
    return float(2 ** int(level))


def check_levels(grid_size: int, levels: int) -> None:
    if int(levels) < 1:
        raise ValueError("levels must be >= 1")
    if int(grid_size) < 1:
        raise ValueError("grid_size must be >= 1")
    block = 2 ** (int(levels) - 1)
    if int(grid_size) % block != 0:
        raise ValueError(f"grid_size={grid_size} is not divisible by 2**(levels-1)={block}")


def allocate_sources(grid_size: int, levels: int) -> Tuple[Array, ...]:
    check_levels(grid_size, levels)
    return tuple(
        jnp.zeros((level_size(grid_size, L),) * 2, dtype=jnp.float32) for L in range(int(levels))
    )


def allocate_fields(grid_size: int, levels: int) -> Tuple[Array, ...]:
    check_levels(grid_size, levels)
    return tuple(
        jnp.zeros((level_size(grid_size, L) + 1, level_size(grid_size, L) + 1, 2), dtype=jnp.float32)
        for L in range(int(levels))
    )


def allocate_curl_buffers(grid_size: int, levels: int) -> Tuple[Array, ...]:
    """Curl residuals live on interior vertices: (n-1, n-1) per level."""
    check_levels(grid_size, levels)
    return tuple(
        jnp.zeros((max(level_size(grid_size, L) - 1, 0),) * 2, dtype=jnp.float32) for L in range(int(levels))
    )


# -----------------------------------------------------------------------------
# Restriction (sources)
# -----------------------------------------------------------------------------

def downsample(fine: Array) -> Array:
    """2x2 block *sum* of a fine (2m, 2m) scalar field -> (m, m).

    Summing (not averaging) keeps the total source of a block, so a coarse
    cell carries the same charge as the four fine cells it covers.
    """
    if fine.shape[0] % 2 or fine.shape[1] % 2:
        raise ValueError(f"downsample: odd shape {fine.shape}")
    return fine[0::2, 0::2] + fine[1::2, 0::2] + fine[0::2, 1::2] + fine[1::2, 1::2]


def build_pyramid(level0: Array, levels: int) -> Tuple[Array, ...]:
    """[level0, downsample(level0), ...]; each level built from the previous one."""
    out = [level0]
    for _ in range(1, int(levels)):
        out.append(downsample(out[-1]))
    return tuple(out)


# -----------------------------------------------------------------------------
# Prolongation (staggered field)
# -----------------------------------------------------------------------------

def _upsample1d_linear(a: Array, axis: int) -> Array:
    """Refine one axis of node-aligned data: n -> 2n-1 (copy evens, average odds)."""
    n = a.shape[axis]
    new_n = 2 * n - 1
    new_shape = tuple(a.shape[i] if i != axis else new_n for i in range(a.ndim))
    out = jnp.zeros(new_shape, dtype=a.dtype)

    idx_even = [slice(None)] * a.ndim
    idx_even[axis] = slice(0, new_n, 2)
    out = out.at[tuple(idx_even)].set(a)

    lo = [slice(None)] * a.ndim
    hi = [slice(None)] * a.ndim
    lo[axis] = slice(0, n - 1)
    hi[axis] = slice(1, n)
    a_avg = 0.5 * (a[tuple(lo)] + a[tuple(hi)])
    idx_odd = [slice(None)] * a.ndim
    idx_odd[axis] = slice(1, new_n, 2)
    out = out.at[tuple(idx_odd)].set(a_avg)

    return out


def upsample_field(coarse: Array) -> Array:
    """Prolong a staggered field (m+1, m+1, 2) -> (2m+1, 2m+1, 2).

    Edge values are velocities (not fluxes), so they are copied without
    rescaling; the solver's per-level cell size keeps both levels consistent.
    """
    if coarse.ndim != 3 or coarse.shape[2] != 2 or coarse.shape[0] != coarse.shape[1]:
        raise ValueError(f"upsample_field: expected (m+1, m+1, 2), got {coarse.shape}")
    x = _upsample1d_linear(coarse, axis=0)
    return _upsample1d_linear(x, axis=1)
