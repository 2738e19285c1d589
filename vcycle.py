"""Per-tick multigrid schedule over the level hierarchy.

One tick:
  1) restrict the level-0 sources to every coarser level (2x2 sums)
  2) for level = levels-1 .. 0:
       - multigrid on and not the coarsest level: add the prolonged *change*
         that level+1 went through this tick
       - run that level's fixed number of Jacobi passes

The field is never reset between ticks, so convergence is amortised over
frames at every level. A coarse level that has settled adds nothing to the
finer ones, which then keep relaxing from where they were.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, NamedTuple, Optional, Tuple

import jax.numpy as jnp

import pyramid as P
import residual_solver as R

Array = jnp.ndarray


def default_schedule(levels: int) -> Tuple[int, ...]:
    """Passes per level: 8, 8, then doubling (16, 32, 64, ...)."""
    return tuple(8 if L < 2 else 8 * 2 ** (L - 1) for L in range(int(levels)))


@dataclass(frozen=True)
class SolverParams:
    """Relaxation schedule.

    iterations: Jacobi passes per level (index = level), or a single count used
    at every level; None selects `default_schedule(levels)`.
    omega: over/under-relaxation applied to the divergence correction only.
    """

    levels: int = 5
    iterations: Optional[Tuple[int, ...]] = None
    omega: float = 1.0
    multigrid: bool = True
    use_curl: bool = False

    def __post_init__(self) -> None:
        if int(self.levels) < 1:
            raise ValueError("levels must be >= 1")
        if self.iterations is None:
            its = default_schedule(self.levels)
        else:
            its = tuple(int(k) for k in self.iterations)
        if len(its) not in (1, int(self.levels)):
            raise ValueError(f"iterations must have 1 or {self.levels} entries, got {len(its)}")
        if any(k < 0 for k in its):
            raise ValueError("iteration counts must be >= 0")
        if not (0.0 < float(self.omega) < 2.0):
            raise ValueError("omega must be in (0, 2)")
        object.__setattr__(self, "iterations", its)

    def iters(self, level: int) -> int:
        if len(self.iterations) == 1:
            return self.iterations[0]
        return self.iterations[int(level)]

    def total_iterations(self) -> int:
        return sum(self.iters(L) for L in range(int(self.levels)))


class PyramidState(NamedTuple):
    """All per-level solver buffers (tuples indexed by level)."""

    charge: Tuple[Array, ...]
    magnet: Tuple[Array, ...]
    field: Tuple[Array, ...]
    div_err: Tuple[Array, ...]
    curl_err: Tuple[Array, ...]

    @property
    def levels(self) -> int:
        return len(self.field)

    @property
    def grid_size(self) -> int:
        return int(self.charge[0].shape[0])


def allocate(grid_size: int, levels: int) -> PyramidState:
    return PyramidState(
        charge=P.allocate_sources(grid_size, levels),
        magnet=P.allocate_sources(grid_size, levels),
        field=P.allocate_fields(grid_size, levels),
        div_err=P.allocate_sources(grid_size, levels),
        curl_err=P.allocate_curl_buffers(grid_size, levels),
    )


def with_level0_sources(pyr: PyramidState, charge0: Array, magnet0: Array) -> PyramidState:
    return pyr._replace(
        charge=(charge0,) + tuple(pyr.charge[1:]),
        magnet=(magnet0,) + tuple(pyr.magnet[1:]),
    )


def rebuild_sources(pyr: PyramidState) -> PyramidState:
    return pyr._replace(
        charge=P.build_pyramid(pyr.charge[0], pyr.levels),
        magnet=P.build_pyramid(pyr.magnet[0], pyr.levels),
    )


def v_cycle(pyr: PyramidState, params: SolverParams) -> PyramidState:
    if pyr.levels != int(params.levels):
        raise ValueError(f"pyramid has {pyr.levels} levels, params expect {params.levels}")

    field = list(pyr.field)
    div_err = list(pyr.div_err)
    curl_err = list(pyr.curl_err)
    top = pyr.levels - 1
    for level in range(top, -1, -1):
        if params.multigrid and level < top:
            # prolongation is linear: upsample(new) - upsample(old) == upsample(new - old)
            field[level] = field[level] + P.upsample_field(field[level + 1] - pyr.field[level + 1])
        field[level], div_err[level], curl_err[level] = R.relax(
            field[level],
            pyr.charge[level],
            pyr.magnet[level],
            P.cell_size(level),
            iters=params.iters(level),
            omega=float(params.omega),
            use_curl=bool(params.use_curl),
        )
    return pyr._replace(field=tuple(field), div_err=tuple(div_err), curl_err=tuple(curl_err))


def solve_tick(pyr: PyramidState, params: SolverParams) -> PyramidState:
    return v_cycle(rebuild_sources(pyr), params)


def residual_norms(pyr: PyramidState, *, use_curl: bool = False) -> List[dict]:
    """RMS residuals of the *current* field, per level."""
    out = []
    for level in range(pyr.levels):
        h = P.cell_size(level)
        r = R.divergence_residual(pyr.field[level], pyr.charge[level], h)
        row = {"level": level, "div_rms": float(jnp.sqrt(jnp.mean(r * r)))}
        if use_curl and pyr.curl_err[level].size:
            c = R.curl_residual(pyr.field[level], pyr.magnet[level], h)
            row["curl_rms"] = float(jnp.sqrt(jnp.mean(c * c)))
        out.append(row)
    return out
