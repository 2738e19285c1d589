"""Pointer/keyboard editing of sources and particles, plus the host runtime state.

The runtime is ordinary mutable state owned by the outer loop (viewer.py or a
scripted driver). It is passed explicitly into injection and visualisation;
nothing here captures it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Callable, Dict, Optional, Set, Tuple

import jax.numpy as jnp

Array = jnp.ndarray
Cell = Optional[Tuple[int, int]]


class Button(IntEnum):
    # same numbering as matplotlib.backend_bases.MouseButton
    LEFT = 1
    MIDDLE = 2
    RIGHT = 3
    BACK = 8
    FORWARD = 9


class ViewMode(Enum):
    FIELD = "field"
    DIVERGENCE = "divergence"
    CURL = "curl"
    TRAIL = "trail"


_VIEW_ORDER = (ViewMode.FIELD, ViewMode.DIVERGENCE, ViewMode.CURL, ViewMode.TRAIL)


@dataclass
class Runtime:
    levels: int
    cursor: Cell = None
    buttons: Set[Button] = field(default_factory=set)
    tick: int = 0
    level: int = 0
    view: ViewMode = ViewMode.FIELD
    multigrid: bool = True

    def __post_init__(self) -> None:
        if int(self.levels) < 1:
            raise ValueError("levels must be >= 1")
        if not (0 <= int(self.level) < int(self.levels)):
            raise ValueError(f"inspected level {self.level} outside [0, {self.levels})")


# -----------------------------------------------------------------------------
# Pointer -> cell
# -----------------------------------------------------------------------------

def pointer_to_cell(px: float, py: float, cell_pixels: int, grid_size: int) -> Cell:
    """floor(pointer / cell_pixels); None outside the grid."""
    if cell_pixels <= 0:
        raise ValueError("cell_pixels must be > 0")
    if px < 0 or py < 0:
        return None
    x = int(px // cell_pixels)
    y = int(py // cell_pixels)
    if x >= grid_size or y >= grid_size:
        return None
    return (x, y)


def brush_mask(grid_size: int, cell: Cell, radius: int = 0) -> Array:
    """Square neighbourhood of half-width `radius` around `cell`, clipped to the grid."""
    n = int(grid_size)
    if cell is None:
        return jnp.zeros((n, n), dtype=bool)
    cx, cy = cell
    xs = jnp.arange(n)
    X, Y = jnp.meshgrid(xs, xs, indexing="ij")
    r = int(radius)
    return (jnp.abs(X - int(cx)) <= r) & (jnp.abs(Y - int(cy)) <= r)


def paint(values: Array, cell: Cell, value, radius: int = 0) -> Array:
    """Overwrite (not add) `value` under the brush. Invalid cell is a no-op."""
    if cell is None:
        return values
    mask = brush_mask(values.shape[0], cell, radius)
    return jnp.where(mask, jnp.asarray(value, dtype=values.dtype), values)


def apply_pointer(
    runtime: Runtime,
    charge0: Array,
    magnet0: Array,
    occupied: Array,
    velocity: Array,
    *,
    max_charge: float,
    magnet_strength: float,
    use_curl: bool,
    brush_radius: int = 0,
) -> Tuple[Array, Array, Array, Array]:
    """Apply the held buttons at the cursor cell; returns (charge0, magnet0, occupied, velocity)."""
    cell = runtime.cursor
    if cell is None or not runtime.buttons:
        return charge0, magnet0, occupied, velocity
    held = runtime.buttons
    if Button.LEFT in held:
        charge0 = paint(charge0, cell, -float(max_charge), brush_radius)
    if Button.RIGHT in held:
        charge0 = paint(charge0, cell, float(max_charge), brush_radius)
    if use_curl and Button.BACK in held:
        magnet0 = paint(magnet0, cell, float(magnet_strength), brush_radius)
    if use_curl and Button.FORWARD in held:
        magnet0 = paint(magnet0, cell, -float(magnet_strength), brush_radius)
    if Button.MIDDLE in held:
        mask = brush_mask(occupied.shape[0], cell, brush_radius)
        fresh = mask & ~occupied
        occupied = occupied | mask
        velocity = jnp.where(fresh[..., None], 0.0, velocity)
    return charge0, magnet0, occupied, velocity


# -----------------------------------------------------------------------------
# Keys
# -----------------------------------------------------------------------------

def level_up(rt: Runtime) -> None:
    rt.level = (rt.level + 1) % rt.levels


def level_down(rt: Runtime) -> None:
    rt.level = (rt.level - 1) % rt.levels


def cycle_view(rt: Runtime) -> None:
    i = _VIEW_ORDER.index(rt.view)
    rt.view = _VIEW_ORDER[(i + 1) % len(_VIEW_ORDER)]


def toggle_multigrid(rt: Runtime) -> None:
    rt.multigrid = not rt.multigrid


KEY_ACTIONS: Dict[str, Callable[[Runtime], None]] = {
    "up": level_up,
    "down": level_down,
    "v": cycle_view,
    "m": toggle_multigrid,
}


def handle_key(rt: Runtime, key: Optional[str], actions: Optional[Dict[str, Callable[[Runtime], None]]] = None) -> bool:
    """Run the action bound to `key`; returns False for unmapped keys."""
    table = KEY_ACTIONS if actions is None else actions
    fn = table.get(key) if key is not None else None
    if fn is None:
        return False
    fn(rt)
    return True


def check_key_map(actions: Dict[str, Callable[[Runtime], None]]) -> None:
    """Startup validation of a custom key map (integration error -> ValueError)."""
    for key, fn in actions.items():
        if not isinstance(key, str) or not key:
            raise ValueError(f"invalid key binding {key!r}")
        if not callable(fn):
            raise ValueError(f"binding for {key!r} is not callable")
