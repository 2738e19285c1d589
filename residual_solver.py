"""Per-level divergence/curl residuals and the Jacobi correction pass.

Each function below is one "dispatch": it reads its inputs as they stood when
it was called and returns a new array, so no cell ever observes a sibling
cell's output from the same pass.

Discretisation at a level with n cells per axis and cell size h:

  divergence(x, y) = h * (right.x + bottom.y - left.x - top.y)
  div_err(x, y)    = divergence(x, y) - charge(x, y)

  V(x, y)          = vertex at the top-left corner of cell (x, y), 1 <= x, y <= n-1
  curl(V(x, y))    = h * ((top(x, y) - top(x-1, y)) - (left(x, y) - left(x, y-1)))
  curl_err(V)      = curl(V) - magnet(x, y)

The correction is the gather form of "push each residual out through the
cell's four edges with weight 1/4": a cell's own residual plus its left/top
neighbour's (divergence), and the three vertices touching its left/top edges
(curl). Divergence corrections are gradients of the residual and curl
corrections are rotated gradients, so the two passes do not disturb each
other; with omega=1 each pass replaces a residual by the mean of its
neighbours' residuals (Jacobi on the discrete Laplacian).
"""

from __future__ import annotations

from functools import partial
from typing import Tuple

import jax
import jax.numpy as jnp

Array = jnp.ndarray


# -----------------------------------------------------------------------------
# Residuals
# -----------------------------------------------------------------------------

def divergence(field: Array, h: float) -> Array:
    n = field.shape[0] - 1
    fx = field[..., 0]
    fy = field[..., 1]
    left = fx[0:n, 0:n]
    right = fx[1 : n + 1, 0:n]
    top = fy[0:n, 0:n]
    bottom = fy[0:n, 1 : n + 1]
    return (right + bottom - left - top) * h


def divergence_residual(field: Array, charge: Array, h: float) -> Array:
    return divergence(field, h) - charge


def curl(field: Array, h: float) -> Array:
    """Circulation around each interior vertex, shape (n-1, n-1).

    Entry [i, j] belongs to V(i+1, j+1).
    """
    n = field.shape[0] - 1
    fx = field[..., 0]
    fy = field[..., 1]
    top_here = fy[1:n, 1:n]
    top_left = fy[0 : n - 1, 1:n]
    left_here = fx[1:n, 1:n]
    left_up = fx[1:n, 0 : n - 1]
    return ((top_here - top_left) - (left_here - left_up)) * h


def curl_residual(field: Array, magnet: Array, h: float) -> Array:
    n = field.shape[0] - 1
    return curl(field, h) - magnet[1:n, 1:n]


# -----------------------------------------------------------------------------
# Correction
# -----------------------------------------------------------------------------

def _divergence_delta(div_err: Array) -> Tuple[Array, Array]:
    """(e(x,y) - e(x-1,y), e(x,y) - e(x,y-1)) on the (n+1, n+1) edge grid.

    Neighbour terms that fall outside [0, n) are skipped: the residual is
    padded with zeros so those terms drop out of the difference.
    """
    # ex[x+1, y] = e(x, y); rows -1 and n, column n are empty
    ex = jnp.pad(div_err, ((1, 1), (0, 1)))
    dx = ex[1:, :] - ex[:-1, :]
    # ey[x, y+1] = e(x, y)
    ey = jnp.pad(div_err, ((0, 1), (1, 1)))
    dy = ey[:, 1:] - ey[:, :-1]
    return dx, dy


def _curl_delta(curl_err: Array) -> Tuple[Array, Array]:
    """(k(V(x,y)) - k(V(x,y+1)), k(V(x+1,y)) - k(V(x,y))) on the edge grid."""
    n = curl_err.shape[0] + 1
    # kp[x, y] = k(V(x, y)) for 1 <= x, y <= n-1, zero elsewhere; (n+2, n+2)
    kp = jnp.pad(curl_err, ((1, 2), (1, 2)))
    here = kp[0 : n + 1, 0 : n + 1]
    below = kp[0 : n + 1, 1 : n + 2]
    right = kp[1 : n + 2, 0 : n + 1]
    return here - below, right - here


def correct_field(
    field: Array,
    div_err: Array,
    curl_err: Array,
    h: float,
    omega: float = 1.0,
    use_curl: bool = False,
) -> Array:
    """Apply one correction from the residuals; omega scales the divergence term only."""
    dx, dy = _divergence_delta(div_err)
    scale = omega / (4.0 * h)
    delta = jnp.stack([dx, dy], axis=-1) * scale
    if use_curl:
        cx, cy = _curl_delta(curl_err)
        delta = delta + jnp.stack([cx, cy], axis=-1) / (4.0 * h)
    return field + delta.astype(field.dtype)


def solve_pass(
    field: Array,
    charge: Array,
    magnet: Array,
    h: float,
    omega: float = 1.0,
    use_curl: bool = False,
) -> Tuple[Array, Array, Array]:
    """Residual dispatch then correction dispatch; returns (field, div_err, curl_err)."""
    div_err = divergence_residual(field, charge, h)
    if use_curl:
        curl_err = curl_residual(field, magnet, h)
    else:
        n = field.shape[0] - 1
        curl_err = jnp.zeros((max(n - 1, 0),) * 2, dtype=field.dtype)
    field = correct_field(field, div_err, curl_err, h, omega=omega, use_curl=use_curl)
    return field, div_err, curl_err


@partial(jax.jit, static_argnames=("iters", "use_curl"))
def relax(
    field: Array,
    charge: Array,
    magnet: Array,
    h: float,
    iters: int,
    omega: float = 1.0,
    use_curl: bool = False,
) -> Tuple[Array, Array, Array]:
    """Run `iters` solve passes at one level.

    Returns the corrected field and the residuals computed by the last pass
    (i.e. *before* its correction; they are kept for display only).
    """
    n = field.shape[0] - 1
    div0 = jnp.zeros((n, n), dtype=field.dtype)
    curl0 = jnp.zeros((max(n - 1, 0),) * 2, dtype=field.dtype)

    def body(k, carry):
        f, _, _ = carry
        return solve_pass(f, charge, magnet, h, omega=omega, use_curl=use_curl)

    return jax.lax.fori_loop(0, int(iters), body, (field, div0, curl0))
