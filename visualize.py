"""Colour mapping of solver/particle state, and matplotlib image/animation output.

`colorize` returns an (n, n, 3) RGB array in [x, y] layout for the inspected
level; `to_display` scales it to pixels in image ([row=y, col=x]) layout.

Precedence per cell: particle (white) > nonzero charge (red +, blue -) > view.
A non-finite value in the viewed quantity shows magenta; the solver itself
never checks for it.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Sequence

import numpy as np

import jax.numpy as jnp

from injection import ViewMode
from particles import ParticleState, sample_field
from vcycle import PyramidState

Array = jnp.ndarray

WHITE = np.array([1.0, 1.0, 1.0], dtype=np.float32)
RED = np.array([1.0, 0.0, 0.0], dtype=np.float32)
BLUE = np.array([0.0, 0.0, 1.0], dtype=np.float32)
MAGENTA = np.array([1.0, 0.0, 1.0], dtype=np.float32)


def _block_reduce(a: np.ndarray, factor: int, how: str) -> np.ndarray:
    if factor == 1:
        return a
    n = a.shape[0] // factor
    b = a.reshape(n, factor, n, factor)
    if how == "any":
        return b.any(axis=(1, 3))
    return b.mean(axis=(1, 3))


def _signed_colors(v: np.ndarray, scale: float, pos_rgb, neg_rgb) -> np.ndarray:
    a = np.clip(np.abs(v) / max(float(scale), 1e-12), 0.0, 1.0)[..., None]
    pos = np.asarray(pos_rgb, dtype=np.float32)
    neg = np.asarray(neg_rgb, dtype=np.float32)
    return np.where((v >= 0.0)[..., None], a * pos, a * neg).astype(np.float32)


def colorize(
    pyr: PyramidState,
    particles: ParticleState,
    *,
    level: int,
    view: ViewMode,
    max_charge: float,
    max_field: float,
) -> np.ndarray:
    if not (0 <= int(level) < pyr.levels):
        raise ValueError(f"level {level} outside [0, {pyr.levels})")
    level = int(level)
    n = int(pyr.charge[level].shape[0])
    factor = 2 ** level

    if view is ViewMode.FIELD:
        f = np.asarray(sample_field(pyr.field[level]), dtype=np.float32)
        rgb = np.zeros((n, n, 3), dtype=np.float32)
        rgb[..., 0:2] = np.clip(f / (2.0 * float(max_field)) + 0.5, 0.0, 1.0)
        bad = ~np.all(np.isfinite(f), axis=-1)
    elif view is ViewMode.DIVERGENCE:
        r = np.asarray(pyr.div_err[level], dtype=np.float32)
        rgb = _signed_colors(r, float(max_charge) * factor * factor, (1.0, 0.5, 0.0), (0.0, 0.5, 1.0))
        bad = ~np.isfinite(r)
    elif view is ViewMode.CURL:
        c = np.zeros((n, n), dtype=np.float32)
        if n > 1:
            # vertex V(x, y) is drawn on cell (x, y)
            c[1:, 1:] = np.asarray(pyr.curl_err[level], dtype=np.float32)
        rgb = _signed_colors(c, float(max_charge) * factor * factor, (1.0, 1.0, 0.0), (0.0, 1.0, 1.0))
        bad = ~np.isfinite(c)
    elif view is ViewMode.TRAIL:
        t = _block_reduce(np.asarray(particles.trail, dtype=np.float32), factor, "mean")
        rgb = np.repeat(np.clip(t, 0.0, 1.0)[..., None], 3, axis=-1) * np.float32(0.6)
        bad = ~np.isfinite(t)
    else:
        raise ValueError(f"unknown view {view!r}")

    rgb = np.where(bad[..., None], MAGENTA, rgb)

    if view is not ViewMode.TRAIL:
        q = np.asarray(pyr.charge[level], dtype=np.float32)
        rgb = np.where((q > 0.0)[..., None], RED, rgb)
        rgb = np.where((q < 0.0)[..., None], BLUE, rgb)

    occ = _block_reduce(np.asarray(particles.occupied), factor, "any")
    rgb = np.where(occ[..., None], WHITE, rgb)
    return rgb.astype(np.float32)


def to_display(rgb: np.ndarray, pixels_per_cell: int) -> np.ndarray:
    """[x, y, 3] cell colours -> [row, col, 3] image with square pixel blocks."""
    s = int(pixels_per_cell)
    if s < 1:
        raise ValueError("pixels_per_cell must be >= 1")
    img = np.transpose(rgb, (1, 0, 2))
    return np.repeat(np.repeat(img, s, axis=0), s, axis=1)


def display_frame(
    pyr: PyramidState,
    particles: ParticleState,
    *,
    level: int,
    view: ViewMode,
    scaling: int,
    max_charge: float,
    max_field: float,
) -> np.ndarray:
    """Full-window image: coarser levels use larger cells so every level fills the window."""
    rgb = colorize(pyr, particles, level=level, view=view, max_charge=max_charge, max_field=max_field)
    return to_display(rgb, int(scaling) * 2 ** int(level))


# -----------------------------------------------------------------------------
# File output
# -----------------------------------------------------------------------------

def save_frame_png(image: np.ndarray, out_path: Path) -> None:
    import matplotlib.pyplot as plt

    plt.imsave(out_path, np.clip(image, 0.0, 1.0))


def save_animation_gif(frames: List[Dict], *, out_path: Path, fps: int = 8, title_prefix: str = "") -> None:
    """Frames are dicts with an "image" ([row, col, 3]) and a "tick"."""
    if len(frames) < 2:
        return

    import matplotlib.pyplot as plt
    from matplotlib import animation

    h, w = frames[0]["image"].shape[0:2]
    fig, ax = plt.subplots(figsize=(6.0, 6.0 * h / max(w, 1)))
    ax.set_xticks([])
    ax.set_yticks([])
    im = ax.imshow(np.clip(frames[0]["image"], 0.0, 1.0), interpolation="nearest")

    def update(frame_idx: int):
        fr = frames[frame_idx]
        im.set_data(np.clip(fr["image"], 0.0, 1.0))
        ax.set_title(f"{title_prefix}tick={int(fr['tick'])}")
        return (im,)

    ani = animation.FuncAnimation(fig, update, frames=len(frames), interval=1000 // max(1, int(fps)), blit=False)
    ani.save(out_path, writer=animation.PillowWriter(fps=int(fps)))
    plt.close(fig)


def save_convergence_figure(
    histories: Dict[str, Sequence[float]],
    *,
    out_path: Path,
    title: str,
    ylabel: str = "level-0 divergence residual (rms)",
) -> None:
    import matplotlib.pyplot as plt

    fig, ax = plt.subplots(figsize=(7.0, 4.5))
    for name, hist in histories.items():
        y = np.asarray(hist, dtype=np.float64)
        ax.semilogy(np.arange(1, y.size + 1), np.maximum(y, 1e-30), label=name)
    ax.set_xlabel("tick")
    ax.set_ylabel(ylabel)
    ax.set_title(title)
    ax.legend(frameon=False)
    fig.tight_layout()
    fig.savefig(out_path, dpi=150)
    plt.close(fig)
