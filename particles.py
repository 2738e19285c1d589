"""Single-occupancy particle transport on the level-0 grid.

Each occupied cell holds one particle with a velocity. Per tick the velocity
is kicked by the solved field, the resulting displacement is stochastically
rounded to whole cells, and the particle is moved by a scatter to its
destination cell.

Collisions: every particle claims a destination (its own cell when it does
not move). When several particles claim the same cell, the one with the
lowest row-major source index (y * N + x) wins and the others are removed.
The result is therefore independent of evaluation order.
"""

from __future__ import annotations

from typing import Iterable, NamedTuple, Tuple

import jax
import jax.numpy as jnp

from prng import rand_f32

Array = jnp.ndarray


class ParticleState(NamedTuple):
    occupied: Array  # (N, N) bool
    velocity: Array  # (N, N, 2) float32, meaningful only where occupied
    trail: Array  # (N, N) float32, cosmetic


def allocate(grid_size: int) -> ParticleState:
    n = int(grid_size)
    return ParticleState(
        occupied=jnp.zeros((n, n), dtype=bool),
        velocity=jnp.zeros((n, n, 2), dtype=jnp.float32),
        trail=jnp.zeros((n, n), dtype=jnp.float32),
    )


def particle_count(particles: ParticleState) -> int:
    return int(jnp.sum(particles.occupied))


def seed_particles(particles: ParticleState, cells: Iterable[Tuple[int, int]]) -> ParticleState:
    """Occupy the given (x, y) cells with particles at rest; out-of-range cells are ignored."""
    n = particles.occupied.shape[0]
    occ = particles.occupied
    vel = particles.velocity
    for x, y in cells:
        if 0 <= int(x) < n and 0 <= int(y) < n:
            occ = occ.at[int(x), int(y)].set(True)
            vel = vel.at[int(x), int(y)].set(0.0)
    return particles._replace(occupied=occ, velocity=vel)


def stochastic_round(movement: Array, x: Array, y: Array, tick, channel: int, grid_size: int) -> Array:
    """Signed whole-cell step with E[step] == movement.

    floor(|m|) plus one more cell with probability frac(|m|), decided by the
    cell/tick/channel hash.
    """
    sign = jnp.where(movement > 0.0, 1, -1).astype(jnp.int32)
    mag = jnp.abs(movement)
    whole = jnp.floor(mag)
    frac = mag - whole
    up = (rand_f32(x, y, tick, channel, grid_size) < frac).astype(jnp.int32)
    return (whole.astype(jnp.int32) + up) * sign


def sample_field(field0: Array) -> Array:
    """Per-cell field vector (left-edge x, top-edge y) from the level-0 staggered field."""
    n = field0.shape[0] - 1
    return field0[0:n, 0:n, :]


def _claims(particles: ParticleState, field0: Array, tick, gain, dt):
    occ = particles.occupied
    vel = particles.velocity
    n = occ.shape[0]

    xs = jnp.arange(n, dtype=jnp.int32)
    X, Y = jnp.meshgrid(xs, xs, indexing="ij")

    vel_new = vel + sample_field(field0) * gain
    movement = vel_new * dt
    tx = X + stochastic_round(movement[..., 0], X, Y, tick, 0, n)
    ty = Y + stochastic_round(movement[..., 1], X, Y, tick, 1, n)
    inside = (tx >= 0) & (tx < n) & (ty >= 0) & (ty < n)
    # "moves" includes target == pos: the particle stays but takes the kick
    moves = occ & inside
    dest_x = jnp.where(moves, tx, X)
    dest_y = jnp.where(moves, ty, Y)
    vel_keep = jnp.where(moves[..., None], vel_new, vel)
    return X, Y, dest_x, dest_y, moves, vel_keep


def destinations(particles: ParticleState, field0: Array, tick, gain: float, dt: float) -> Tuple[Array, Array, Array]:
    """(dest_x, dest_y, updated) claimed by each cell this tick, before collisions."""
    _, _, dest_x, dest_y, moves, _ = _claims(particles, field0, tick, gain, dt)
    return dest_x, dest_y, moves


@jax.jit
def advect(particles: ParticleState, field0: Array, tick, gain: float, dt: float) -> ParticleState:
    """Move every particle one tick through the level-0 field.

    A particle whose destination leaves the grid does not move and keeps its
    old velocity (the whole update is dropped).
    """
    occ = particles.occupied
    vel = particles.velocity
    n = occ.shape[0]
    X, Y, dest_x, dest_y, _, vel_keep = _claims(particles, field0, tick, gain, dt)

    # Claims: destination slot <- lowest source priority. Empty cells claim the
    # out-of-range slot n*n, which mode="drop" discards.
    empty_slot = n * n
    priority = Y * n + X
    dest_slot = jnp.where(occ, dest_y * n + dest_x, empty_slot)
    winner = jnp.full((n * n,), empty_slot, dtype=jnp.int32)
    winner = winner.at[dest_slot.ravel()].min(priority.ravel(), mode="drop")

    # back to [x, y] layout: slot = y*n + x
    winner = winner.reshape((n, n)).T
    new_occ = winner < empty_slot
    src = jnp.clip(winner, 0, empty_slot - 1)
    src_x = src % n
    src_y = src // n
    carried = vel_keep[src_x, src_y]
    new_vel = jnp.where(new_occ[..., None], carried, vel)
    return particles._replace(occupied=new_occ, velocity=new_vel)


def decay_trail(trail: Array, occupied: Array, decay: float) -> Array:
    """Fade the trail and stamp the current particle positions at full brightness."""
    return jnp.maximum(trail * decay, occupied.astype(trail.dtype))
