import numpy as np

import jax.numpy as jnp

import particles as PT


def _field(n, fx=0.0, fy=0.0):
    f = np.zeros((n + 1, n + 1, 2), dtype=np.float32)
    f[..., 0] = fx
    f[..., 1] = fy
    return f


def _positions(particles):
    xs, ys = np.nonzero(np.asarray(particles.occupied))
    return set(zip(xs.tolist(), ys.tolist()))


def test_stochastic_rounding_is_unbiased():
    n = 128
    X, Y = np.meshgrid(np.arange(n), np.arange(n), indexing="ij")
    for m in (0.3, -1.7, 2.25):
        mov = jnp.full((n, n), m, dtype=jnp.float32)
        steps = [np.asarray(PT.stochastic_round(mov, X, Y, t, 0, n)) for t in range(5)]
        s = np.stack(steps)
        assert set(np.unique(s).tolist()) <= {int(np.floor(m)), int(np.floor(m)) + 1}
        assert abs(float(s.mean()) - m) < 0.01


def test_stochastic_rounding_of_whole_numbers_is_exact():
    X, Y = np.meshgrid(np.arange(8), np.arange(8), indexing="ij")
    mov = jnp.asarray(np.tile(np.array([0.0, 1.0, -2.0, 3.0], dtype=np.float32), (8, 2)))
    got = np.asarray(PT.stochastic_round(mov, X, Y, 11, 1, 8))
    np.testing.assert_array_equal(got, np.asarray(mov).astype(np.int32))


def test_count_conserved_without_collisions():
    n = 32
    parts = PT.allocate(n)
    cells = [(x, y) for x in range(2, n - 2, 4) for y in range(2, n - 2, 4)]
    parts = PT.seed_particles(parts, cells)
    field0 = jnp.asarray(_field(n, fx=0.4, fy=-0.6))

    dest_x, dest_y, moved = PT.destinations(parts, field0, 3, 1.0, 1.0)
    occ = np.asarray(parts.occupied)
    expected = {(int(dest_x[x, y]), int(dest_y[x, y])) for x, y in zip(*np.nonzero(occ))}
    assert bool(np.all(np.asarray(moved)[occ]))

    out = PT.advect(parts, field0, 3, 1.0, 1.0)
    assert PT.particle_count(out) == len(cells)
    assert _positions(out) == expected
    # every step is 0 or +1 in x and 0 or -1 in y
    for x, y in cells:
        assert any((x + dx, y + dy) in expected for dx in (0, 1) for dy in (0, -1))
    vel = np.asarray(out.velocity)
    for x, y in _positions(out):
        np.testing.assert_allclose(vel[x, y], [0.4, -0.6], rtol=1e-6)


def test_out_of_range_destination_drops_the_update():
    n = 8
    parts = PT.seed_particles(PT.allocate(n), [(0, 3)])
    f = _field(n)
    f[0, 3, 0] = -1.5
    out = PT.advect(parts, jnp.asarray(f), 0, 1.0, 1.0)
    assert _positions(out) == {(0, 3)}
    np.testing.assert_array_equal(np.asarray(out.velocity)[0, 3], [0.0, 0.0])


def test_staying_particle_keeps_its_kick():
    n = 8
    parts = PT.seed_particles(PT.allocate(n), [(4, 4)])
    f = _field(n)
    f[4, 4, 1] = 0.25
    out = PT.advect(parts, jnp.asarray(f), 0, 0.5, 0.0)  # dt=0: never moves
    assert _positions(out) == {(4, 4)}
    np.testing.assert_allclose(np.asarray(out.velocity)[4, 4], [0.0, 0.125])


def test_collision_lowest_row_major_index_wins():
    n = 8
    parts = PT.seed_particles(PT.allocate(n), [(1, 2), (3, 2)])
    f = _field(n)
    f[1, 2, 0] = 1.0
    f[3, 2, 0] = -1.0
    out = PT.advect(parts, jnp.asarray(f), 0, 1.0, 1.0)
    assert _positions(out) == {(2, 2)}
    np.testing.assert_allclose(np.asarray(out.velocity)[2, 2], [1.0, 0.0])


def test_collision_with_resting_particle():
    n = 8
    # (2, 2) stays put and claims its own cell before (3, 2) arrives
    parts = PT.seed_particles(PT.allocate(n), [(2, 2), (3, 2)])
    f = _field(n)
    f[3, 2, 0] = -1.0
    out = PT.advect(parts, jnp.asarray(f), 0, 1.0, 1.0)
    assert _positions(out) == {(2, 2)}
    np.testing.assert_allclose(np.asarray(out.velocity)[2, 2], [0.0, 0.0])


def test_destinations_stay_inside_grid():
    n = 16
    rng = np.random.default_rng(7)
    parts = PT.allocate(n)
    parts = parts._replace(
        occupied=jnp.asarray(rng.random((n, n)) < 0.5),
        velocity=jnp.asarray(rng.normal(scale=3.0, size=(n, n, 2)).astype(np.float32)),
    )
    field0 = jnp.asarray(rng.normal(scale=5.0, size=(n + 1, n + 1, 2)).astype(np.float32))
    for tick in range(5):
        dest_x, dest_y, _ = PT.destinations(parts, field0, tick, 1.0, 1.0)
        dx, dy = np.asarray(dest_x), np.asarray(dest_y)
        assert dx.min() >= 0 and dx.max() < n
        assert dy.min() >= 0 and dy.max() < n
        before = PT.particle_count(parts)
        parts = PT.advect(parts, field0, tick, 1.0, 1.0)
        assert PT.particle_count(parts) <= before


def test_seed_ignores_out_of_range_cells():
    parts = PT.seed_particles(PT.allocate(4), [(0, 0), (4, 1), (-1, 2), (3, 3)])
    assert _positions(parts) == {(0, 0), (3, 3)}


def test_trail_decays_and_stamps_particles():
    trail = jnp.asarray([[1.0, 0.5], [0.0, 0.2]], dtype=jnp.float32)
    occ = jnp.asarray([[False, False], [True, False]])
    out = np.asarray(PT.decay_trail(trail, occ, 0.5))
    np.testing.assert_allclose(out, [[0.5, 0.25], [1.0, 0.1]])
