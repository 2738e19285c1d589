import numpy as np

import jax.numpy as jnp

import residual_solver as R


def _zero_field(n):
    return jnp.zeros((n + 1, n + 1, 2), dtype=jnp.float32)


def _rms(a):
    a = np.asarray(a, dtype=np.float64)
    return float(np.sqrt(np.mean(a * a)))


def test_divergence_of_uniform_field_is_zero():
    f = jnp.ones((5, 5, 2), dtype=jnp.float32)
    np.testing.assert_allclose(np.asarray(R.divergence(f, 1.0)), 0.0)
    np.testing.assert_allclose(np.asarray(R.curl(f, 1.0)), 0.0)


def test_divergence_counts_outflow_through_all_four_edges():
    f = np.zeros((4, 4, 2), dtype=np.float32)
    f[2, 1, 0] = 1.0  # right edge of (1, 1)
    f[1, 1, 1] = -2.0  # top edge of (1, 1)
    d = np.asarray(R.divergence(jnp.asarray(f), 1.0))
    assert d[1, 1] == 3.0
    assert d[2, 1] == -1.0  # same edge is the left edge of (2, 1)
    assert d[1, 0] == -2.0  # and the bottom edge of (1, 0)
    np.testing.assert_allclose(np.asarray(R.divergence(jnp.asarray(f), 4.0)), 4.0 * d)


def test_curl_residual_shape_and_sign():
    n = 4
    f = np.zeros((n + 1, n + 1, 2), dtype=np.float32)
    f[2, 2, 1] = 1.0  # top edge of cell (2, 2)
    c = np.asarray(R.curl(jnp.asarray(f), 1.0))
    assert c.shape == (n - 1, n - 1)
    # V(2, 2) sees it as top(x, y), V(3, 2) as top(x-1, y)
    assert c[1, 1] == 1.0
    assert c[2, 1] == -1.0
    magnet = jnp.zeros((n, n)).at[2, 2].set(1.0)
    np.testing.assert_allclose(np.asarray(R.curl_residual(jnp.asarray(f), magnet, 1.0))[1, 1], 0.0)


def test_single_charge_4x4_converges_with_outward_flux():
    n = 4
    charge = jnp.zeros((n, n), dtype=jnp.float32).at[1, 1].set(1.0)
    magnet = jnp.zeros((n, n), dtype=jnp.float32)
    field, _, _ = R.relax(_zero_field(n), charge, magnet, 1.0, iters=50)

    r = np.asarray(R.divergence_residual(field, charge, 1.0))
    assert abs(r[1, 1]) < 1e-3

    f = np.asarray(field)
    # mirror through the diagonal that contains the injection point
    np.testing.assert_allclose(f[..., 0], f[..., 1].T, atol=1e-6)
    # flux leaves the charged cell on every side
    assert f[2, 1, 0] > 0.0 > f[1, 1, 0]
    assert f[1, 2, 1] > 0.0 > f[1, 1, 1]


def test_centred_charge_field_is_mirror_symmetric():
    n = 5
    charge = jnp.zeros((n, n), dtype=jnp.float32).at[2, 2].set(1.0)
    magnet = jnp.zeros((n, n), dtype=jnp.float32)
    field, _, _ = R.relax(_zero_field(n), charge, magnet, 1.0, iters=50)
    f = np.asarray(field)
    fx, fy = f[..., 0], f[..., 1]

    # left/right mirror: left edge x <-> left edge n-x, sign flipped
    np.testing.assert_allclose(fx, -fx[::-1, :], atol=1e-6)
    np.testing.assert_allclose(fy[0:n, :], fy[0:n, :][::-1, :], atol=1e-6)
    # top/bottom mirror
    np.testing.assert_allclose(fy, -fy[:, ::-1], atol=1e-6)
    np.testing.assert_allclose(fx[:, 0:n], fx[:, 0:n][:, ::-1], atol=1e-6)

    assert abs(np.asarray(R.divergence_residual(field, charge, 1.0))[2, 2]) < 1e-3


def test_each_pass_shrinks_the_residual():
    rng = np.random.default_rng(3)
    n = 16
    charge = jnp.asarray(rng.normal(size=(n, n)).astype(np.float32))
    magnet = jnp.zeros((n, n), dtype=jnp.float32)
    field = _zero_field(n)
    prev = _rms(R.divergence_residual(field, charge, 1.0))
    for _ in range(10):
        field, _, _ = R.solve_pass(field, charge, magnet, 1.0)
        cur = _rms(R.divergence_residual(field, charge, 1.0))
        assert cur < prev
        prev = cur


def test_relax_reports_residual_before_last_correction():
    n = 4
    charge = jnp.zeros((n, n), dtype=jnp.float32).at[0, 3].set(2.0)
    magnet = jnp.zeros((n, n), dtype=jnp.float32)
    field, div_err, curl_err = R.relax(_zero_field(n), charge, magnet, 1.0, iters=1)
    np.testing.assert_allclose(np.asarray(div_err), -np.asarray(charge))
    assert curl_err.shape == (n - 1, n - 1)
    assert float(jnp.abs(field).sum()) > 0.0


def test_divergence_correction_adds_no_curl():
    rng = np.random.default_rng(4)
    n = 8
    charge = jnp.asarray(rng.normal(size=(n, n)).astype(np.float32))
    magnet = jnp.zeros((n, n), dtype=jnp.float32)
    f_plain, _, _ = R.relax(_zero_field(n), charge, magnet, 1.0, iters=20)
    f_curl, _, _ = R.relax(_zero_field(n), charge, magnet, 1.0, iters=20, use_curl=True)
    np.testing.assert_allclose(np.asarray(R.curl(f_plain, 1.0)), 0.0, atol=1e-5)
    np.testing.assert_allclose(np.asarray(f_plain), np.asarray(f_curl), atol=1e-5)


def test_curl_correction_adds_no_divergence_and_converges():
    n = 8
    charge = jnp.zeros((n, n), dtype=jnp.float32)
    magnet = jnp.zeros((n, n), dtype=jnp.float32).at[4, 4].set(5.0)
    field, _, _ = R.relax(_zero_field(n), charge, magnet, 1.0, iters=200, use_curl=True)
    np.testing.assert_allclose(np.asarray(R.divergence(field, 1.0)), 0.0, atol=1e-5)
    before = _rms(R.curl_residual(_zero_field(n), magnet, 1.0))
    after = _rms(R.curl_residual(field, magnet, 1.0))
    assert after < 1e-3 * before


def test_omega_scales_only_the_divergence_term():
    n = 6
    rng = np.random.default_rng(5)
    field = _zero_field(n)
    div_err = jnp.asarray(rng.normal(size=(n, n)).astype(np.float32))
    curl_err = jnp.asarray(rng.normal(size=(n - 1, n - 1)).astype(np.float32))
    zero_div = jnp.zeros_like(div_err)
    zero_curl = jnp.zeros_like(curl_err)

    a = R.correct_field(field, zero_div, curl_err, 1.0, omega=1.0, use_curl=True)
    b = R.correct_field(field, zero_div, curl_err, 1.0, omega=0.5, use_curl=True)
    np.testing.assert_allclose(np.asarray(a), np.asarray(b))

    c = R.correct_field(field, div_err, zero_curl, 1.0, omega=1.0)
    d = R.correct_field(field, div_err, zero_curl, 1.0, omega=0.5)
    np.testing.assert_allclose(np.asarray(d), 0.5 * np.asarray(c), rtol=1e-6, atol=1e-7)


def test_coarse_cell_size_scales_correction():
    n = 4
    div_err = jnp.zeros((n, n), dtype=jnp.float32).at[1, 1].set(-4.0)
    curl_err = jnp.zeros((n - 1, n - 1), dtype=jnp.float32)
    f1 = np.asarray(R.correct_field(_zero_field(n), div_err, curl_err, 1.0))
    f4 = np.asarray(R.correct_field(_zero_field(n), div_err, curl_err, 4.0))
    np.testing.assert_allclose(f4, f1 / 4.0)
    assert f1[1, 1, 0] == -1.0 and f1[2, 1, 0] == 1.0
