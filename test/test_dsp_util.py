import numpy as np
import pytest

from rsa_capture.utils.dsp_util import linspace_freqs, resample_linear, power_to_dbm, DBM_FLOOR


# =========================================================================
# 1. RESAMPLING
# =========================================================================

@pytest.mark.parametrize("n,m", [(2, 1), (2, 5), (801, 1024), (1024, 801), (7, 3), (5, 5)])
def test_resample_output_length(n, m):
    src = np.random.default_rng(0).random(n)
    assert resample_linear(src, m).shape == (m,)


def test_resample_same_length_is_copy():
    src = np.array([1.0, 5.0, -2.0, 7.5])
    out = resample_linear(src, 4)

    np.testing.assert_array_equal(out, src)
    out[0] = 99.0
    assert src[0] == 1.0


def test_resample_single_target_takes_first_sample():
    assert resample_linear([3.0, 4.0, 5.0], 1).tolist() == [3.0]


def test_resample_upsample_midpoints():
    out = resample_linear([0.0, 10.0, 20.0], 5)
    np.testing.assert_allclose(out, [0.0, 5.0, 10.0, 15.0, 20.0])


def test_resample_keeps_endpoints():
    src = np.array([2.0, -1.0, 4.0, 8.0, 3.0])
    out = resample_linear(src, 13)
    assert out[0] == src[0]
    assert out[-1] == src[-1]


def test_resample_values_bracketed_by_neighbours():
    rng = np.random.default_rng(42)
    src = rng.normal(size=37)
    m = 101
    out = resample_linear(src, m)

    pos = np.arange(m) * (src.size - 1) / (m - 1)
    i0 = np.floor(pos).astype(int)
    i1 = np.minimum(i0 + 1, src.size - 1)
    lo = np.minimum(src[i0], src[i1])
    hi = np.maximum(src[i0], src[i1])
    assert np.all(out >= lo - 1e-12)
    assert np.all(out <= hi + 1e-12)


def test_resample_empty_inputs():
    assert resample_linear([], 4).tolist() == [0.0, 0.0, 0.0, 0.0]
    assert resample_linear([1.0, 2.0], 0).size == 0


# =========================================================================
# 2. POWER TO dBm
# =========================================================================

def test_one_milliwatt_is_zero_dbm():
    assert power_to_dbm(0.001) == pytest.approx(0.0, abs=1e-12)
    assert power_to_dbm(1.0) == pytest.approx(30.0)


@pytest.mark.parametrize("watts", [0.0, -1e-3, -5.0])
def test_non_positive_power_is_floor(watts):
    assert power_to_dbm(watts) == DBM_FLOOR == -300.0


def test_power_to_dbm_array_and_monotonic():
    watts = np.array([1e-12, 1e-9, 1e-6, 1e-3, 1.0, 10.0])
    levels = power_to_dbm(watts)

    assert isinstance(levels, np.ndarray)
    assert np.all(np.diff(levels) > 0)
    np.testing.assert_allclose(levels, [-90.0, -60.0, -30.0, 0.0, 30.0, 40.0])


def test_power_to_dbm_mixed_array():
    levels = power_to_dbm([0.0, 1e-3, -1.0])
    assert levels.tolist() == [-300.0, 0.0, -300.0]


# =========================================================================
# 3. FREQUENCY AXIS
# =========================================================================

def test_linspace_freqs_spans_bandwidth():
    freqs = linspace_freqs(100e6, 40e6, 5)
    np.testing.assert_allclose(freqs, [80e6, 90e6, 100e6, 110e6, 120e6])


def test_linspace_freqs_single_point_is_start():
    assert linspace_freqs(100e6, 40e6, 1).tolist() == [80e6]
