"""
Tests for the response curve and series helpers.
"""

import numpy as np
import pytest

from amss import budget_periods, hill_transform, pulsed_flighting, seasonal_series


class TestHillTransform:
    """Saturating exposure response."""

    def test_half_saturation(self):
        assert hill_transform(2.0, half_saturation=2.0, slope=3.0) == pytest.approx(0.5)

    def test_bounded_and_increasing(self):
        x = np.linspace(0, 50, 101)
        y = hill_transform(x, half_saturation=5.0, slope=2.0)
        assert y[0] == 0.0
        assert np.all(np.diff(y) > 0)
        assert y.max() < 1.0

    @pytest.mark.parametrize('half_saturation, slope', [(0.0, 1.0), (1.0, 0.0), (-1.0, 1.0)])
    def test_invalid_parameters(self, half_saturation, slope):
        with pytest.raises(ValueError):
            hill_transform(1.0, half_saturation, slope)

    def test_negative_input(self):
        with pytest.raises(ValueError):
            hill_transform(np.array([-1.0]), 1.0, 1.0)


class TestSeriesHelpers:
    """Seasonality, budget-period maps and flighting."""

    def test_seasonal_series(self):
        s = seasonal_series(104, amplitude=0.2, base=100.0)
        assert len(s) == 104
        assert s.min() >= 80.0 - 1e-9
        assert s.max() <= 120.0 + 1e-9
        np.testing.assert_allclose(s[:52], s[52:])

    def test_seasonal_amplitude_range(self):
        with pytest.raises(ValueError):
            seasonal_series(10, amplitude=1.0)

    def test_budget_periods(self):
        np.testing.assert_array_equal(budget_periods(7, 3), [0, 0, 0, 1, 1, 1, 2])

    def test_pulsed_flighting(self):
        np.testing.assert_array_equal(
            pulsed_flighting(7, on_weeks=2, off_weeks=1, weights=[2.0, 1.0]),
            [2, 1, 0, 2, 1, 0, 2]
        )

    def test_pulsed_flighting_bad_weights(self):
        with pytest.raises(ValueError):
            pulsed_flighting(7, on_weeks=2, off_weeks=1, weights=[1.0])
