"""
Tests for forecast skill statistics.
"""

import math

import numpy as np
import pytest
from scipy.stats import norm

from fastlnlp import SkillStats, UndefinedStatisticWarning
from fastlnlp.stats import forecast_stats, skill_stats


class TestSkillStats:

    def test_known_values(self):
        obs = np.array([1.0, 2.0, 3.0, 4.0, 5.0])
        pred = np.array([1.1, 1.9, 3.2, 3.8, 5.1])
        s = skill_stats(obs, pred)

        err = pred - obs
        assert s.num_pred == 5
        assert s.mae == pytest.approx(np.abs(err).mean())
        assert s.rmse == pytest.approx(np.sqrt((err ** 2).mean()))
        assert s.rho == pytest.approx(np.corrcoef(obs, pred)[0, 1])
        assert s.perc is None  # no previous values given

    def test_p_value_from_fisher_z(self):
        rng = np.random.default_rng(1)
        obs = rng.normal(size=30)
        pred = obs + rng.normal(scale=0.8, size=30)
        s = skill_stats(obs, pred)

        expected = norm.sf(math.atanh(s.rho) * math.sqrt(30 - 3))
        assert s.p_val == pytest.approx(expected)

    def test_p_value_undefined_below_four_predictions(self):
        s = skill_stats([1.0, 2.0, 3.0], [1.0, 2.5, 2.9])
        assert s.num_pred == 3
        assert s.rho is not None
        assert s.p_val is None

    def test_rho_invariant_under_affine_rescaling(self):
        rng = np.random.default_rng(2)
        obs = rng.normal(size=40)
        pred = 0.7 * obs + rng.normal(scale=0.5, size=40)

        a, b = 3.5, -12.0
        s1 = skill_stats(obs, pred)
        s2 = skill_stats(a * obs + b, a * pred + b)
        assert s2.rho == pytest.approx(s1.rho)

    def test_percent_correct_sign_with_persistence_plus_drift(self):
        x = np.cumsum(np.random.default_rng(4).uniform(0.1, 1.0, size=25))
        prev = x[:-1]
        obs = x[1:]
        pred = prev + 0.5
        s = skill_stats(obs, pred, prev)
        assert s.perc == 1.0

    def test_constant_series_reports_undefined_rho(self):
        obs = np.full(10, 3.0)
        pred = np.full(10, 3.0)
        with pytest.warns(UndefinedStatisticWarning):
            s = skill_stats(obs, pred)
        assert s.num_pred == 10
        assert s.rho is None
        assert s.p_val is None
        assert s.mae == 0.0
        assert s.rmse == 0.0

    def test_silent_suppresses_warning(self, recwarn):
        skill_stats(np.ones(5), np.ones(5), silent=True)
        assert not [w for w in recwarn if issubclass(w.category, UndefinedStatisticWarning)]

    def test_missing_pairs_are_dropped(self):
        obs = np.array([1.0, np.nan, 3.0, 4.0, 5.0, 6.0])
        pred = np.array([1.0, 2.0, np.nan, 4.0, 5.5, 6.0])
        s = skill_stats(obs, pred)
        assert s.num_pred == 4
        assert s.mae == pytest.approx(0.5 / 4)

    def test_no_pairs(self):
        s = skill_stats([np.nan, 1.0], [2.0, np.nan])
        assert s == SkillStats(num_pred=0)


class TestForecastStats:

    def test_constant_predictor_uses_previous_value(self):
        x = np.array([1.0, 3.0, 2.0, 5.0, 4.0, 6.0, 8.0])
        prev = x[:-1]
        obs = x[1:]
        pred = obs + 0.1

        stats, const = forecast_stats(obs, pred, prev)
        direct = skill_stats(obs, prev, prev)

        assert stats.num_pred == const.num_pred == 6
        assert const.mae == pytest.approx(direct.mae)
        assert const.rmse == pytest.approx(direct.rmse)
        assert const.rho == pytest.approx(np.corrcoef(obs, prev)[0, 1])
        # persistence never predicts a change
        assert const.perc == 0.0
        assert stats.perc == 1.0

    def test_same_query_set_for_both(self):
        obs = np.array([1.0, 2.0, np.nan, 4.0, 5.0])
        pred = np.array([np.nan, 2.0, 3.0, 4.0, 5.0])
        prev = np.array([0.0, 1.0, 2.0, 3.0, 4.0])
        stats, const = forecast_stats(obs, pred, prev)
        assert stats.num_pred == const.num_pred == 3
        assert const.mae == pytest.approx(1.0)
