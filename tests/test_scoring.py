"""
Prediction Scorer Tests — accuracy, tolerance and result ordering.
"""

import sys
import os
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from physics import EnergySnapshot
from scoring import (
    Metric, ScoreSummary, accuracy, efficiency, evaluate_predictions, is_correct,
    parse_prediction, summarize,
)


def snapshot(total=0.0, loss=0.0):
    return EnergySnapshot(kinetic=0.0, potential=total, total=total, loss=loss)


class TestAccuracy:

    @pytest.mark.parametrize("actual", [10.0, -3.5, 0.001, 182.0])
    def test_exact_guess_is_100(self, actual):
        assert accuracy(actual, actual) == 100.0

    def test_relative_error(self):
        assert accuracy(9.0, 10.0) == pytest.approx(90.0)

    def test_floored_at_zero(self):
        assert accuracy(30.0, 10.0) == 0.0

    def test_zero_actual(self):
        assert accuracy(0.0, 0.0) == 100.0
        assert accuracy(5.0, 0.0) == 0.0


class TestIsCorrect:

    def test_within_tolerance(self):
        assert is_correct(10.0, 10.0)
        assert is_correct(10.5, 10.0)

    def test_outside_tolerance(self):
        assert not is_correct(12.0, 10.0)

    def test_custom_tolerance(self):
        assert is_correct(12.0, 10.0, tolerance_percent=25)

    def test_zero_actual_uses_absolute_band(self):
        assert is_correct(0.05, 0.0)
        assert not is_correct(5.0, 0.0)


class TestParse:

    @pytest.mark.parametrize("raw,expected", [
        ("12.5", 12.5), (" 7 ", 7.0), (3, 3.0), (-0.25, -0.25),
    ])
    def test_numeric(self, raw, expected):
        assert parse_prediction(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "   ", "abc", "nan", "inf", object()])
    def test_skipped(self, raw):
        assert parse_prediction(raw) is None


class TestEvaluate:

    def test_initial_energy_exact(self):
        results = evaluate_predictions({"initial-total-energy": "10"}, 10.0, snapshot(4.0, 6.0))
        assert len(results) == 1
        r = results[0]
        assert r.metric == Metric.INITIAL_TOTAL_ENERGY
        assert r.is_correct
        assert r.accuracy == 100.0

    def test_loss_guess_against_zero_actual(self):
        results = evaluate_predictions({Metric.ENERGY_LOSS: "5"}, 10.0, snapshot(10.0, 0.0))
        assert len(results) == 1
        assert results[0].actual == 0.0
        assert results[0].is_correct is False
        assert results[0].accuracy == 0.0

    def test_fixed_metric_order(self):
        preds = {
            "efficiency": "75",
            "energy-loss": "50",
            "final-total-energy": "150",
            "initial-total-energy": "200",
        }
        results = evaluate_predictions(preds, 200.0, snapshot(150.0, 50.0))
        assert [r.metric for r in results] == list(Metric)
        assert all(r.is_correct for r in results)
        assert results[3].actual == pytest.approx(75.0)

    def test_malformed_and_blank_entries_skipped(self):
        preds = {"initial-total-energy": "abc", "final-total-energy": "",
                 "energy-loss": "2", "bogus-metric": "1"}
        results = evaluate_predictions(preds, 10.0, snapshot(8.0, 2.0))
        assert [r.metric for r in results] == [Metric.ENERGY_LOSS]

    def test_no_predictions(self):
        assert evaluate_predictions({}, 10.0, snapshot()) == []
        assert evaluate_predictions(None, 10.0, snapshot()) == []

    def test_to_dict(self):
        r = evaluate_predictions({"efficiency": 80}, 100.0, snapshot(80.0, 20.0))[0]
        d = r.to_dict()
        assert d["metric"] == "efficiency"
        assert d["label"] == "Efficiency"
        assert d["is_correct"] is True


class TestEfficiency:

    def test_share_of_initial_energy(self):
        assert efficiency(200.0, 50.0) == pytest.approx(75.0)

    def test_zero_initial_energy(self):
        assert efficiency(0.0, 0.0) == 0.0


class TestSummary:

    def test_perfect(self):
        s = ScoreSummary(correct=3, total=3)
        assert s.message.startswith("Perfect predictions")

    def test_none_correct(self):
        assert ScoreSummary(correct=0, total=2).message == "Keep learning!"

    def test_partial(self):
        s = ScoreSummary(correct=1, total=3)
        assert s.percent == pytest.approx(33.333, rel=1e-3)
        assert s.message == "33% correct - Great effort!"

    def test_summarize_counts(self):
        results = evaluate_predictions(
            {"initial-total-energy": "10", "final-total-energy": "99"}, 10.0, snapshot(4.0, 6.0))
        assert summarize(results) == ScoreSummary(correct=1, total=2)
