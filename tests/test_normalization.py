"""
Tests for microarray_toolkit.normalization module
"""

import numpy as np
import pandas as pd
import pytest

from microarray_toolkit.normalization import (
    get_normalization_characteristics,
    is_normalization_log_transformed,
    estimate_background_parameters,
    rma_background_correct,
    quantile_normalize,
    log_transform,
    median_polish,
    summarize_probesets,
    calculate_normalization_stats,
    rma,
)


class TestNormalizationCharacteristics:
    """Which methods leave data on the log scale"""

    def test_log_scale_methods(self):
        assert is_normalization_log_transformed("rma") is True
        assert is_normalization_log_transformed("RMA") is True
        assert is_normalization_log_transformed("log2") is True
        assert is_normalization_log_transformed("quantile") is False

    def test_unknown_method(self):
        assert is_normalization_log_transformed("mystery") is False

    def test_descriptions_present(self):
        for info in get_normalization_characteristics().values():
            assert "description" in info


class TestBackgroundCorrection:
    """RMA convolution background correction"""

    def test_parameters_positive(self, probe_data):
        params = estimate_background_parameters(probe_data["low10-1"].to_numpy())

        assert params["sigma"] > 0
        assert params["alpha"] > 0
        assert params["mu"] < np.median(probe_data["low10-1"])

    def test_corrected_values_positive(self, probe_data):
        corrected = rma_background_correct(probe_data)

        assert corrected.shape == probe_data.shape
        assert (corrected.to_numpy() > 0).all()

    def test_correction_preserves_order(self, probe_data):
        """The conditional expectation is increasing in the observed intensity"""
        corrected = rma_background_correct(probe_data)

        for sample in probe_data.columns:
            order = np.argsort(probe_data[sample].to_numpy(), kind="mergesort")
            ranked = corrected[sample].to_numpy()[order]
            assert np.all(np.diff(ranked) >= -1e-9)

    def test_correction_lowers_intensities(self, probe_data):
        corrected = rma_background_correct(probe_data)
        assert (corrected.median() < probe_data.median()).all()


class TestQuantileNormalization:
    """Test quantile normalization"""

    def test_identical_distributions(self):
        data = pd.DataFrame(
            {"a": [5.0, 2.0, 3.0, 4.0], "b": [4.0, 1.0, 4.5, 2.0], "c": [3.0, 4.0, 6.0, 8.0]}
        )
        normalized = quantile_normalize(data)

        sorted_columns = np.sort(normalized.to_numpy(), axis=0)
        assert np.allclose(sorted_columns, sorted_columns[:, [0]])

    def test_quantile_means(self):
        data = pd.DataFrame({"a": [5.0, 2.0, 3.0, 4.0], "b": [4.0, 1.0, 4.5, 2.0]})
        normalized = quantile_normalize(data)

        # Smallest values of each array become mean(2, 1) = 1.5
        assert normalized.loc[1, "a"] == pytest.approx(1.5)
        assert normalized.loc[1, "b"] == pytest.approx(1.5)
        # Largest become mean(5, 4.5)
        assert normalized.loc[0, "a"] == pytest.approx(4.75)
        assert normalized.loc[2, "b"] == pytest.approx(4.75)

    def test_ranks_preserved(self, probe_data):
        normalized = quantile_normalize(probe_data)
        for sample in probe_data.columns:
            assert (normalized[sample].rank() == probe_data[sample].rank()).all()


class TestLogTransform:
    """Test log transformation"""

    def test_log2_without_pseudocount(self):
        data = pd.DataFrame({"a": [1.0, 2.0, 8.0]})
        result = log_transform(data, base="log2", pseudocount=0.0)
        assert list(result["a"]) == [0.0, 1.0, 3.0]

    def test_invalid_base(self):
        with pytest.raises(ValueError):
            log_transform(pd.DataFrame({"a": [1.0]}), base="log7")


class TestMedianPolish:
    """Tukey median polish"""

    def test_additive_matrix_fitted_exactly(self):
        rows = np.array([0.0, 1.0, 5.0])
        cols = np.array([0.0, 2.0, 3.0, 10.0])
        matrix = 7.0 + rows[:, None] + cols[None, :]

        fit = median_polish(matrix)
        reconstructed = fit["overall"] + fit["row"][:, None] + fit["col"][None, :]

        assert np.allclose(reconstructed, matrix)
        assert np.allclose(fit["residuals"], 0.0)

    def test_effects_centered(self):
        np.random.seed(3)
        matrix = np.random.normal(8, 1, (11, 5))
        fit = median_polish(matrix)

        assert abs(np.median(fit["row"])) < 1e-10
        assert np.allclose(
            fit["overall"] + fit["row"][:, None] + fit["col"][None, :] + fit["residuals"],
            matrix,
        )

    def test_outlier_resistance(self):
        """A single aberrant probe barely moves the array summaries"""
        matrix = np.tile(np.array([6.0, 7.0, 8.0]), (5, 1)) + np.arange(5)[:, None]
        clean = median_polish(matrix)

        matrix[0, 2] += 50
        dirty = median_polish(matrix)

        assert np.allclose(clean["overall"] + clean["col"], dirty["overall"] + dirty["col"])


class TestSummarizeProbesets:
    """Probe to probeset summarization"""

    def test_summary_shape_and_order(self, probe_data):
        log_data = np.log2(probe_data)
        expression = summarize_probesets(log_data)

        probesets = list(dict.fromkeys(probe_data.index.get_level_values("probeset")))
        assert list(expression.index) == probesets
        assert expression.index.name == "Gene"
        assert list(expression.columns) == list(probe_data.columns)

    def test_single_probe_probeset(self):
        index = pd.MultiIndex.from_tuples([("ps1", "1")], names=["probeset", "probe"])
        log_data = pd.DataFrame([[5.0, 6.0, 7.0]], index=index, columns=["a", "b", "c"])

        expression = summarize_probesets(log_data)
        assert list(expression.loc["ps1"]) == [5.0, 6.0, 7.0]


class TestRMA:
    """Complete RMA"""

    def test_rma_output(self, probe_data):
        expression = rma(probe_data)

        assert expression.shape == (30, 8)
        assert list(expression.columns) == list(probe_data.columns)
        assert np.isfinite(expression.to_numpy()).all()

    def test_rma_recovers_planted_change(self, probe_data):
        expression = rma(probe_data)
        first = expression.index[0]

        present10 = expression.loc[first, ["high10-1", "high10-2"]].mean()
        absent10 = expression.loc[first, ["low10-1", "low10-2"]].mean()
        assert present10 - absent10 > 1.5

    def test_rma_removes_array_scaling(self, probe_data):
        expression = rma(probe_data)
        raw_log = np.log2(probe_data)

        stats = calculate_normalization_stats(raw_log, expression)
        assert stats["normalized_median_range"] < stats["original_median_range"]

    def test_rma_without_background(self, probe_data):
        expression = rma(probe_data, background=False)
        assert expression.shape == (30, 8)

    def test_rma_rejects_missing_values(self, probe_data):
        broken = probe_data.copy()
        broken.iloc[0, 0] = np.nan
        with pytest.raises(ValueError, match="missing"):
            rma(broken)

    def test_rma_rejects_empty_array(self, probe_data):
        broken = probe_data.copy()
        broken["low10-1"] = np.nan
        with pytest.raises(ValueError, match="low10-1"):
            rma(broken)

    def test_rma_requires_probeset_index(self, probe_data):
        flat = probe_data.reset_index(drop=True)
        with pytest.raises(ValueError, match="probeset"):
            rma(flat)
