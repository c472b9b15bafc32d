"""
Tests for microarray_toolkit.statistical_analysis module
"""

import copy

import pandas as pd
import numpy as np
import pytest

from microarray_toolkit.statistical_analysis import (
    StatisticalConfig,
    adjust_p_values,
    top_table,
    decide_tests,
    summarize_test_results,
    venn_counts,
    manual_log_fold_change,
    paired_replicate_differences,
    build_design_and_contrasts,
    compare_parameterizations,
    run_comprehensive_statistical_analysis,
    display_analysis_summary,
    _apply_log_transformation_if_needed,
)
from microarray_toolkit.linear_model import lm_fit
from microarray_toolkit.validation import SampleMatchingError

FACTORS = ["estrogen", "time.h"]


class TestStatisticalConfig:
    """Test the StatisticalConfig class"""

    def test_config_initialization(self):
        """Test configuration initialization with defaults"""
        config = StatisticalConfig()

        assert config.factor_columns == ["estrogen", "time.h"]
        assert config.parameterization == "group_means"
        assert config.reference_level == "absent10"
        assert config.contrasts["E10"] == "present10-absent10"
        assert config.decide_method == "separate"
        assert config.sort_by == "t"
        assert config.validate() is True

    @pytest.mark.parametrize(
        "attribute, value",
        [
            ("parameterization", "treatment"),
            ("adjust_method", "fdr_tsbh"),
            ("decide_method", "hierarchical"),
            ("sort_by", "logfc"),
            ("p_value_threshold", 0.0),
            ("lfc_threshold", -1.0),
            ("proportion", 1.0),
            ("contrasts", {}),
        ],
    )
    def test_invalid_values(self, attribute, value):
        config = StatisticalConfig()
        setattr(config, attribute, value)

        with pytest.raises(ValueError):
            config.validate()


class TestAdjustPValues:
    """Multiple testing adjustment"""

    def test_benjamini_hochberg(self):
        adjusted = adjust_p_values([0.01, 0.04, 0.03, 0.2], "BH")
        np.testing.assert_allclose(adjusted, [0.04, 0.04 * 4 / 3, 0.04 * 4 / 3, 0.2])

    def test_missing_values_stay_missing(self):
        adjusted = adjust_p_values([0.01, np.nan, 0.04], "BH")

        assert np.isnan(adjusted[1])
        np.testing.assert_allclose(adjusted[[0, 2]], [0.02, 0.04])

    def test_bonferroni_capped(self):
        np.testing.assert_allclose(adjust_p_values([0.01, 0.5], "bonferroni"), [0.02, 1.0])

    def test_none(self):
        np.testing.assert_allclose(adjust_p_values([0.01, 0.5], "none"), [0.01, 0.5])

    def test_unknown_method(self):
        with pytest.raises(ValueError):
            adjust_p_values([0.01], "magic")


class TestTopTable:
    """Ranked gene tables"""

    def test_single_contrast_columns(self, moderated_fit):
        table = top_table(moderated_fit, coef="E10")

        assert list(table.columns) == ["Gene", "logFC", "AveExpr", "t", "P.Value", "adj.P.Val", "B"]
        assert len(table) == 10
        assert table["Gene"].iloc[0] == "E10_up_at"
        assert list(table.index) == list(range(10))

    def test_sorted_by_absolute_t(self, moderated_fit):
        table = top_table(moderated_fit, coef="E48", number=None)

        assert len(table) == 200
        assert (np.diff(table["t"].abs().to_numpy()) <= 0).all()
        assert table["Gene"].iloc[0] == "E48_down_at"
        assert table["logFC"].iloc[0] < 0

    def test_coefficient_by_position(self, moderated_fit):
        by_name = top_table(moderated_fit, coef="Time")
        by_index = top_table(moderated_fit, coef=2)

        pd.testing.assert_frame_equal(by_name, by_index)

    @pytest.mark.parametrize("sort_by", ["B", "logFC", "AveExpr", "P"])
    def test_sort_options(self, moderated_fit, sort_by):
        table = top_table(moderated_fit, coef="E10", number=None, sort_by=sort_by)
        key = {
            "B": table["B"],
            "logFC": table["logFC"].abs(),
            "AveExpr": table["AveExpr"],
            "P": -table["P.Value"],
        }[sort_by]

        assert (np.diff(key.to_numpy()) <= 0).all()

    def test_no_sorting_keeps_gene_order(self, moderated_fit):
        table = top_table(moderated_fit, coef="E10", number=None, sort_by="none")
        assert list(table["Gene"]) == list(moderated_fit.genes)

    def test_ties_keep_input_order(self, moderated_fit):
        """Genes with identical statistics are ranked in input order"""
        fit = copy.copy(moderated_fit)
        for attribute in ["coefficients", "t", "p_value", "lods"]:
            values = getattr(moderated_fit, attribute).copy()
            values.loc["1001_at"] = values.loc["1150_at"]
            setattr(fit, attribute, values)

        for sort_by in ["t", "P", "B", "logFC"]:
            genes = list(top_table(fit, coef="E10", number=None, sort_by=sort_by)["Gene"])
            assert genes.index("1001_at") + 1 == genes.index("1150_at")

    def test_ranking_is_deterministic(self, moderated_fit):
        first = top_table(moderated_fit, coef="E10", number=None)
        second = top_table(moderated_fit, coef="E10", number=None)

        pd.testing.assert_frame_equal(first, second)

    def test_filters(self, moderated_fit):
        table = top_table(moderated_fit, coef="E10", number=None, p_value=0.05, lfc=1.0)

        assert len(table) >= 1
        assert (table["adj.P.Val"] <= 0.05).all()
        assert (table["logFC"].abs() >= 1.0).all()

    def test_f_table(self, moderated_fit):
        table = top_table(moderated_fit, coef=None, number=None)

        assert list(table.columns) == [
            "Gene", "E10", "E48", "Time", "AveExpr", "F", "P.Value", "adj.P.Val"
        ]
        assert (np.diff(table["F"].to_numpy()) <= 0).all()
        top_genes = set(table["Gene"].iloc[:3])
        assert top_genes == {"E10_up_at", "E48_down_at", "Time_up_at"}

    def test_f_table_subset(self, moderated_fit):
        table = top_table(moderated_fit, coef=["E10", "E48"], number=None)

        assert "Time" not in table.columns
        assert table["P.Value"].between(0, 1).all()
        assert set(table["Gene"].iloc[:2]) == {"E10_up_at", "E48_down_at"}

    def test_requires_moderated_fit(self, expression_data, group_design):
        with pytest.raises(ValueError, match="ebayes"):
            top_table(lm_fit(expression_data, group_design))

    def test_unknown_coefficient(self, moderated_fit):
        with pytest.raises(ValueError, match="E24"):
            top_table(moderated_fit, coef="E24")


class TestDecideTests:
    """Up/down/not-significant calls"""

    def test_separate_matches_top_table(self, moderated_fit):
        decisions = decide_tests(moderated_fit, method="separate", p_value=0.05)

        for name in moderated_fit.coef_names:
            table = top_table(moderated_fit, coef=name, number=None).set_index("Gene")
            expected = (np.sign(table["logFC"]) * (table["adj.P.Val"] < 0.05)).astype(int)
            assert (decisions[name] == expected.loc[decisions.index]).all()

    def test_planted_genes(self, moderated_fit):
        decisions = decide_tests(moderated_fit)

        assert decisions.loc["E10_up_at", "E10"] == 1
        assert decisions.loc["E48_down_at", "E48"] == -1
        assert decisions.loc["Time_up_at", "Time"] == 1
        assert decisions.loc["Time_up_at", "E48"] == 0

    def test_global(self, moderated_fit):
        decisions = decide_tests(moderated_fit, method="global")

        assert decisions.shape == (200, 3)
        assert set(np.unique(decisions.to_numpy())) <= {-1, 0, 1}
        assert decisions.loc["E10_up_at", "E10"] == 1

    def test_nested_f(self, moderated_fit):
        decisions = decide_tests(moderated_fit, method="nestedF")

        assert decisions.loc["E10_up_at", "E10"] == 1
        assert decisions.loc["E48_down_at", "E48"] == -1
        assert decisions.loc["Time_up_at", "Time"] == 1

    @pytest.mark.parametrize("adjust_method", ["bonferroni", "holm", "BY", "none"])
    def test_nested_f_adjust_methods(self, moderated_fit, adjust_method):
        decisions = decide_tests(moderated_fit, method="nestedF", adjust_method=adjust_method)
        assert decisions.loc["E10_up_at", "E10"] == 1

    def test_lfc_threshold(self, moderated_fit):
        decisions = decide_tests(moderated_fit, lfc=10.0)
        assert (decisions == 0).all().all()

    def test_unknown_method(self, moderated_fit):
        with pytest.raises(ValueError):
            decide_tests(moderated_fit, method="hierarchical")

    def test_summary_and_venn(self, moderated_fit):
        decisions = decide_tests(moderated_fit)
        summary = summarize_test_results(decisions)

        assert list(summary.index) == ["Down", "NotSig", "Up"]
        assert (summary.sum(axis=0) == 200).all()

        counts = venn_counts(decisions)
        assert len(counts) == 8
        assert list(counts.columns) == ["E10", "E48", "Time", "Counts"]
        assert counts["Counts"].sum() == 200
        none_row = counts[(counts[["E10", "E48", "Time"]] == 0).all(axis=1)]
        assert none_row["Counts"].iloc[0] == (decisions == 0).all(axis=1).sum()

    def test_venn_up_only(self, moderated_fit):
        decisions = decide_tests(moderated_fit)
        counts = venn_counts(decisions, include="up")

        e48_only = counts[(counts["E48"] == 1) & (counts["E10"] == 0) & (counts["Time"] == 0)]
        assert e48_only["Counts"].iloc[0] == ((decisions["E48"] == 1)
                                             & (decisions["E10"] != 1)
                                             & (decisions["Time"] != 1)).sum()

        with pytest.raises(ValueError):
            venn_counts(decisions, include="sideways")


class TestManualCalculations:
    """Group mean differences agree with the fitted contrasts"""

    def test_manual_log_fold_change_matches_coefficient(self, expression_data, targets,
                                                        moderated_fit):
        manual = manual_log_fold_change(expression_data, targets, FACTORS,
                                        "present10", "absent10")

        np.testing.assert_allclose(manual.to_numpy(),
                                   moderated_fit.coefficients["E10"].to_numpy())
        assert manual.name == "present10-absent10"

    def test_manual_single_gene(self, expression_data, targets):
        manual = manual_log_fold_change(expression_data, targets, FACTORS,
                                        "absent48", "absent10", genes=["Time_up_at"])

        assert list(manual.index) == ["Time_up_at"]
        assert manual.iloc[0] > 2

    def test_unknown_group(self, expression_data, targets):
        with pytest.raises(SampleMatchingError, match="present24"):
            manual_log_fold_change(expression_data, targets, FACTORS, "present24", "absent10")

    def test_paired_differences(self, expression_data, targets):
        differences = paired_replicate_differences(expression_data, targets, FACTORS,
                                                   "present10", "absent10")

        assert list(differences.columns) == ["high10-1-low10-1", "high10-2-low10-2"]
        manual = manual_log_fold_change(expression_data, targets, FACTORS,
                                        "present10", "absent10")
        np.testing.assert_allclose(differences.mean(axis=1).to_numpy(), manual.to_numpy())

    def test_paired_differences_unbalanced(self, expression_data, targets):
        unbalanced = targets[targets["Sample"] != "high10-2"]

        with pytest.raises(SampleMatchingError, match="pair"):
            paired_replicate_differences(expression_data, unbalanced, FACTORS,
                                         "present10", "absent10")


class TestParameterizations:
    """Group-means and reference designs give the same contrasts"""

    def test_reference_design_and_contrasts(self, targets, statistical_config):
        design, contrasts = build_design_and_contrasts(targets, statistical_config, "reference")

        assert list(design.columns) == ["Intercept", "absent48", "present10", "present48"]
        assert list(contrasts.index) == list(design.columns)
        assert (contrasts.loc["Intercept"] == 0).all()

    def test_unknown_parameterization(self, targets, statistical_config):
        with pytest.raises(ValueError):
            build_design_and_contrasts(targets, statistical_config, "sum_to_zero")

    def test_compare_parameterizations(self, expression_data, targets, statistical_config):
        comparison = compare_parameterizations(expression_data, targets, statistical_config)

        assert list(comparison.index) == ["E10", "E48", "Time"]
        assert (comparison["max_abs_logFC_diff"] < 1e-8).all()
        assert (comparison["max_abs_t_diff"] < 1e-6).all()
        assert (comparison["max_abs_P_diff"] < 1e-8).all()
        assert (comparison["decision_disagreements"] == 0).all()

    def test_reference_level_choice_does_not_matter(self, expression_data, targets,
                                                    statistical_config):
        statistical_config.parameterization = "reference"
        baseline = run_comprehensive_statistical_analysis(
            expression_data, targets, statistical_config)

        statistical_config.reference_level = "present48"
        other = run_comprehensive_statistical_analysis(
            expression_data, targets, statistical_config)

        for name in ["E10", "E48", "Time"]:
            np.testing.assert_allclose(
                baseline["top_tables"][name]["logFC"].to_numpy(),
                other["top_tables"][name]["logFC"].to_numpy(),
                atol=1e-10,
            )


class TestRunComprehensiveStatisticalAnalysis:
    """The complete pipeline"""

    def test_result_structure(self, analysis_results):
        assert set(analysis_results) == {
            "expression", "design", "contrasts", "fit", "moderated_fit", "top_tables",
            "decisions", "decision_summary", "venn_counts",
        }
        assert set(analysis_results["top_tables"]) == {"E10", "E48", "Time"}
        assert all(len(table) == 200 for table in analysis_results["top_tables"].values())

    def test_planted_genes_ranked_first(self, analysis_results):
        tables = analysis_results["top_tables"]

        assert tables["E10"]["Gene"].iloc[0] == "E10_up_at"
        assert tables["E48"]["Gene"].iloc[0] == "E48_down_at"
        assert tables["Time"]["Gene"].iloc[0] == "Time_up_at"
        assert tables["E10"]["logFC"].iloc[0] == pytest.approx(4.0, abs=0.5)

    def test_sample_order_does_not_matter(self, expression_data, targets, statistical_config,
                                          analysis_results):
        shuffled = expression_data[list(reversed(expression_data.columns))]
        results = run_comprehensive_statistical_analysis(shuffled, targets, statistical_config)

        pd.testing.assert_frame_equal(results["top_tables"]["E10"],
                                      analysis_results["top_tables"]["E10"])

    def test_fitted_expression_returned(self, expression_data, targets, statistical_config):
        renamed = expression_data[list(reversed(expression_data.columns))]
        renamed = renamed.rename(columns=lambda name: f"{name}.CEL")

        results = run_comprehensive_statistical_analysis(renamed, targets, statistical_config)

        fitted = results["expression"]
        assert list(fitted.columns) == list(targets["Sample"])
        pd.testing.assert_frame_equal(fitted, expression_data[list(targets["Sample"])])

    def test_trend_with_unobserved_gene(self, expression_data, targets, statistical_config):
        data = expression_data.copy()
        gene = data.index[0]
        data.loc[gene] = np.nan
        statistical_config.trend = True

        results = run_comprehensive_statistical_analysis(data, targets, statistical_config)

        fit = results["moderated_fit"]
        assert np.isfinite(fit.s2_post[gene])
        assert fit.s2_post.notna().all()
        assert fit.t.loc[gene].isna().all()
        assert (results["decisions"].loc[gene] == 0).all()
        assert results["top_tables"]["E10"]["Gene"].iloc[0] == "E10_up_at"
        assert results["top_tables"]["E10"]["Gene"].iloc[-1] == gene

    def test_missing_sample(self, expression_data, targets, statistical_config):
        with pytest.raises(SampleMatchingError):
            run_comprehensive_statistical_analysis(
                expression_data.drop(columns=["low48-1"]), targets, statistical_config)

    def test_invalid_config(self, expression_data, targets, statistical_config):
        statistical_config.adjust_method = "magic"
        with pytest.raises(ValueError, match="Configuration error"):
            run_comprehensive_statistical_analysis(expression_data, targets, statistical_config)

    def test_unknown_contrast_group(self, expression_data, targets, statistical_config):
        from microarray_toolkit.validation import ContrastMatrixError

        statistical_config.contrasts = {"E24": "present24-absent24"}
        with pytest.raises(ContrastMatrixError):
            run_comprehensive_statistical_analysis(expression_data, targets, statistical_config)


class TestDisplayAnalysisSummary:
    """Test display of analysis summary"""

    def test_display_summary_basic(self, analysis_results, statistical_config, capsys):
        summary = display_analysis_summary(analysis_results, statistical_config, label_top_n=3)

        assert summary["total_genes"] == 200
        assert summary["parameterization"] == "group_means"
        assert summary["contrasts"]["E10"]["top_gene"] == "E10_up_at"
        assert summary["contrasts"]["E10"]["up"] >= 1
        assert "STATISTICAL ANALYSIS SUMMARY" in capsys.readouterr().out

    def test_display_summary_empty_results(self, statistical_config):
        assert display_analysis_summary({}, statistical_config) == {}


class TestLogTransformation:
    """Automatic log transformation before fitting"""

    def test_log_scale_method_untouched(self, expression_data, statistical_config):
        result = _apply_log_transformation_if_needed(expression_data, statistical_config)
        assert result is expression_data

    def test_linear_scale_method_transformed(self, expression_data, statistical_config):
        statistical_config.normalization_method = "quantile"
        result = _apply_log_transformation_if_needed(2 ** expression_data, statistical_config)

        assert result.max().max() < 20
        assert (result.corrwith(expression_data) > 0.99).all()

    def test_unknown_method_uses_data_range(self, expression_data, statistical_config):
        statistical_config.normalization_method = "custom"

        unchanged = _apply_log_transformation_if_needed(expression_data, statistical_config)
        assert unchanged is expression_data

        transformed = _apply_log_transformation_if_needed(2 ** expression_data,
                                                          statistical_config)
        assert transformed.max().max() < 20
