"""
Statistical Analysis Module for Microarray Data

This module provides a configuration-driven differential expression
analysis for factorial microarray experiments: design and contrasts from
the targets table, gene-wise linear models, empirical Bayes moderation,
ranked top tables and up/down/not-significant decisions.
"""

import itertools

import pandas as pd
import numpy as np
from scipy import stats
from statsmodels.stats.multitest import multipletests

from .data_import import align_expression_to_targets
from .design import (
    build_group_factor,
    make_contrasts,
    make_names,
    model_matrix,
    translate_contrasts,
)
from .empirical_bayes import (
    classify_tests_f,
    coefficient_correlation,
    ebayes,
    moderated_f_statistic,
)
from .linear_model import LinearModelFit, contrasts_fit, lm_fit
from .normalization import (
    get_normalization_characteristics,
    is_normalization_log_transformed,
    log_transform,
)
from .validation import SampleMatchingError, validate_targets

# Names accepted for adjust_method, mapped to statsmodels multipletests methods
ADJUST_METHODS = {
    "BH": "fdr_bh",
    "fdr": "fdr_bh",
    "BY": "fdr_by",
    "holm": "holm",
    "bonferroni": "bonferroni",
    "none": None,
}

DECIDE_METHODS = ("separate", "global", "nestedF")

SORT_OPTIONS = ("t", "B", "logFC", "AveExpr", "P", "F", "none")


class StatisticalConfig:
    """Configuration class for differential expression analysis parameters

    Supports two parameterizations of the same factorial experiment:
    - 'group_means': one coefficient per treatment-time group, no intercept
    - 'reference': intercept = reference group, other coefficients are
      differences from it

    Contrasts are always written in group names (e.g. "present10-absent10")
    and are translated for the reference parameterization.
    """

    def __init__(self):
        # Experimental design
        self.factor_columns = ["estrogen", "time.h"]
        self.sample_column = "Sample"
        self.parameterization = "group_means"  # 'group_means' or 'reference'
        self.reference_level = "absent10"  # Used by the 'reference' parameterization

        # Contrasts: name -> expression in group names
        self.contrasts = {
            "E10": "present10-absent10",
            "E48": "present48-absent48",
            "Time": "absent48-absent10",
        }

        # Multiple testing and decisions
        self.adjust_method = "BH"
        self.decide_method = "separate"  # 'separate', 'global' or 'nestedF'
        self.p_value_threshold = 0.05
        self.lfc_threshold = 0.0

        # Empirical Bayes
        self.proportion = 0.01
        self.stdev_coef_lim = (0.1, 4)
        self.trend = False

        # Reporting
        self.top_n = 10
        self.sort_by = "t"

        # Normalization method (used for auto log transformation)
        self.normalization_method = "rma"

    def validate(self):
        """Validate that the parameters describe a runnable analysis"""
        if not self.factor_columns:
            raise ValueError("factor_columns must name at least one targets column")

        if self.parameterization not in ("group_means", "reference"):
            raise ValueError(
                f"parameterization must be 'group_means' or 'reference', got '{self.parameterization}'"
            )
        if self.parameterization == "reference" and not self.reference_level:
            raise ValueError("reference parameterization requires reference_level")

        if not self.contrasts or not isinstance(self.contrasts, dict):
            raise ValueError("contrasts must be a non-empty dict of name -> expression")

        if self.adjust_method not in ADJUST_METHODS:
            raise ValueError(
                f"Unknown adjust_method '{self.adjust_method}'. Choose from {list(ADJUST_METHODS)}"
            )
        if self.decide_method not in DECIDE_METHODS:
            raise ValueError(
                f"Unknown decide_method '{self.decide_method}'. Choose from {list(DECIDE_METHODS)}"
            )

        if not 0 < self.p_value_threshold <= 1:
            raise ValueError("p_value_threshold must be in (0, 1]")
        if self.lfc_threshold < 0:
            raise ValueError("lfc_threshold must be non-negative")
        if not 0 < self.proportion < 1:
            raise ValueError("proportion must be in (0, 1)")
        if len(self.stdev_coef_lim) != 2 or self.stdev_coef_lim[0] > self.stdev_coef_lim[1]:
            raise ValueError("stdev_coef_lim must be a (lower, upper) pair")
        if self.top_n is not None and self.top_n < 1:
            raise ValueError("top_n must be positive")
        if self.sort_by not in SORT_OPTIONS:
            raise ValueError(f"sort_by must be one of {list(SORT_OPTIONS)}")

        return True


def adjust_p_values(p_values, method: str = "BH") -> np.ndarray:
    """
    Adjust p-values for multiple testing; missing values stay missing.

    Parameters:
    -----------
    p_values : array-like
        Raw p-values
    method : str
        'BH'/'fdr', 'BY', 'holm', 'bonferroni' or 'none'

    Returns:
    --------
    np.ndarray : adjusted p-values
    """
    if method not in ADJUST_METHODS:
        raise ValueError(f"Unknown adjust method '{method}'. Choose from {list(ADJUST_METHODS)}")

    p_values = np.asarray(p_values, dtype=float)
    adjusted = p_values.copy()
    valid = ~np.isnan(p_values)

    if ADJUST_METHODS[method] is None or valid.sum() == 0:
        return adjusted

    _, adj_valid, _, _ = multipletests(p_values[valid], method=ADJUST_METHODS[method])
    adjusted[valid] = adj_valid
    return adjusted


def _require_moderated(fit):
    if not isinstance(fit, LinearModelFit):
        raise ValueError("fit must be a LinearModelFit")
    if not fit.is_moderated:
        raise ValueError("fit has no moderated statistics; run ebayes() first")


def _resolve_coefficients(fit, coef):
    names = fit.coef_names
    if coef is None:
        return names
    if isinstance(coef, (str, int, np.integer)):
        coef = [coef]
    resolved = []
    for c in coef:
        if isinstance(c, (int, np.integer)):
            if not 0 <= c < len(names):
                raise ValueError(f"Coefficient index {c} out of range for {names}")
            resolved.append(names[c])
        elif c in names:
            resolved.append(c)
        else:
            raise ValueError(f"Unknown coefficient '{c}'. Available: {names}")
    return resolved


def _stable_descending(values) -> np.ndarray:
    """Indices sorting values high to low; ties keep input order, NaN last."""
    key = np.where(np.isnan(values), -np.inf, values)
    return np.argsort(-key, kind="mergesort")


def top_table(fit, coef=None, number=10, adjust_method: str = "BH", sort_by: str = "t",
              p_value: float = 1.0, lfc: float = 0.0) -> pd.DataFrame:
    """
    Table of the top-ranked genes from a moderated fit.

    Parameters:
    -----------
    fit : LinearModelFit
        Output of ebayes()
    coef : str, int or list, optional
        Coefficient(s) to report. One coefficient gives the t-statistic
        table; several (or None with a multi-column fit) give the F table
    number : int or None
        Maximum number of genes to return (None for all)
    adjust_method : str
        Multiple testing adjustment ('BH', 'BY', 'holm', 'bonferroni', 'none')
    sort_by : str
        't' (|t|), 'B', 'logFC' (|logFC|), 'AveExpr', 'P', 'F' or 'none'.
        Sorting is stable: genes with equal keys keep their input order
    p_value : float
        Keep genes with adjusted p-value at or below this cutoff
    lfc : float
        Keep genes with |logFC| at or above this cutoff

    Returns:
    --------
    pd.DataFrame
        Single coefficient: Gene, logFC, AveExpr, t, P.Value, adj.P.Val, B
        Several: Gene, <coefficient logFCs>, AveExpr, F, P.Value, adj.P.Val
    """
    _require_moderated(fit)
    if sort_by not in SORT_OPTIONS:
        raise ValueError(f"sort_by must be one of {list(SORT_OPTIONS)}")

    coefs = _resolve_coefficients(fit, coef)
    genes = fit.genes
    ave_expr = fit.Amean.to_numpy(dtype=float)

    if len(coefs) == 1:
        name = coefs[0]
        log_fc = fit.coefficients[name].to_numpy(dtype=float)
        t = fit.t[name].to_numpy(dtype=float)
        p = fit.p_value[name].to_numpy(dtype=float)
        table = pd.DataFrame({
            "Gene": genes.astype(str),
            "logFC": log_fc,
            "AveExpr": ave_expr,
            "t": t,
            "P.Value": p,
            "adj.P.Val": adjust_p_values(p, adjust_method),
            "B": fit.lods[name].to_numpy(dtype=float),
        })
        sort_keys = {
            "t": np.abs(t),
            "B": table["B"].to_numpy(),
            "logFC": np.abs(log_fc),
            "AveExpr": ave_expr,
            "P": -p,
            "F": np.abs(t),
        }
        lfc_pass = np.abs(log_fc) >= lfc
    else:
        log_fcs = fit.coefficients[coefs]
        if coefs == fit.coef_names:
            F = fit.F.to_numpy(dtype=float)
            F_p = fit.F_p_value.to_numpy(dtype=float)
        else:
            F, F_p = _subset_f_test(fit, coefs)
        table = pd.DataFrame({"Gene": genes.astype(str)})
        for name in coefs:
            table[name] = log_fcs[name].to_numpy(dtype=float)
        table["AveExpr"] = ave_expr
        table["F"] = F
        table["P.Value"] = F_p
        table["adj.P.Val"] = adjust_p_values(F_p, adjust_method)
        sort_keys = {
            "t": F,
            "B": F,
            "F": F,
            "logFC": np.nanmax(np.abs(log_fcs.to_numpy(dtype=float)), axis=1),
            "AveExpr": ave_expr,
            "P": -F_p,
        }
        lfc_pass = (np.abs(log_fcs.to_numpy(dtype=float)) >= lfc).any(axis=1)

    if sort_by != "none":
        table = table.iloc[_stable_descending(sort_keys[sort_by])]

    keep = np.ones(len(table), dtype=bool)
    if p_value < 1:
        keep &= (table["adj.P.Val"] <= p_value).to_numpy()
    if lfc > 0:
        keep &= lfc_pass[table.index.to_numpy()]
    table = table[keep]

    if number is not None:
        table = table.head(int(number))

    return table.reset_index(drop=True)


def _subset_f_test(fit, coefs):
    """Moderated F and p-value for a subset of the coefficients."""
    idx = [fit.coef_names.index(c) for c in coefs]
    cor = coefficient_correlation(fit)[np.ix_(idx, idx)]
    F, df1 = moderated_f_statistic(fit.t[coefs].to_numpy(dtype=float), cor)
    df2 = fit.df_residual.to_numpy(dtype=float) + fit.df_prior
    with np.errstate(invalid="ignore"):
        F_p = np.where(
            df2 > 1e6,
            stats.chi2.sf(df1 * F, df1),
            stats.f.sf(F, df1, np.minimum(df2, 1e6)),
        )
    return F, F_p


def decide_tests(fit, method: str = "separate", adjust_method: str = "BH",
                 p_value: float = 0.05, lfc: float = 0.0) -> pd.DataFrame:
    """
    Classify each gene x contrast as up (1), not significant (0) or down (-1).

    Parameters:
    -----------
    fit : LinearModelFit
        Output of ebayes()
    method : str
        'separate': adjust each contrast over genes
        'global': adjust all genes x contrasts together
        'nestedF': adjust the moderated F p-values, then classify the
        contrasts of the selected genes with nested F-tests
    adjust_method : str
        Multiple testing adjustment
    p_value : float
        Significance cutoff on the adjusted p-values
    lfc : float
        Minimum |logFC| for a call

    Returns:
    --------
    pd.DataFrame : genes x contrasts integer matrix in {-1, 0, 1}
    """
    _require_moderated(fit)
    if method not in DECIDE_METHODS:
        raise ValueError(f"Unknown method '{method}'. Choose from {list(DECIDE_METHODS)}")
    if adjust_method not in ADJUST_METHODS:
        raise ValueError(f"Unknown adjust method '{adjust_method}'")

    coefficients = fit.coefficients.to_numpy(dtype=float)
    p = fit.p_value.to_numpy(dtype=float)

    if method == "separate":
        adjusted = np.column_stack([
            adjust_p_values(p[:, j], adjust_method) for j in range(p.shape[1])
        ])
        is_de = adjusted < p_value
        results = np.sign(coefficients) * is_de

    elif method == "global":
        adjusted = adjust_p_values(p.ravel(), adjust_method).reshape(p.shape)
        is_de = adjusted < p_value
        results = np.sign(coefficients) * is_de

    else:
        F_adj = adjust_p_values(fit.F_p_value.to_numpy(dtype=float), adjust_method)
        selected = np.nan_to_num(F_adj, nan=1.0) < p_value
        n_selected = int(selected.sum())
        n = int((~np.isnan(F_adj)).sum())

        results = np.zeros(p.shape, dtype=int)
        if n_selected > 0:
            # per-gene size matching the adjusted F cutoff
            if adjust_method == "bonferroni":
                scale = 1.0 / n
            elif adjust_method == "holm":
                scale = 1.0 / (n - n_selected + 1)
            elif adjust_method in ("BH", "fdr"):
                scale = n_selected / n
            elif adjust_method == "BY":
                scale = n_selected / n / np.sum(1.0 / np.arange(1, n + 1))
            else:
                scale = 1.0
            results[selected] = classify_tests_f(
                fit.t.to_numpy(dtype=float)[selected],
                cor_matrix=coefficient_correlation(fit),
                df=fit.df_total.to_numpy(dtype=float)[selected],
                p_value=p_value * scale,
            )

    results = np.nan_to_num(results).astype(int)
    if lfc > 0:
        results[np.nan_to_num(np.abs(coefficients)) < lfc] = 0

    return pd.DataFrame(results, index=fit.genes, columns=fit.coef_names)


def summarize_test_results(results: pd.DataFrame) -> pd.DataFrame:
    """Counts of Down / NotSig / Up calls per contrast."""
    summary = pd.DataFrame(
        {col: [int((results[col] == -1).sum()),
               int((results[col] == 0).sum()),
               int((results[col] == 1).sum())]
         for col in results.columns},
        index=["Down", "NotSig", "Up"],
    )
    return summary


def venn_counts(results: pd.DataFrame, include: str = "both") -> pd.DataFrame:
    """
    Count genes in every combination of significant contrasts.

    Parameters:
    -----------
    results : pd.DataFrame
        Decision matrix from decide_tests()
    include : str
        'both' (any non-zero call), 'up' or 'down'

    Returns:
    --------
    pd.DataFrame
        One row per membership pattern (2^k rows), a 0/1 column per
        contrast and a 'Counts' column
    """
    if include == "both":
        membership = results != 0
    elif include == "up":
        membership = results == 1
    elif include == "down":
        membership = results == -1
    else:
        raise ValueError("include must be 'both', 'up' or 'down'")

    contrasts = list(results.columns)
    member_matrix = membership.to_numpy().astype(int)
    rows = []
    for pattern in itertools.product([0, 1], repeat=len(contrasts)):
        count = int((member_matrix == np.array(pattern)).all(axis=1).sum())
        rows.append(list(pattern) + [count])

    return pd.DataFrame(rows, columns=contrasts + ["Counts"])


def _group_samples(targets, factors, group, sample_column):
    groups = build_group_factor(targets, factors, sample_column=sample_column)
    name = make_names([group])[0]
    samples = groups.index[groups == name].tolist()
    if not samples:
        raise SampleMatchingError(
            f"No samples in group '{name}'. Groups: {sorted(groups.unique())}"
        )
    return samples


def manual_log_fold_change(expression: pd.DataFrame, targets: pd.DataFrame, factors,
                           numerator: str, denominator: str, genes=None,
                           sample_column: str = "Sample") -> pd.Series:
    """
    Difference of group mean log2 expression, groups taken from the targets table.

    Parameters:
    -----------
    expression : pd.DataFrame
        genes x samples log2 expression
    targets : pd.DataFrame
        Sample metadata
    factors : list
        Factor columns defining the groups
    numerator, denominator : str
        Group names, e.g. 'present10' and 'absent10'
    genes : list, optional
        Restrict to these genes

    Returns:
    --------
    pd.Series : logFC per gene
    """
    num_samples = _group_samples(targets, factors, numerator, sample_column)
    den_samples = _group_samples(targets, factors, denominator, sample_column)
    data = expression if genes is None else expression.loc[list(genes)]
    log_fc = data[num_samples].mean(axis=1) - data[den_samples].mean(axis=1)
    return log_fc.rename(f"{numerator}-{denominator}")


def paired_replicate_differences(expression: pd.DataFrame, targets: pd.DataFrame, factors,
                                 numerator: str, denominator: str, genes=None,
                                 sample_column: str = "Sample") -> pd.DataFrame:
    """
    Replicate-by-replicate differences between two groups.

    The k-th numerator sample is paired with the k-th denominator sample in
    targets row order. This pairing is an assumption: nothing in the
    targets table says replicates were processed together.

    Returns:
    --------
    pd.DataFrame : genes x pairs, columns named '<numerator sample>-<denominator sample>'
    """
    num_samples = _group_samples(targets, factors, numerator, sample_column)
    den_samples = _group_samples(targets, factors, denominator, sample_column)
    if len(num_samples) != len(den_samples):
        raise SampleMatchingError(
            f"Cannot pair {len(num_samples)} '{numerator}' samples with "
            f"{len(den_samples)} '{denominator}' samples"
        )

    print(f"Warning: pairing replicates of {numerator} and {denominator} by targets order "
          f"(assumed, not recorded in the design)")
    data = expression if genes is None else expression.loc[list(genes)]
    differences = pd.DataFrame(
        {f"{num}-{den}": data[num] - data[den] for num, den in zip(num_samples, den_samples)},
        index=data.index,
    )
    return differences


def build_design_and_contrasts(targets: pd.DataFrame, config: StatisticalConfig,
                               parameterization=None):
    """
    Design matrix and matching contrast matrix for a parameterization.

    Returns:
    --------
    (design, contrasts) DataFrames
    """
    parameterization = parameterization or config.parameterization
    group_design = model_matrix(targets, config.factor_columns, intercept=False,
                                sample_column=config.sample_column)
    group_contrasts = make_contrasts(config.contrasts, group_design)

    if parameterization == "group_means":
        return group_design, group_contrasts

    if parameterization != "reference":
        raise ValueError(f"Unknown parameterization '{parameterization}'")

    reference_design = model_matrix(targets, config.factor_columns, intercept=True,
                                    reference=config.reference_level,
                                    sample_column=config.sample_column)
    reference_contrasts = translate_contrasts(group_contrasts, config.reference_level,
                                              reference_design)
    return reference_design, reference_contrasts


def _fit_parameterization(expression, targets, config, parameterization):
    design, contrasts = build_design_and_contrasts(targets, config, parameterization)
    fit = lm_fit(expression, design)
    contrast_fit = contrasts_fit(fit, contrasts)
    moderated = ebayes(contrast_fit, proportion=config.proportion,
                       stdev_coef_lim=config.stdev_coef_lim, trend=config.trend)
    return design, contrasts, fit, moderated


def compare_parameterizations(expression: pd.DataFrame, targets: pd.DataFrame,
                              config: StatisticalConfig) -> pd.DataFrame:
    """
    Fit the group-means and reference parameterizations and compare their contrasts.

    Returns:
    --------
    pd.DataFrame
        One row per contrast with the maximum absolute differences of
        logFC, t and P.Value, and the number of genes whose decision differs
    """
    print("=" * 60)
    print("PARAMETERIZATION COMPARISON")
    print("=" * 60)

    config.validate()
    _, _, _, group_fit = _fit_parameterization(expression, targets, config, "group_means")
    _, _, _, reference_fit = _fit_parameterization(expression, targets, config, "reference")

    group_calls = decide_tests(group_fit, method=config.decide_method,
                               adjust_method=config.adjust_method,
                               p_value=config.p_value_threshold, lfc=config.lfc_threshold)
    reference_calls = decide_tests(reference_fit, method=config.decide_method,
                                   adjust_method=config.adjust_method,
                                   p_value=config.p_value_threshold, lfc=config.lfc_threshold)

    rows = []
    for name in group_fit.coef_names:
        rows.append({
            "Contrast": name,
            "max_abs_logFC_diff": float(np.nanmax(np.abs(
                group_fit.coefficients[name] - reference_fit.coefficients[name]))),
            "max_abs_t_diff": float(np.nanmax(np.abs(group_fit.t[name] - reference_fit.t[name]))),
            "max_abs_P_diff": float(np.nanmax(np.abs(
                group_fit.p_value[name] - reference_fit.p_value[name]))),
            "decision_disagreements": int((group_calls[name] != reference_calls[name]).sum()),
        })

    comparison = pd.DataFrame(rows).set_index("Contrast")
    print(comparison.to_string())
    return comparison


def _apply_log_transformation_if_needed(expression, config):
    """
    Log2-transform the expression matrix unless it is already on a log scale.

    Uses the configured normalization method when it is known, otherwise
    falls back on the data range.
    """
    method = config.normalization_method
    characteristics_known = bool(method) and method.lower() in get_normalization_characteristics()

    if characteristics_known:
        needed = not is_normalization_log_transformed(method)
        reason = f"{method} {'preserves original scale' if needed else 'already log-transforms data'}"
    else:
        mean_value = float(np.nanmean(expression.to_numpy(dtype=float)))
        needed = mean_value > 50
        reason = f"mean value {mean_value:.1f}"

    status = "needed" if needed else "not needed"
    print(f"Log transformation: AUTO-DETECTED ({status} - {reason})")
    if not needed:
        return expression
    return log_transform(expression, base="log2")


def run_comprehensive_statistical_analysis(expression, targets, config):
    """
    Complete differential expression analysis for a factorial experiment

    Parameters:
    -----------
    expression : pd.DataFrame
        Gene expression matrix (genes x samples)
    targets : pd.DataFrame
        Sample metadata, one row per array
    config : StatisticalConfig
        Configuration object with analysis parameters

    Returns:
    --------
    dict
        expression (the fitted matrix: log scale, columns in targets order),
        design, contrasts, fit (lm_fit output), moderated_fit (after
        contrasts and ebayes), top_tables (contrast -> DataFrame),
        decisions, decision_summary and venn_counts
    """

    print("=" * 60)
    print("COMPREHENSIVE STATISTICAL ANALYSIS")
    print("=" * 60)

    # Validate configuration
    try:
        config.validate()
    except ValueError as e:
        raise ValueError(f"Configuration error: {e}") from e

    # Step 0: Handle log transformation if needed
    expression = _apply_log_transformation_if_needed(expression, config)

    # Step 1: Validate targets and match samples
    print("\nStep 1: Validating targets and matching samples...")
    validate_targets(targets, config.factor_columns, sample_column=config.sample_column)
    expression = align_expression_to_targets(expression, targets,
                                             sample_column=config.sample_column)
    groups = build_group_factor(targets, config.factor_columns,
                                sample_column=config.sample_column)
    print(f"  Samples: {expression.shape[1]}, genes: {expression.shape[0]}")
    for group, count in groups.value_counts().sort_index().items():
        print(f"    {group}: {count} arrays")

    # Step 2: Design and contrasts
    print(f"\nStep 2: Building {config.parameterization} design and contrasts...")
    design, contrasts = build_design_and_contrasts(targets, config)
    print(f"  Design columns: {list(design.columns)}")
    for name, expr in config.contrasts.items():
        print(f"  Contrast {name}: {expr}")

    # Step 3: Linear models
    print("\nStep 3: Fitting gene-wise linear models...")
    fit = lm_fit(expression, design)

    # Step 4: Contrasts
    print("\nStep 4: Applying contrasts...")
    contrast_fit = contrasts_fit(fit, contrasts)

    # Step 5: Empirical Bayes
    print("\nStep 5: Empirical Bayes moderation...")
    moderated_fit = ebayes(contrast_fit, proportion=config.proportion,
                           stdev_coef_lim=config.stdev_coef_lim, trend=config.trend)

    # Step 6: Rank and decide
    print("\nStep 6: Ranking genes and classifying changes...")
    top_tables = {
        name: top_table(moderated_fit, coef=name, number=None,
                        adjust_method=config.adjust_method, sort_by=config.sort_by)
        for name in moderated_fit.coef_names
    }
    decisions = decide_tests(moderated_fit, method=config.decide_method,
                             adjust_method=config.adjust_method,
                             p_value=config.p_value_threshold, lfc=config.lfc_threshold)
    decision_summary = summarize_test_results(decisions)
    overlap = venn_counts(decisions)

    print("\n✓ Statistical analysis completed!")
    print(f"  Total genes analyzed: {len(moderated_fit)}")
    for name in moderated_fit.coef_names:
        print(f"  {name}: {int(decision_summary.loc['Up', name])} up, "
              f"{int(decision_summary.loc['Down', name])} down")

    return {
        "expression": expression,
        "design": design,
        "contrasts": contrasts,
        "fit": fit,
        "moderated_fit": moderated_fit,
        "top_tables": top_tables,
        "decisions": decisions,
        "decision_summary": decision_summary,
        "venn_counts": overlap,
    }


def _format_top_table(table):
    display_df = table.copy()
    for col in display_df.columns:
        if col in ["P.Value", "adj.P.Val"]:
            display_df[col] = display_df[col].apply(
                lambda x: f"{x:.2e}"
                if pd.notna(x) and x < 0.01
                else f"{x:.6f}"
                if pd.notna(x)
                else "N/A"
            )
        elif col in ["logFC", "AveExpr", "t", "B", "F"]:
            display_df[col] = display_df[col].apply(
                lambda x: f"{x:.4f}" if pd.notna(x) else "N/A"
            )
    return display_df


def display_analysis_summary(analysis_results, config, label_top_n=None):
    """
    Display comprehensive summary of differential expression results

    Parameters:
    -----------
    analysis_results : dict
        Results from run_comprehensive_statistical_analysis
    config : StatisticalConfig
        Configuration object with analysis parameters
    label_top_n : int, optional
        Number of top genes to display per contrast (defaults to config.top_n)

    Returns:
    --------
    dict
        Summary statistics for downstream use
    """

    if not analysis_results or "top_tables" not in analysis_results:
        print("⚠️ No differential analysis results available")
        return {}

    label_top_n = label_top_n or config.top_n
    fit = analysis_results["moderated_fit"]
    summary_table = analysis_results["decision_summary"]

    print("=" * 60)
    print("STATISTICAL ANALYSIS SUMMARY")
    print("=" * 60)

    print("Analysis Overview:")
    print(f"  Parameterization: {config.parameterization}")
    print(f"  Genes analyzed: {len(fit):,}")
    print(f"  Prior df: {fit.df_prior:.2f}")
    print(f"  Adjustment: {config.adjust_method}, decisions: {config.decide_method} "
          f"(p < {config.p_value_threshold})")

    summary = {
        "total_genes": len(fit),
        "df_prior": float(fit.df_prior),
        "parameterization": config.parameterization,
        "contrasts": {},
    }

    for name, table in analysis_results["top_tables"].items():
        print(f"\n=== TOP {label_top_n} GENES: {name} ===")
        print(_format_top_table(table.head(label_top_n)).to_string(index=False))

        significant = int((table["adj.P.Val"] < config.p_value_threshold).sum())
        summary["contrasts"][name] = {
            "top_gene": table["Gene"].iloc[0] if len(table) else None,
            "significant": significant,
            "up": int(summary_table.loc["Up", name]),
            "down": int(summary_table.loc["Down", name]),
        }

    print("\nDecision summary:")
    print(summary_table.to_string())

    print("\nGenes per combination of significant contrasts:")
    print(analysis_results["venn_counts"].to_string(index=False))

    print("\n✓ Analysis summary complete!")

    return summary
