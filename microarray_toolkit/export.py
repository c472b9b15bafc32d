"""
Export Module for Microarray Analysis Toolkit

This module handles exporting expression matrices, top tables, decision
matrices and configurations from microarray experiments. It provides
functions for creating timestamped configuration files that can be re-run
to reproduce an analysis.
"""

import pandas as pd
from datetime import datetime
from typing import Dict, Any, Optional, List


def export_analysis_results(
    expression: pd.DataFrame,
    targets: pd.DataFrame,
    top_tables: Optional[Dict[str, pd.DataFrame]] = None,
    decisions: Optional[pd.DataFrame] = None,
    venn: Optional[pd.DataFrame] = None,
    output_prefix: str = "microarray_analysis",
) -> Dict[str, str]:
    """
    Export expression data, targets and differential expression results.

    Parameters:
    -----------
    expression : pd.DataFrame
        Normalized log2 expression (genes x samples)
    targets : pd.DataFrame
        Sample metadata
    top_tables : dict, optional
        Contrast name -> top table
    decisions : pd.DataFrame, optional
        Decision matrix from decide_tests()
    venn : pd.DataFrame, optional
        Output of venn_counts()
    output_prefix : str
        Prefix for output filenames

    Returns:
    --------
    dict
        Dictionary of exported files
    """

    print("Exporting analysis results...")

    exported_files = {}

    expression_file = f"{output_prefix}_expression.csv"
    expression.to_csv(expression_file, index_label="Gene")
    exported_files["expression"] = expression_file
    print(f"Expression matrix exported to: {expression_file}")

    targets_file = f"{output_prefix}_targets.csv"
    targets.to_csv(targets_file, index=False)
    exported_files["targets"] = targets_file
    print(f"Targets exported to: {targets_file}")

    if top_tables:
        for name, table in top_tables.items():
            table_file = f"{output_prefix}_toptable_{name}.csv"
            table.to_csv(table_file, index=False)
            exported_files[f"toptable_{name}"] = table_file
            print(f"Top table for {name} exported to: {table_file}")

    if decisions is not None and not decisions.empty:
        decisions_file = f"{output_prefix}_decisions.csv"
        decisions.to_csv(decisions_file, index_label="Gene")
        exported_files["decisions"] = decisions_file
        print(f"Decision matrix exported to: {decisions_file}")

    if venn is not None and not venn.empty:
        venn_file = f"{output_prefix}_venn_counts.csv"
        venn.to_csv(venn_file, index=False)
        exported_files["venn_counts"] = venn_file
        print(f"Venn counts exported to: {venn_file}")

    return exported_files


def export_significant_genes_summary(
    top_tables: Dict[str, pd.DataFrame],
    p_value_threshold: float = 0.05,
    lfc_threshold: float = 0.0,
    output_prefix: str = "microarray_analysis",
) -> str:
    """
    Export one table of significant genes across all contrasts.

    Parameters:
    -----------
    top_tables : dict
        Contrast name -> top table
    p_value_threshold : float
        Adjusted p-value cutoff
    lfc_threshold : float
        Minimum absolute log fold change
    output_prefix : str
        Prefix for output filename

    Returns:
    --------
    str
        Path to exported summary file ("" if nothing was significant)
    """

    frames = []
    for name, table in top_tables.items():
        significant = table[
            (table["adj.P.Val"] < p_value_threshold) & (table["logFC"].abs() >= lfc_threshold)
        ].copy()
        if len(significant) == 0:
            continue
        significant.insert(0, "Contrast", name)
        significant["Regulation"] = significant["logFC"].apply(lambda x: "Up" if x > 0 else "Down")
        frames.append(significant)

    if not frames:
        print("No significant genes found - skipping summary export")
        return ""

    summary_data = pd.concat(frames, ignore_index=True)
    summary_data = summary_data.sort_values(["Contrast", "adj.P.Val"], kind="mergesort")

    summary_file = f"{output_prefix}_significant_genes_summary.csv"
    summary_data.to_csv(summary_file, index=False)
    print(f"Significant genes summary exported to: {summary_file}")
    print(f"  • Total significant calls: {len(summary_data)}")
    print(f"  • Upregulated: {(summary_data['Regulation'] == 'Up').sum()}")
    print(f"  • Downregulated: {(summary_data['Regulation'] == 'Down').sum()}")

    return summary_file


def export_timestamped_config(
    config_dict: Dict[str, Any],
    output_prefix: str = "microarray_analysis",
    analysis_description: str = "Factorial microarray analysis",
    computed_values: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Export analysis configuration as a timestamped Python file.

    Parameters:
    -----------
    config_dict : dict
        Dictionary containing all configuration parameters
    output_prefix : str
        Prefix for the configuration filename
    analysis_description : str
        Description of the analysis type
    computed_values : dict, optional
        Additional computed values to include as comments

    Returns:
    --------
    str
        Path to the exported configuration file
    """

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    config_file = f"{output_prefix}_config_{timestamp}.py"

    print(f"Exporting analysis configuration to: {config_file}")

    with open(config_file, "w", encoding="utf-8") as f:
        f.write(
            "# =============================================================================\n"
        )
        f.write("# MICROARRAY ANALYSIS CONFIGURATION\n")
        f.write(f"# Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n")
        f.write(f"# Analysis: {analysis_description}\n")
        f.write(
            "# =============================================================================\n\n"
        )

        section_configs = [
            (1, "INPUT FILES AND PATHS", ["targets_file", "data_dir", "expression_file"]),
            (2, "NORMALIZATION STRATEGY", ["normalization_method", "background_correct", "quantile_normalize"]),
            (
                3,
                "EXPERIMENTAL DESIGN CONFIGURATION",
                ["factor_columns", "sample_column", "parameterization", "reference_level"],
            ),
            (4, "CONTRASTS", ["contrasts"]),
            (
                5,
                "EMPIRICAL BAYES SETTINGS",
                ["proportion", "stdev_coef_lim", "trend"],
            ),
            (
                6,
                "SIGNIFICANCE THRESHOLDS",
                ["adjust_method", "decide_method", "p_value_threshold", "lfc_threshold"],
            ),
            (
                7,
                "OUTPUT AND EXPORT SETTINGS",
                ["top_n", "sort_by", "export_results", "output_prefix"],
            ),
        ]

        for section_num, section_name, param_names in section_configs:
            _write_config_section(
                f, section_name, config_dict, param_names, section_num
            )

        if computed_values:
            f.write(
                "# =============================================================================\n"
            )
            f.write("# COMPUTED VALUES (for reference)\n")
            f.write(
                "# =============================================================================\n"
            )
            for key, value in computed_values.items():
                f.write(f"# {key}: {value}\n")

    return config_file


def _write_config_section(
    file_handle,
    section_name: str,
    config_dict: Dict[str, Any],
    param_names: List[str],
    section_number: int = 1,
) -> None:
    """Write a configuration section to file."""

    file_handle.write(
        "# =============================================================================\n"
    )
    file_handle.write(f"# {section_number}. {section_name}\n")
    file_handle.write(
        "# =============================================================================\n"
    )

    for param in param_names:
        if param in config_dict:
            value = config_dict[param]
            file_handle.write(f"{param} = {repr(value)}\n")

    file_handle.write("\n")


def create_config_dict_from_notebook_vars(**kwargs) -> Dict[str, Any]:
    """
    Create a configuration dictionary from analysis variables.

    Parameters:
    -----------
    **kwargs : various
        Configuration variables overriding the defaults

    Returns:
    --------
    dict
        Configuration dictionary
    """

    config_template = {
        # Input files
        "targets_file": "targets.txt",
        "data_dir": ".",
        "expression_file": None,
        # Normalization
        "normalization_method": "rma",
        "background_correct": True,
        "quantile_normalize": True,
        # Experimental design
        "factor_columns": ["estrogen", "time.h"],
        "sample_column": "Sample",
        "parameterization": "group_means",
        "reference_level": "absent10",
        # Contrasts
        "contrasts": {
            "E10": "present10-absent10",
            "E48": "present48-absent48",
            "Time": "absent48-absent10",
        },
        # Empirical Bayes
        "proportion": 0.01,
        "stdev_coef_lim": (0.1, 4),
        "trend": False,
        # Significance thresholds
        "adjust_method": "BH",
        "decide_method": "separate",
        "p_value_threshold": 0.05,
        "lfc_threshold": 0.0,
        # Output settings
        "top_n": 10,
        "sort_by": "t",
        "export_results": True,
        "output_prefix": "microarray_analysis",
    }

    config_dict = config_template.copy()
    config_dict.update(kwargs)

    return config_dict


def config_dict_from_statistical_config(config, **kwargs) -> Dict[str, Any]:
    """Configuration dictionary holding the fields of a StatisticalConfig plus extra values."""
    fields = {
        name: getattr(config, name)
        for name in (
            "factor_columns", "sample_column", "parameterization", "reference_level",
            "contrasts", "adjust_method", "decide_method", "p_value_threshold",
            "lfc_threshold", "proportion", "stdev_coef_lim", "trend", "top_n",
            "sort_by", "normalization_method",
        )
    }
    fields.update(kwargs)
    return create_config_dict_from_notebook_vars(**fields)


def export_complete_analysis(
    analysis_results: Dict[str, Any],
    expression: pd.DataFrame,
    targets: pd.DataFrame,
    config_dict: Dict[str, Any],
    output_prefix: str = "microarray_analysis",
    analysis_description: str = "Factorial microarray analysis",
) -> Dict[str, str]:
    """
    Export complete analysis including data, results, and timestamped configuration.

    Parameters:
    -----------
    analysis_results : dict
        Output of run_comprehensive_statistical_analysis()
    expression : pd.DataFrame
        Normalized log2 expression
    targets : pd.DataFrame
        Sample metadata
    config_dict : dict
        Complete configuration dictionary
    output_prefix : str
        Prefix for output filenames
    analysis_description : str
        Description for the configuration header

    Returns:
    --------
    dict
        Dictionary of all exported files
    """

    exported_files = export_analysis_results(
        expression=expression,
        targets=targets,
        top_tables=analysis_results.get("top_tables"),
        decisions=analysis_results.get("decisions"),
        venn=analysis_results.get("venn_counts"),
        output_prefix=output_prefix,
    )

    summary_file = export_significant_genes_summary(
        analysis_results.get("top_tables", {}),
        p_value_threshold=config_dict.get("p_value_threshold", 0.05),
        lfc_threshold=config_dict.get("lfc_threshold", 0.0),
        output_prefix=output_prefix,
    )
    if summary_file:
        exported_files["significant_genes"] = summary_file

    computed_values = {
        "Total genes analyzed": expression.shape[0],
        "Total arrays": expression.shape[1],
    }
    fit = analysis_results.get("moderated_fit")
    if fit is not None:
        computed_values["Prior degrees of freedom"] = round(float(fit.df_prior), 4)
    design = analysis_results.get("design")
    if design is not None:
        computed_values["Design columns"] = list(design.columns)

    config_file = export_timestamped_config(
        config_dict=config_dict,
        output_prefix=output_prefix,
        analysis_description=analysis_description,
        computed_values=computed_values,
    )
    exported_files["configuration"] = config_file

    _print_export_summary(exported_files)

    return exported_files


def _print_export_summary(exported_files: Dict[str, str]) -> None:
    """Print a summary of exported files."""

    print("\n" + "=" * 60)
    print("✓ All analysis results and configuration exported successfully!")
    print("Files created:")
    for key, path in exported_files.items():
        print(f"  • {path} - {key.replace('_', ' ')}")
    print("=" * 60)

    if "configuration" in exported_files:
        print("\nREPRODUCIBILITY TIP:")
        print(f"Copy the configuration variables from: {exported_files['configuration']}")
        print("or load them with exec(open(config_file).read())")
