"""
Microarray Analysis Toolkit
===========================

A Python library for differential expression analysis of factorial
microarray experiments. This toolkit provides a complete workflow from raw
probe intensities through RMA normalization, linear models, empirical Bayes
moderation, gene ranking and visualization.

QUICK START EXAMPLE:
-------------------
    import microarray_toolkit as mtk

    # 1. Load data
    targets = mtk.load_targets('targets.txt')
    probe_data = mtk.read_intensity_files(targets, data_dir='data')

    # 2. Normalize
    expression = mtk.rma(probe_data)

    # 3. Statistical analysis
    config = mtk.StatisticalConfig()
    results = mtk.run_comprehensive_statistical_analysis(expression, targets, config)
    mtk.display_analysis_summary(results, config)

    # 4. Visualization and export
    mtk.plot_volcano(results['top_tables']['E10'])
    mtk.export_complete_analysis(results, expression, targets,
                                 mtk.config_dict_from_statistical_config(config))

MODULE OVERVIEW:
===============

data_import
    Purpose: Load the targets table, per-array intensity files and expression matrices
    Key functions: load_targets(), read_intensity_files(), load_expression_matrix()
    Use when: Starting analysis

normalization
    Purpose: RMA background correction, quantile normalization, median polish
    Key functions: rma(), quantile_normalize(), median_polish()
    Use when: Raw probe intensities need to become a log2 expression matrix

design
    Purpose: Design matrices (patsy) and contrast matrices (inmoose.limma) from the targets table
    Key functions: model_matrix(), make_contrasts(), translate_contrasts()
    Use when: Setting up the model, checking a design before fitting

linear_model
    Purpose: Gene-wise least squares fits and contrast re-expression (inmoose.limma)
    Key functions: lm_fit(), contrasts_fit()

empirical_bayes
    Purpose: Variance moderation and moderated t, B and F statistics
    Key functions: ebayes(), squeeze_var(), fit_f_dist()

statistical_analysis
    Purpose: Configuration, ranking, decisions and the complete pipeline
    Key functions: run_comprehensive_statistical_analysis(), top_table(),
                   decide_tests(), StatisticalConfig()

visualization
    Purpose: Quality control plots and results visualization
    Key functions: plot_box_plot(), plot_ma(), plot_volcano(), plot_venn_diagram()

validation
    Purpose: Targets/data validation, exceptions and diagnostic reporting
    Key functions: validate_targets_data_consistency()

export
    Purpose: Export results and timestamped configurations
    Key functions: export_complete_analysis(), export_timestamped_config()

TYPICAL WORKFLOW:
================
1. mtk.load_targets() → Load sample metadata
2. mtk.read_intensity_files() → Load raw probe intensities
3. mtk.rma() → Normalize to log2 expression
4. mtk.model_matrix() / mtk.make_contrasts() → Design and contrasts
5. mtk.lm_fit() → mtk.contrasts_fit() → mtk.ebayes() → Moderated statistics
6. mtk.top_table() / mtk.decide_tests() → Rank and classify genes
7. mtk.plot_volcano() / mtk.plot_venn_diagram() → Visualize results
8. mtk.export_complete_analysis() → Export everything for reproducibility

Steps 4-6 are also available in one call as
mtk.run_comprehensive_statistical_analysis().

ERROR HANDLING:
==============
The toolkit fails fast with descriptive exceptions:
- SampleMatchingError: When targets and data samples don't match
- DesignMatrixError: When the design is rank deficient or has no residual df
- ContrastMatrixError: When a contrast is malformed or doesn't match the design
- Use mtk.validate_targets_data_consistency() to diagnose issues early
"""

# =============================================================================
# MODULE IMPORTS - Core functionality organized by analysis stage
# =============================================================================

from . import data_import          # Data loading and parsing
from . import normalization        # RMA normalization
from . import design               # Design and contrast matrices
from . import linear_model         # Gene-wise linear models
from . import empirical_bayes      # Variance moderation
from . import statistical_analysis # Ranking, decisions and pipeline
from . import visualization        # Plotting and visualization
from . import validation           # Data validation and error checking
from . import export               # Results export and configuration management

__version__ = "1.0.0"
__author__ = "Michael MacCoss Lab, University of Washington"

# =============================================================================
# CONVENIENCE IMPORTS - Most commonly used functions available at top level
# =============================================================================

# DATA LOADING - Essential functions for starting any analysis
from .data_import import (
    load_targets,                 # Main function: Load the targets table
    read_intensity_files,         # Load per-array probe intensities
    load_expression_matrix,       # Load a precomputed log2 expression matrix
    align_expression_to_targets,  # Order expression columns like the targets
    clean_sample_names            # Clean up sample column names automatically
)

# NORMALIZATION - From raw probe intensities to log2 expression
from .normalization import (
    rma,                     # Main function: Complete RMA
    rma_background_correct,  # Convolution background correction
    quantile_normalize,      # Force identical array distributions
    log_transform,           # Log transformation
    median_polish,           # Tukey median polish
    summarize_probesets      # Probe to probeset summarization
)

# DESIGN - Design and contrast matrices
from .design import (
    make_names,               # Identifier-safe level names
    build_group_factor,       # Combined treatment-time groups
    model_matrix,             # Group-means or reference design
    as_design_matrix,         # patsy DesignMatrix for inmoose
    check_full_rank,          # Detect unfittable designs
    make_contrasts,           # Contrast matrix from expressions
    translate_contrasts       # Group-means contrasts for a reference design
)

# MODEL FITTING - Linear models and empirical Bayes
from .linear_model import (
    LinearModelFit,  # Fit container
    lm_fit,          # Gene-wise least squares
    contrasts_fit    # Re-express a fit in contrasts
)
from .empirical_bayes import (
    ebayes,       # Moderated t, B and F statistics
    squeeze_var,  # Posterior variances
    fit_f_dist    # Prior estimation
)

# STATISTICAL ANALYSIS - Core statistical functions and configuration
from .statistical_analysis import (
    run_comprehensive_statistical_analysis, # Main function: Complete statistical analysis
    display_analysis_summary,              # Display analysis results summary
    StatisticalConfig,                     # Configuration class for analysis parameters
    top_table,                             # Ranked gene table
    decide_tests,                          # Up/down/not-significant calls
    summarize_test_results,                # Call counts per contrast
    venn_counts,                           # Overlap of significant genes
    manual_log_fold_change,                # Group mean differences
    compare_parameterizations              # Check both designs agree
)

# DATA VALIDATION - Data validation and error handling
from .validation import (
    validate_targets_data_consistency,          # Main validation: Check targets vs data
    generate_sample_matching_diagnostic_report, # Detailed diagnostic reports
    SampleMatchingError,                        # Exception: Samples don't match
    DesignMatrixError,                          # Exception: Unfittable design
    ContrastMatrixError                         # Exception: Malformed contrast
)

# DATA EXPORT - Save results and create reproducible analysis records
from .export import (
    export_complete_analysis,              # Main function: Export everything (data + config)
    export_analysis_results,               # Export data files only
    export_timestamped_config,             # Export configuration with timestamp
    create_config_dict_from_notebook_vars, # Create config from variables
    config_dict_from_statistical_config    # Create config from a StatisticalConfig
)

# VISUALIZATION - Quality control and results plots
from .visualization import (
    plot_box_plot,                   # QC plot: Array intensity distributions
    plot_normalization_comparison,   # QC plot: Before/after normalization
    plot_sample_correlation_heatmap, # QC plot: Array correlations
    plot_ma,                         # Results: logFC vs average expression
    plot_volcano,                    # Results: Volcano plot
    plot_venn_diagram                # Results: Overlap between contrasts
)

# =============================================================================
# PUBLIC API - All functions available for import
# =============================================================================

__all__ = [
    # MODULES
    "data_import",
    "normalization",
    "design",
    "linear_model",
    "empirical_bayes",
    "statistical_analysis",
    "visualization",
    "validation",
    "export",

    # DATA LOADING
    "load_targets",
    "read_intensity_files",
    "load_expression_matrix",
    "align_expression_to_targets",
    "clean_sample_names",

    # NORMALIZATION
    "rma",
    "rma_background_correct",
    "quantile_normalize",
    "log_transform",
    "median_polish",
    "summarize_probesets",

    # DESIGN
    "make_names",
    "build_group_factor",
    "model_matrix",
    "as_design_matrix",
    "check_full_rank",
    "make_contrasts",
    "translate_contrasts",

    # MODEL FITTING
    "LinearModelFit",
    "lm_fit",
    "contrasts_fit",
    "ebayes",
    "squeeze_var",
    "fit_f_dist",

    # STATISTICAL ANALYSIS
    "run_comprehensive_statistical_analysis", # MAIN FUNCTION: Complete analysis
    "display_analysis_summary",
    "StatisticalConfig",
    "top_table",
    "decide_tests",
    "summarize_test_results",
    "venn_counts",
    "manual_log_fold_change",
    "compare_parameterizations",

    # VALIDATION
    "validate_targets_data_consistency",
    "generate_sample_matching_diagnostic_report",
    "SampleMatchingError",
    "DesignMatrixError",
    "ContrastMatrixError",

    # EXPORT
    "export_complete_analysis",
    "export_analysis_results",
    "export_timestamped_config",
    "create_config_dict_from_notebook_vars",
    "config_dict_from_statistical_config",

    # VISUALIZATION
    "plot_box_plot",
    "plot_normalization_comparison",
    "plot_sample_correlation_heatmap",
    "plot_ma",
    "plot_volcano",
    "plot_venn_diagram",
]
