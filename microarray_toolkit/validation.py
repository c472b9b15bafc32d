"""
Data Validation Module for Microarray Analysis Toolkit

Functions for validating the targets table against the expression data and
providing interpretable error messages when samples are missing, duplicated
or the experimental factors are incomplete.
"""

import pandas as pd
from typing import Dict, List, Optional


class SampleMatchingError(Exception):
    """Custom exception for sample matching issues."""
    def __init__(self, message):
        super().__init__(message)


class DesignMatrixError(Exception):
    """Custom exception for design matrices that cannot be fitted."""
    def __init__(self, message):
        super().__init__(message)


class ContrastMatrixError(Exception):
    """Custom exception for malformed contrasts."""
    def __init__(self, message):
        super().__init__(message)


def validate_targets(
    targets: pd.DataFrame,
    factor_columns: List[str],
    sample_column: str = "Sample",
) -> None:
    """
    Check that a targets table can be used to build a design matrix.

    Parameters:
    -----------
    targets : pd.DataFrame
        One row per array
    factor_columns : List[str]
        Columns holding the experimental factors
    sample_column : str
        Column naming the intensity file / sample of each row

    Raises:
    -------
    ValueError: If required columns are missing or the table is empty
    SampleMatchingError: If sample names are duplicated or factors are missing
    """
    if targets is None or len(targets) == 0:
        raise ValueError("Targets table is empty")

    required_cols = [sample_column] + list(factor_columns)
    missing_cols = [col for col in required_cols if col not in targets.columns]
    if missing_cols:
        raise ValueError(
            f"Missing required targets columns: {missing_cols}. "
            f"Available columns: {list(targets.columns)}"
        )

    duplicated = targets[sample_column][targets[sample_column].duplicated()].tolist()
    if duplicated:
        raise SampleMatchingError(f"Duplicated sample names in targets: {duplicated}")

    for col in factor_columns:
        missing = targets.loc[targets[col].isna(), sample_column].tolist()
        if missing:
            raise SampleMatchingError(
                f"Factor '{col}' is missing for samples: {missing}"
            )


def validate_targets_data_consistency(
    targets: pd.DataFrame,
    data_columns: List[str],
    sample_column: str = "Sample",
    verbose: bool = True,
) -> Dict:
    """
    Validate consistency between the targets table and expression data columns.

    Parameters:
    -----------
    targets : pd.DataFrame
        Sample metadata, one row per array
    data_columns : List[str]
        Column names of the expression (or probe-level) data
    sample_column : str
        Column in targets holding sample names
    verbose : bool, default True
        Whether to print detailed validation results

    Returns:
    --------
    Dict containing validation results and diagnostic information
    """

    results = {
        'is_valid': True,
        'errors': [],
        'warnings': [],
        'diagnostics': {}
    }

    if verbose:
        print("TARGETS/DATA CONSISTENCY VALIDATION")
        print("=" * 50)

    if sample_column not in targets.columns:
        results['errors'].append(f"Sample column '{sample_column}' not found in targets")
        results['is_valid'] = False
        target_samples = []
    else:
        target_samples = [str(s) for s in targets[sample_column].tolist()]

    data_columns = [str(c) for c in data_columns]
    found_samples = [s for s in target_samples if s in data_columns]
    missing_samples = [s for s in target_samples if s not in data_columns]
    extra_columns = [c for c in data_columns if c not in target_samples]

    if missing_samples:
        error_msg = (f"Found {len(missing_samples)} samples in targets that have no corresponding "
                     f"columns in the data: {missing_samples[:5]}{'...' if len(missing_samples) > 5 else ''}")
        results['errors'].append(error_msg)
        results['is_valid'] = False

    if extra_columns:
        results['warnings'].append(
            f"{len(extra_columns)} data columns have no targets entry and will be ignored: "
            f"{extra_columns[:5]}{'...' if len(extra_columns) > 5 else ''}"
        )

    results['diagnostics'] = {
        'total_target_samples': len(target_samples),
        'samples_found_in_data': len(found_samples),
        'samples_missing_from_data': len(missing_samples),
        'extra_data_columns': len(extra_columns),
        'found_samples': found_samples,
        'missing_samples': missing_samples,
        'extra_columns': extra_columns,
    }

    if verbose:
        diag = results['diagnostics']
        print(f"Target samples: {diag['total_target_samples']}")
        print(f"  Found in data: {diag['samples_found_in_data']}")
        print(f"  Missing from data: {diag['samples_missing_from_data']}")
        print(f"  Data columns without targets entry: {diag['extra_data_columns']}")

        for warning in results['warnings']:
            print(f"  Warning: {warning}")

        if results['errors']:
            print("\nVALIDATION FAILED")
            for error in results['errors']:
                print(f"  ERROR: {error}")
        else:
            print("\n✓ VALIDATION PASSED")

    return results


def generate_sample_matching_diagnostic_report(
    validation_results: Dict,
    output_file: Optional[str] = None
) -> str:
    """
    Generate a detailed diagnostic report for sample matching issues.

    Parameters:
    -----------
    validation_results : Dict
        Results from validate_targets_data_consistency
    output_file : str, optional
        Path to save the report

    Returns:
    --------
    str: Formatted diagnostic report
    """

    diag = validation_results['diagnostics']

    report = []
    report.append("SAMPLE MATCHING DIAGNOSTIC REPORT")
    report.append("=" * 50)
    report.append(f"Generated on: {pd.Timestamp.now().strftime('%Y-%m-%d %H:%M:%S')}")
    report.append("")

    report.append("SUMMARY STATISTICS")
    report.append("-" * 30)
    report.append(f"Total samples in targets: {diag['total_target_samples']}")
    report.append(f"Samples found in data: {diag['samples_found_in_data']}")
    report.append(f"Samples missing from data: {diag['samples_missing_from_data']}")
    if diag['total_target_samples'] > 0:
        report.append(f"Match rate: {diag['samples_found_in_data']/diag['total_target_samples']*100:.1f}%")
    report.append("")

    if diag['missing_samples']:
        report.append("MISSING SAMPLES DETAILS")
        report.append("-" * 30)
        for i, sample in enumerate(diag['missing_samples'][:10]):
            report.append(f"{i+1}. {sample}")
        if len(diag['missing_samples']) > 10:
            report.append(f"... and {len(diag['missing_samples']) - 10} more")
        report.append("")

    if diag['extra_columns']:
        report.append("UNMATCHED DATA COLUMNS")
        report.append("-" * 30)
        for column in diag['extra_columns'][:10]:
            report.append(f"  {column}")
        report.append("")

    report.append("RECOMMENDATIONS")
    report.append("-" * 30)
    if diag['samples_missing_from_data'] > 0:
        report.append("1. Check that FileName entries in the targets file match the intensity files")
        report.append("2. Check for file extensions left in one source but not the other")
    if diag['extra_data_columns'] > 0:
        report.append("3. Add the unmatched arrays to the targets file or drop them from the data")
    if validation_results['is_valid']:
        report.append("✓ All samples successfully matched - no action needed")

    report_text = "\n".join(report)

    if output_file:
        with open(output_file, 'w', encoding='utf-8') as f:
            f.write(report_text)
        print(f"Diagnostic report saved to: {output_file}")

    return report_text
