"""
Data Import Module for Microarray Analysis Toolkit

Functions for loading the targets file, per-array probe intensity files and
precomputed expression matrices.
"""

import pandas as pd
import re
import os
from typing import Dict, List, Optional

from .validation import SampleMatchingError, validate_targets_data_consistency

ARRAY_FILE_EXTENSIONS = ('.csv.gz', '.txt.gz', '.cel.gz', '.csv', '.txt', '.tsv', '.cel')


def sample_name_from_file(file_name: str) -> str:
    """
    Derive a sample name from an array file name.

    Strips any directory part and a known array/table extension:
    ``data/high10-1.CEL`` -> ``high10-1``.
    """
    base_name = os.path.basename(str(file_name).strip())
    lower_name = base_name.lower()
    for extension in ARRAY_FILE_EXTENSIONS:
        if lower_name.endswith(extension):
            return base_name[:-len(extension)]
    return base_name


def load_targets(targets_file: str, sep: Optional[str] = None,
                 file_column: str = "FileName") -> pd.DataFrame:
    """
    Load the targets file describing each array.

    Parameters:
    -----------
    targets_file : str
        Path to the targets table (tab-delimited ``.txt`` or comma-delimited ``.csv``)
    sep : str, optional
        Field separator. Auto-detected from the extension if None
    file_column : str
        Column naming the intensity file of each array

    Returns:
    --------
    pd.DataFrame
        Targets table with an added ``Sample`` column derived from ``file_column``
    """

    print("=== LOADING TARGETS ===\n")

    if not os.path.exists(targets_file):
        raise FileNotFoundError(f"Targets file not found: {targets_file}")

    if sep is None:
        sep = "," if targets_file.lower().endswith(".csv") else "\t"

    try:
        targets = pd.read_csv(targets_file, sep=sep, dtype=str)
    except Exception as e:
        raise ValueError(f"Error loading targets file: {e}")

    targets.columns = [str(col).strip() for col in targets.columns]
    if file_column not in targets.columns:
        raise ValueError(
            f"Targets file has no '{file_column}' column. Found: {list(targets.columns)}"
        )

    targets = targets.apply(lambda col: col.str.strip() if col.dtype == object else col)
    targets["Sample"] = targets[file_column].apply(sample_name_from_file)

    print(f"✓ Loaded targets: {targets.shape}")
    for col in targets.columns:
        if col in (file_column, "Sample"):
            continue
        print(f"  {col}: {targets[col].value_counts().to_dict()}")

    return targets


def read_intensity_file(file_path: str) -> pd.Series:
    """
    Read one array's probe-level intensities.

    The file holds one row per probe with columns ``probeset``, ``probe`` and
    ``intensity``.

    Returns:
    --------
    pd.Series indexed by (probeset, probe)
    """
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"Intensity file not found: {file_path}")

    try:
        raw = pd.read_csv(file_path)
    except Exception as e:
        raise ValueError(f"Error loading intensity file {file_path}: {e}")

    raw.columns = [str(col).strip().lower() for col in raw.columns]
    missing = [col for col in ("probeset", "probe", "intensity") if col not in raw.columns]
    if missing:
        raise ValueError(f"Intensity file {file_path} is missing columns: {missing}")

    raw["probeset"] = raw["probeset"].astype(str)
    raw["probe"] = raw["probe"].astype(str)
    intensities = pd.to_numeric(raw["intensity"], errors="coerce")
    if intensities.isna().any():
        bad_rows = int(intensities.isna().sum())
        raise ValueError(f"Intensity file {file_path} has {bad_rows} non-numeric intensities")

    series = pd.Series(
        intensities.values,
        index=pd.MultiIndex.from_frame(raw[["probeset", "probe"]]),
        name=os.path.basename(file_path),
    )
    if series.index.duplicated().any():
        raise ValueError(f"Intensity file {file_path} has duplicated probe identifiers")
    return series


def read_intensity_files(targets: pd.DataFrame, data_dir: str = ".",
                         file_column: str = "FileName",
                         sample_column: str = "Sample") -> pd.DataFrame:
    """
    Read the probe-level intensity file of every array listed in targets.

    Parameters:
    -----------
    targets : pd.DataFrame
        Targets table from load_targets()
    data_dir : str
        Directory holding the intensity files
    file_column : str
        Column in targets naming each file
    sample_column : str
        Column in targets naming each sample (used as column names)

    Returns:
    --------
    pd.DataFrame
        Probes x samples raw intensities indexed by (probeset, probe),
        columns in targets order
    """

    print(f"Reading {len(targets)} intensity files from {data_dir}...")

    columns = {}
    reference_index = None
    for _, row in targets.iterrows():
        file_path = os.path.join(data_dir, row[file_column])
        series = read_intensity_file(file_path)

        if reference_index is None:
            reference_index = series.index
        elif not series.index.sort_values().equals(reference_index.sort_values()):
            raise SampleMatchingError(
                f"Array {row[file_column]} has a different probe layout than "
                f"{targets[file_column].iloc[0]}"
            )
        columns[row[sample_column]] = series.reindex(reference_index)

    probe_data = pd.DataFrame(columns, index=reference_index)
    n_probesets = probe_data.index.get_level_values("probeset").nunique()
    print(f"✓ Loaded {probe_data.shape[0]} probes in {n_probesets} probesets "
          f"across {probe_data.shape[1]} arrays")

    return probe_data


def load_expression_matrix(expression_file: str, index_col: int = 0) -> pd.DataFrame:
    """
    Load a precomputed genes x samples log-expression matrix.

    Parameters:
    -----------
    expression_file : str
        CSV file with gene identifiers in the first column
    index_col : int
        Column used as the gene index

    Returns:
    --------
    pd.DataFrame : float expression values
    """
    if not os.path.exists(expression_file):
        raise FileNotFoundError(f"Expression file not found: {expression_file}")

    try:
        expression = pd.read_csv(expression_file, index_col=index_col)
    except Exception as e:
        raise ValueError(f"Error loading expression file: {e}")

    non_numeric = [col for col in expression.columns
                   if not pd.api.types.is_numeric_dtype(expression[col])]
    if non_numeric:
        raise ValueError(f"Expression file has non-numeric sample columns: {non_numeric}")

    expression.index = expression.index.astype(str)
    expression.index.name = "Gene"
    print(f"✓ Loaded expression matrix: {expression.shape[0]} genes x {expression.shape[1]} samples")
    return expression.astype(float)


def clean_sample_names(sample_columns: List[str], common_prefix: Optional[str] = None,
                       common_suffix: Optional[str] = None) -> Dict[str, str]:
    """
    Clean sample names by removing common prefixes/suffixes.

    Parameters:
    -----------
    sample_columns : List[str]
        List of sample column names
    common_prefix : str, optional
        Common prefix to remove
    common_suffix : str, optional
        Common suffix to remove

    Returns:
    --------
    Dict[str, str] : Mapping from original to cleaned names
    """

    cleaned_names = {}

    if common_prefix is None:
        if len(sample_columns) > 1:
            prefix = os.path.commonprefix(sample_columns)
            prefix = re.sub(r'[^a-zA-Z0-9]+$', '', prefix)
            common_prefix = prefix if len(prefix) > 0 else ""
        else:
            common_prefix = ""

    if common_suffix is None:
        if len(sample_columns) > 1:
            reversed_names = [name[::-1] for name in sample_columns]
            suffix = os.path.commonprefix(reversed_names)[::-1]
            suffix = re.sub(r'^[^a-zA-Z0-9]+', '', suffix)
            common_suffix = suffix if len(suffix) > 0 else ""
        else:
            common_suffix = ""

    print(f"Removing common prefix: '{common_prefix}'")
    print(f"Removing common suffix: '{common_suffix}'")

    for original_name in sample_columns:
        cleaned_name = original_name

        if common_prefix and cleaned_name.startswith(common_prefix):
            cleaned_name = cleaned_name[len(common_prefix):]

        if common_suffix and cleaned_name.endswith(common_suffix):
            cleaned_name = cleaned_name[:-len(common_suffix)]

        cleaned_name = re.sub(r'^[^a-zA-Z0-9]+', '', cleaned_name)
        cleaned_name = re.sub(r'[^a-zA-Z0-9]+$', '', cleaned_name)

        cleaned_names[original_name] = cleaned_name

    return cleaned_names


def align_expression_to_targets(expression: pd.DataFrame, targets: pd.DataFrame,
                                sample_column: str = "Sample") -> pd.DataFrame:
    """
    Reorder expression columns to follow the row order of the targets table.

    Columns are matched on exact sample names first. When that fails, the
    file-name form of each column (extension stripped) is tried.

    Raises:
    -------
    SampleMatchingError: If any targets sample has no expression column
    """
    rename_map = {}
    target_samples = set(targets[sample_column].astype(str))
    for col in expression.columns:
        if str(col) not in target_samples:
            stripped = sample_name_from_file(col)
            if stripped in target_samples:
                rename_map[col] = stripped
    if rename_map:
        print(f"Matched {len(rename_map)} columns after stripping file extensions")
        expression = expression.rename(columns=rename_map)

    validation_results = validate_targets_data_consistency(
        targets, list(expression.columns), sample_column=sample_column, verbose=False
    )
    if not validation_results['is_valid']:
        raise SampleMatchingError("\n".join(validation_results['errors']))
    for warning in validation_results['warnings']:
        print(f"Warning: {warning}")

    ordered = [str(s) for s in targets[sample_column].tolist()]
    return expression[ordered]
