"""
Data Normalization Module for Microarray Analysis Toolkit

Functions for turning raw probe intensities into a probeset x sample log2
expression matrix (RMA: background correction, quantile normalization,
log transformation and median-polish summarization).
"""

import warnings

import pandas as pd
import numpy as np
from scipy import stats
from typing import Dict, Optional, Any


def get_normalization_characteristics() -> Dict[str, Dict[str, Any]]:
    """
    Get characteristics of each normalization method.

    Returns:
    --------
    Dict[str, Dict[str, Any]]
        Dictionary with normalization method characteristics
    """
    return {
        "rma": {
            "preserves_scale": False,
            "log_transformed": True,
            "description": "RMA - background corrected, quantile normalized, log2, median polish",
        },
        "quantile": {
            "preserves_scale": True,
            "log_transformed": False,
            "description": "Quantile normalization - keeps data on original scale",
        },
        "log2": {
            "preserves_scale": False,
            "log_transformed": True,
            "description": "Precomputed log2 expression values",
        },
        "none": {
            "preserves_scale": True,
            "log_transformed": False,
            "description": "No normalization applied",
        },
    }


def is_normalization_log_transformed(normalization_method: str) -> bool:
    """
    Check if a normalization method produces log-transformed data.

    Parameters:
    -----------
    normalization_method : str
        Name of the normalization method

    Returns:
    --------
    bool
        True if method produces log-transformed data, False otherwise
    """
    characteristics = get_normalization_characteristics()
    method_lower = normalization_method.lower()

    if method_lower in characteristics:
        return characteristics[method_lower]["log_transformed"]
    else:
        # Unknown method - assume it's not log transformed
        return False


def _max_density(values: np.ndarray, n_points: int = 1024) -> float:
    """Location of the maximum of a Gaussian kernel density estimate."""
    values = values[np.isfinite(values)]
    if len(values) < 2 or np.ptp(values) == 0:
        warnings.warn("Too few distinct values for a density estimate; using the median")
        return float(np.median(values)) if len(values) else 0.0

    kde = stats.gaussian_kde(values)
    grid = np.linspace(values.min(), values.max(), n_points)
    return float(grid[np.argmax(kde(grid))])


def estimate_background_parameters(intensities: np.ndarray) -> Dict[str, float]:
    """
    Estimate the normal + exponential convolution parameters of one array.

    The background mean is the mode of the lower part of the intensity
    distribution, the background sd comes from the values below that mode
    and the exponential rate from the mode of the values above it.

    Returns:
    --------
    Dict with 'mu', 'sigma' and 'alpha'
    """
    intensities = np.asarray(intensities, dtype=float)

    mode = _max_density(intensities)
    lower = intensities[intensities < mode]
    if len(lower) >= 2:
        mode = _max_density(lower)

    background = intensities[intensities < mode] - mode
    if len(background) >= 2:
        sigma = np.sqrt(np.sum(background ** 2) / (len(background) - 1)) * np.sqrt(2)
    else:
        sigma = np.std(intensities)

    signal = intensities[intensities > mode] - mode
    signal_mode = _max_density(signal) if len(signal) else 0.0
    if signal_mode <= 0:
        signal_mode = np.mean(signal) if len(signal) and np.mean(signal) > 0 else 1.0

    if sigma <= 0:
        sigma = 1e-6

    return {"mu": float(mode), "sigma": float(sigma), "alpha": float(1.0 / signal_mode)}


def rma_background_correct(probe_data: pd.DataFrame) -> pd.DataFrame:
    """
    RMA convolution background correction, one array at a time.

    Each observed intensity is modelled as normal background plus
    exponential signal; the corrected value is the conditional expectation
    of the signal given the observation, which is always positive.

    Parameters:
    -----------
    probe_data : pd.DataFrame
        Raw (linear scale) probe intensities, probes x arrays

    Returns:
    --------
    pd.DataFrame : Background corrected intensities
    """
    print("Applying RMA background correction...")

    corrected = pd.DataFrame(index=probe_data.index, columns=probe_data.columns, dtype=float)
    for sample in probe_data.columns:
        values = probe_data[sample].to_numpy(dtype=float)
        params = estimate_background_parameters(values)
        mu, sigma, alpha = params["mu"], params["sigma"], params["alpha"]

        a = values - mu - alpha * sigma ** 2
        # phi/Phi evaluated on the log scale so far-left tails do not underflow
        ratio = np.exp(stats.norm.logpdf(a / sigma) - stats.norm.logcdf(a / sigma))
        # cancellation can round the far-left tail to zero before log2
        corrected[sample] = np.maximum(a + sigma * ratio, 1e-6)

    print(f"Background correction completed for {len(probe_data.columns)} arrays")
    return corrected


def quantile_normalize(data: pd.DataFrame) -> pd.DataFrame:
    """
    Quantile normalization - makes the distribution of each sample identical.

    Parameters:
    -----------
    data : pd.DataFrame
        Intensity data, rows x samples, no missing values

    Returns:
    --------
    pd.DataFrame : Quantile normalized data
    """
    print("Applying quantile normalization...")

    data_matrix = data.to_numpy(dtype=float)

    # Sort each column
    sorted_indices = np.argsort(data_matrix, axis=0, kind="mergesort")
    sorted_data = np.sort(data_matrix, axis=0)

    # Calculate row means (quantile means)
    quantile_means = np.mean(sorted_data, axis=1)

    # Replace sorted values with quantile means, restoring original order
    normalized_matrix = np.empty_like(data_matrix)
    for i in range(data_matrix.shape[1]):
        normalized_matrix[sorted_indices[:, i], i] = quantile_means

    print(f"Quantile normalization completed for {len(data.columns)} samples")

    return pd.DataFrame(normalized_matrix, index=data.index, columns=data.columns)


def log_transform(
    data: pd.DataFrame, base: str = "log2", pseudocount: Optional[float] = None
) -> pd.DataFrame:
    """
    Apply log transformation to data.

    Parameters:
    -----------
    data : pd.DataFrame
        Data to transform
    base : str
        Log base ('log2', 'log10', or 'ln')
    pseudocount : float, optional
        Small value to add before log transform (auto-calculated if None)

    Returns:
    --------
    pd.DataFrame : Log-transformed data
    """

    # Calculate pseudocount if not provided
    if pseudocount is None:
        min_positive = data[data > 0].min().min()
        pseudocount = min_positive / 10 if min_positive > 0 else 1e-6

    data_with_pseudo = data + pseudocount

    if base == "log2":
        transformed_data = np.log2(data_with_pseudo)
    elif base == "log10":
        transformed_data = np.log10(data_with_pseudo)
    elif base == "ln":
        transformed_data = np.log(data_with_pseudo)
    else:
        raise ValueError("base must be 'log2', 'log10', or 'ln'")

    print(f"Applied {base} transformation with pseudocount {pseudocount}")

    return pd.DataFrame(transformed_data, index=data.index, columns=data.columns)


def median_polish(matrix: np.ndarray, max_iter: int = 10, eps: float = 0.01) -> Dict[str, Any]:
    """
    Tukey median polish of a probes x arrays matrix.

    Fits ``x[i, j] = overall + row[i] + col[j] + residual[i, j]`` by
    alternately sweeping out row and column medians.

    Parameters:
    -----------
    matrix : np.ndarray
        Log-scale values, probes x arrays
    max_iter : int
        Maximum number of sweeps
    eps : float
        Relative change in the sum of absolute residuals used as convergence criterion

    Returns:
    --------
    Dict with 'overall', 'row', 'col', 'residuals' and 'converged'
    """
    z = np.array(matrix, dtype=float)
    n_rows, n_cols = z.shape
    overall = 0.0
    row_effect = np.zeros(n_rows)
    col_effect = np.zeros(n_cols)
    old_sum = 0.0
    converged = False

    for _ in range(max_iter):
        row_delta = np.median(z, axis=1)
        z -= row_delta[:, None]
        row_effect += row_delta
        delta = np.median(col_effect)
        col_effect -= delta
        overall += delta

        col_delta = np.median(z, axis=0)
        z -= col_delta[None, :]
        col_effect += col_delta
        delta = np.median(row_effect)
        row_effect -= delta
        overall += delta

        new_sum = np.sum(np.abs(z))
        converged = new_sum == 0 or abs(new_sum - old_sum) < eps * new_sum
        if converged:
            break
        old_sum = new_sum

    return {
        "overall": overall,
        "row": row_effect,
        "col": col_effect,
        "residuals": z,
        "converged": converged,
    }


def summarize_probesets(log_probe_data: pd.DataFrame, level: str = "probeset") -> pd.DataFrame:
    """
    Summarize log-scale probe values into one value per probeset and array.

    Parameters:
    -----------
    log_probe_data : pd.DataFrame
        Log2 probe values indexed by (probeset, probe)
    level : str
        Index level identifying the probeset

    Returns:
    --------
    pd.DataFrame : probesets x arrays expression matrix (overall + array effect)
    """
    print("Summarizing probesets by median polish...")

    summaries = {}
    not_converged = 0
    for probeset, block in log_probe_data.groupby(level=level, sort=False):
        fit = median_polish(block.to_numpy(dtype=float))
        if not fit["converged"]:
            not_converged += 1
        summaries[probeset] = fit["overall"] + fit["col"]

    expression = pd.DataFrame.from_dict(summaries, orient="index", columns=log_probe_data.columns)
    expression.index.name = "Gene"

    if not_converged:
        print(f"Warning: median polish did not converge for {not_converged} probesets")
    print(f"Summarized {expression.shape[0]} probesets")
    return expression


def calculate_normalization_stats(
    data: pd.DataFrame, normalized_data: pd.DataFrame
) -> Dict[str, float]:
    """
    Calculate statistics to assess normalization effectiveness.

    Both inputs are expected on the log2 scale.

    Returns:
    --------
    Dict[str, float] : Normalization statistics
    """
    stats_dict = {
        "original_median_range": (
            data.median(axis=0).max() - data.median(axis=0).min()
        ),
        "normalized_median_range": (
            normalized_data.median(axis=0).max() - normalized_data.median(axis=0).min()
        ),
        "original_iqr_median": (
            data.quantile(0.75) - data.quantile(0.25)
        ).median(),
        "normalized_iqr_median": (
            normalized_data.quantile(0.75) - normalized_data.quantile(0.25)
        ).median(),
    }

    if stats_dict["original_median_range"] > 0:
        stats_dict["median_range_reduction"] = 1 - (
            stats_dict["normalized_median_range"] / stats_dict["original_median_range"]
        )
    else:
        stats_dict["median_range_reduction"] = 0.0

    return stats_dict


def rma(probe_data: pd.DataFrame, background: bool = True, normalize: bool = True) -> pd.DataFrame:
    """
    Robust Multi-array Average: raw probe intensities to log2 expression.

    Parameters:
    -----------
    probe_data : pd.DataFrame
        Raw probe intensities indexed by (probeset, probe), one column per array
    background : bool
        Apply convolution background correction
    normalize : bool
        Apply quantile normalization

    Returns:
    --------
    pd.DataFrame : probesets x arrays log2 expression matrix
    """
    print("=" * 60)
    print("RMA NORMALIZATION")
    print("=" * 60)

    if probe_data is None or probe_data.size == 0:
        raise ValueError("Probe-level data is empty")
    if probe_data.isna().all().any():
        empty = probe_data.columns[probe_data.isna().all()].tolist()
        raise ValueError(f"Arrays with no intensities: {empty}")
    if probe_data.isna().any().any():
        raise ValueError("Probe-level data contains missing intensities")
    if "probeset" not in probe_data.index.names:
        raise ValueError("Probe-level data must be indexed by (probeset, probe)")

    raw_log = np.log2(probe_data.clip(lower=1e-6))

    corrected = rma_background_correct(probe_data) if background else probe_data.astype(float)
    normalized = quantile_normalize(corrected) if normalize else corrected
    log_probe_data = log_transform(normalized, base="log2", pseudocount=0.0)
    expression = summarize_probesets(log_probe_data)

    norm_stats = calculate_normalization_stats(raw_log, log_probe_data)
    print(f"Median range across arrays: {norm_stats['original_median_range']:.3f} -> "
          f"{norm_stats['normalized_median_range']:.3f}")
    print(f"✓ RMA complete: {expression.shape[0]} genes x {expression.shape[1]} arrays")

    return expression
