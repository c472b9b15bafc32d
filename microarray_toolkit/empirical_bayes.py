"""
Empirical Bayes Module for Microarray Analysis Toolkit

Moderation of gene-wise residual variances towards a common prior
(scaled inverse chi-square) estimated from all genes, and the moderated
t, B and F statistics computed from the posterior variances. F statistics
and nested F classification are delegated to inmoose.limma.classifyTestsF.
"""

import copy
import warnings

import inmoose.limma as imo
import numpy as np
import pandas as pd
from scipy import stats
from scipy.special import digamma, polygamma
from statsmodels.nonparametric.smoothers_lowess import lowess
from typing import Dict, Optional, Tuple

from .linear_model import LinearModelFit


def trigamma_inverse(x):
    """
    Solve ``trigamma(y) = x`` for y by Newton iteration.

    Parameters:
    -----------
    x : float or array-like
        Positive values

    Returns:
    --------
    np.ndarray (or float for scalar input)
    """
    scalar_input = np.ndim(x) == 0
    x = np.atleast_1d(np.asarray(x, dtype=float)).copy()
    y = np.full_like(x, np.nan)

    finite = np.isfinite(x) & (x >= 0)
    large = finite & (x > 1e7)
    small = finite & (x < 1e-6)
    y[large] = 1.0 / np.sqrt(x[large])
    y[small] = 1.0 / x[small]
    y[x == np.inf] = 0.0

    todo = finite & ~large & ~small
    if todo.any():
        xt = x[todo]
        yt = 0.5 + 1.0 / xt
        for _ in range(50):
            tri = polygamma(1, yt)
            dif = tri * (1 - tri / xt) / polygamma(2, yt)
            yt = yt + dif
            if np.max(-dif / yt) < 1e-8:
                break
        else:
            warnings.warn("trigamma_inverse: iteration limit exceeded")
        y[todo] = yt

    return float(y[0]) if scalar_input else y


def fit_f_dist(x, df1, covariate=None, span: float = 0.3) -> Dict:
    """
    Moment estimation of a scaled F distribution fitted to sample variances.

    Parameters:
    -----------
    x : array-like
        Gene-wise sample variances
    df1 : float or array-like
        Degrees of freedom of each variance
    covariate : array-like, optional
        Average intensity; when given, the prior scale follows a lowess trend
    span : float
        Lowess smoothing span used with a covariate

    Returns:
    --------
    Dict with 'scale' (float, or array per gene with a covariate) and 'df2'
    """
    x = np.asarray(x, dtype=float)
    df1 = np.broadcast_to(np.asarray(df1, dtype=float), x.shape)

    ok = np.isfinite(df1) & (df1 > 1e-15) & np.isfinite(x) & (x > -1e-15)
    if covariate is not None:
        cov = np.asarray(covariate, dtype=float)
        if cov.shape != x.shape:
            raise ValueError("covariate must have one value per gene")
        ok &= np.isfinite(cov)
    n = int(ok.sum())
    if n == 0:
        return {"scale": np.nan, "df2": np.nan}
    if n == 1:
        return {"scale": float(x[ok][0]), "df2": 0.0}

    xo = np.maximum(x[ok], 0)
    d = df1[ok]

    m = np.median(xo)
    if m == 0:
        warnings.warn("More than half of residual variances are exactly zero: eBayes unreliable")
        m = 1.0
    xo = np.maximum(xo, 1e-5 * m)

    e = np.log(xo) - digamma(d / 2) + np.log(d / 2)

    if covariate is None:
        emean = np.mean(e)
        evar = np.sum((e - emean) ** 2) / (n - 1)
    else:
        cov_ok = cov[ok]
        trend = lowess(e, cov_ok, frac=span, return_sorted=False)
        emean = trend
        evar = np.sum((e - trend) ** 2) / (n - 1)

    evar = evar - np.mean(polygamma(1, d / 2))

    if evar > 0:
        df2 = 2 * trigamma_inverse(evar)
        s20 = np.exp(emean + digamma(df2 / 2) - np.log(df2 / 2))
    else:
        df2 = np.inf
        s20 = np.exp(emean)

    if covariate is not None:
        # genes excluded from the fit get the trend interpolated at their
        # intensity, or its median when they have no intensity
        s20 = np.asarray(s20, dtype=float)
        order = np.argsort(cov_ok)
        scale = np.full(x.shape, np.median(s20))
        has_cov = np.isfinite(cov)
        scale[has_cov] = np.interp(cov[has_cov], cov_ok[order], s20[order])
        return {"scale": scale, "df2": float(df2)}

    return {"scale": float(s20), "df2": float(df2)}


def squeeze_var(var, df, covariate=None) -> Dict:
    """
    Squeeze gene-wise variances towards a common (or trended) prior.

    Parameters:
    -----------
    var : array-like
        Residual variances (sigma ** 2)
    df : float or array-like
        Residual degrees of freedom
    covariate : array-like, optional
        Average intensity for an intensity-dependent prior

    Returns:
    --------
    Dict with 'df_prior', 'var_prior' and 'var_post'
    """
    var = np.asarray(var, dtype=float)
    n = len(var)
    if n == 0:
        raise ValueError("var is empty")
    df = np.broadcast_to(np.asarray(df, dtype=float), var.shape)
    if n == 1:
        return {"var_post": var.copy(), "var_prior": float(var[0]), "df_prior": 0.0}

    # genes with no residual df carry no variance information
    var = np.where(df == 0, 0.0, var)

    fit = fit_f_dist(var, df1=df, covariate=covariate)
    df_prior = fit["df2"]
    var_prior = fit["scale"]
    if np.isnan(df_prior) or np.any(np.isnan(var_prior)):
        raise ValueError("Could not estimate prior variance and degrees of freedom")

    if np.isinf(df_prior):
        var_post = np.broadcast_to(var_prior, var.shape).astype(float).copy()
    else:
        var_post = (df * var + df_prior * var_prior) / (df + df_prior)
        var_post = np.where(np.isnan(var_post), var_prior, var_post)

    return {"df_prior": df_prior, "var_prior": var_prior, "var_post": var_post}


def tmixture_vector(tstat, stdev_unscaled, df, proportion: float,
                    v0_lim: Optional[Tuple[float, float]] = None) -> float:
    """
    Estimate the prior variance of non-zero log fold changes for one coefficient.

    The largest ``proportion / 2`` of |t| are compared with the order
    statistics expected under a mixture of null and scaled t distributions.
    """
    tstat = np.array(tstat, dtype=float)
    stdev_unscaled = np.array(stdev_unscaled, dtype=float)
    df = np.array(np.broadcast_to(df, tstat.shape), dtype=float)

    keep = ~np.isnan(tstat)
    tstat, stdev_unscaled, df = tstat[keep], stdev_unscaled[keep], df[keep]

    n_genes = len(tstat)
    n_target = int(np.ceil(proportion / 2 * n_genes))
    if n_target < 1:
        return np.nan

    p = max(n_target / n_genes, proportion)

    # put all statistics on the largest df before ranking
    tstat = np.abs(tstat)
    max_df = np.max(df)
    lower = df < max_df
    if lower.any():
        tail_p = stats.t.sf(tstat[lower], df=df[lower])
        tstat[lower] = stats.t.isf(tail_p, df=max_df)
        df[lower] = max_df

    top = np.argsort(-tstat, kind="mergesort")[:n_target]
    tstat = tstat[top]
    v1 = stdev_unscaled[top] ** 2

    rank = np.arange(n_target) + 1.0
    p0 = 2 * stats.t.sf(tstat, df=max_df)
    p_target = ((rank - 0.5) / n_genes - (1 - p) * p0) / p
    v0 = np.zeros(n_target)
    pos = p_target > p0
    if pos.any():
        q_target = stats.t.isf(p_target[pos] / 2, df=max_df)
        v0[pos] = v1[pos] * ((tstat[pos] / q_target) ** 2 - 1)
    if v0_lim is not None:
        v0 = np.clip(v0, v0_lim[0], v0_lim[1])
    return float(np.mean(v0))


def tmixture_matrix(tstat, stdev_unscaled, df, proportion: float,
                    v0_lim: Optional[Tuple[float, float]] = None) -> np.ndarray:
    """tmixture_vector() applied to each column of a genes x coefficients matrix."""
    tstat = np.asarray(tstat, dtype=float)
    stdev_unscaled = np.asarray(stdev_unscaled, dtype=float)
    if tstat.shape != stdev_unscaled.shape:
        raise ValueError("dimensions of tstat and stdev_unscaled do not match")
    if v0_lim is not None and len(v0_lim) != 2:
        raise ValueError("v0_lim must be a pair")
    return np.array([
        tmixture_vector(tstat[:, j], stdev_unscaled[:, j], df, proportion, v0_lim)
        for j in range(tstat.shape[1])
    ])


def coefficient_correlation(fit: LinearModelFit) -> np.ndarray:
    """Correlation matrix of the fitted coefficients (unit variance for zero-variance columns)."""
    cov = np.array(fit.cov_coefficients, dtype=float)
    diag = np.diag(cov).copy()
    diag[diag == 0] = 1.0
    np.fill_diagonal(cov, diag)
    d = np.sqrt(diag)
    return cov / np.outer(d, d)


def _independent_columns(cor_matrix: np.ndarray) -> list:
    """Indices of a maximal set of linearly independent contrasts."""
    keep = []
    for j in range(cor_matrix.shape[0]):
        idx = keep + [j]
        if np.linalg.matrix_rank(cor_matrix[np.ix_(idx, idx)]) == len(idx):
            keep.append(j)
    return keep


def moderated_f_statistic(tstat, cor_matrix: Optional[np.ndarray] = None) -> Tuple[np.ndarray, int]:
    """
    Overall F statistic per gene from its vector of moderated t-statistics.

    Computed by ``inmoose.limma.classifyTestsF(..., fstat_only=True)``. When
    some contrasts are linear combinations of others, the F statistic is
    taken over an independent subset, which spans the same hypothesis.

    Returns:
    --------
    (F, df1) where df1 is the rank of the coefficient correlation matrix
    """
    tstat = np.asarray(tstat, dtype=float)
    n_genes = tstat.shape[0]
    if cor_matrix is not None:
        cor_matrix = np.asarray(cor_matrix, dtype=float)
        keep = _independent_columns(cor_matrix)
        if len(keep) < tstat.shape[1]:
            tstat = tstat[:, keep]
            cor_matrix = cor_matrix[np.ix_(keep, keep)]

    F = imo.classifyTestsF(tstat, cor_matrix=cor_matrix, fstat_only=True)
    return np.asarray(F, dtype=float).reshape(n_genes), int(F.df1)


def classify_tests_f(tstat, cor_matrix: Optional[np.ndarray] = None, df=np.inf,
                     p_value: float = 0.01) -> np.ndarray:
    """
    Classify each gene's t-statistics as -1/0/1 using nested F-tests.

    A gene has at least one significant contrast exactly when its overall
    F statistic is significant. Contrasts are then admitted in decreasing
    order of |t| while the F test stays significant with the larger
    statistics shrunk to the size of the one under consideration.

    Genes are passed to ``inmoose.limma.classifyTestsF`` in batches sharing
    the same degrees of freedom; genes with a missing t-statistic are 0.

    Parameters:
    -----------
    tstat : array-like
        genes x contrasts moderated t-statistics
    cor_matrix : np.ndarray, optional
        Correlation matrix of the contrasts (identity if None)
    df : float or array-like
        Degrees of freedom of the t-statistics, per gene
    p_value : float
        Size of the F test for each gene

    Returns:
    --------
    np.ndarray of int, genes x contrasts
    """
    tstat = np.array(tstat, dtype=float)
    n_genes, n_tests = tstat.shape
    if cor_matrix is not None and n_tests > 1:
        cor_matrix = np.asarray(cor_matrix, dtype=float)
        if np.linalg.matrix_rank(cor_matrix) < n_tests:
            raise ValueError("Nested F-tests need linearly independent contrasts")

    df = np.broadcast_to(np.asarray(df, dtype=float), n_genes)
    complete = ~np.isnan(tstat).any(axis=1) & ~np.isnan(df)

    result = np.zeros((n_genes, n_tests), dtype=int)
    for df_value in np.unique(df[complete]):
        rows = complete & (df == df_value)
        classified = imo.classifyTestsF(tstat[rows], cor_matrix=cor_matrix,
                                        df=float(df_value), p_value=p_value)
        result[rows] = np.asarray(classified, dtype=float).astype(int)
    return result


def ebayes(fit: LinearModelFit, proportion: float = 0.01,
           stdev_coef_lim: Tuple[float, float] = (0.1, 4), trend: bool = False) -> LinearModelFit:
    """
    Empirical Bayes moderation of a linear model fit.

    Parameters:
    -----------
    fit : LinearModelFit
        Output of lm_fit() or contrasts_fit(), covering the full gene set
    proportion : float
        Assumed proportion of differentially expressed genes (B statistic)
    stdev_coef_lim : tuple
        Limits on the prior standard deviation of true log fold changes
    trend : bool
        Let the prior variance depend on average expression (lowess on Amean)

    Returns:
    --------
    LinearModelFit : copy of the fit with t, p_value, lods, F, F_p_value,
        s2_prior, df_prior, s2_post, df_total and var_prior filled in
    """
    if not isinstance(fit, LinearModelFit):
        raise ValueError("fit is not a LinearModelFit; run lm_fit() first")
    if not 0 < proportion < 1:
        raise ValueError("proportion must be between 0 and 1")

    df_residual = fit.df_residual.to_numpy(dtype=float)
    sigma = fit.sigma.to_numpy(dtype=float)
    if np.nanmax(df_residual) == 0:
        raise ValueError("No residual degrees of freedom in linear model fits")
    if not np.any(np.isfinite(sigma)):
        raise ValueError("No finite residual standard deviations")

    print("=" * 60)
    print("EMPIRICAL BAYES MODERATION")
    print("=" * 60)

    covariate = fit.Amean.to_numpy(dtype=float) if trend else None
    squeezed = squeeze_var(sigma ** 2, df_residual, covariate=covariate)

    coefficients = fit.coefficients.to_numpy(dtype=float)
    stdev_unscaled = fit.stdev_unscaled.to_numpy(dtype=float)
    s2_prior = squeezed["var_prior"]
    df_prior = squeezed["df_prior"]
    s2_post = squeezed["var_post"]

    t = coefficients / stdev_unscaled / np.sqrt(s2_post)[:, None]
    df_total = np.minimum(df_residual + df_prior, np.nansum(df_residual))
    p_value = 2 * stats.t.sf(np.abs(t), df=df_total[:, None])

    # B statistic
    var_prior_lim = np.array(stdev_coef_lim) ** 2 / np.median(np.atleast_1d(s2_prior))
    var_prior = tmixture_matrix(t, stdev_unscaled, df_total, proportion, var_prior_lim)
    if np.any(np.isnan(var_prior)):
        var_prior[np.isnan(var_prior)] = 1.0 / np.median(np.atleast_1d(s2_prior))
        warnings.warn("Estimation of var_prior failed - set to default value")

    r = (stdev_unscaled ** 2 + var_prior[None, :]) / stdev_unscaled ** 2
    t2 = t ** 2
    if df_prior > 1e6:
        kernel = t2 * (1 - 1 / r) / 2
    else:
        dft = df_total[:, None]
        kernel = (1 + dft) / 2 * np.log((t2 + dft) / (t2 / r + dft))
    lods = np.log(proportion / (1 - proportion)) - np.log(r) / 2 + kernel

    # Moderated F over all coefficients
    F, df1 = moderated_f_statistic(t, coefficient_correlation(fit))
    df2 = df_residual + df_prior
    with np.errstate(invalid="ignore"):
        F_p_value = np.where(
            df2 > 1e6,
            stats.chi2.sf(df1 * F, df1),
            stats.f.sf(F, df1, np.minimum(df2, 1e6)),
        )

    genes = fit.genes
    names = fit.coef_names
    out = copy.copy(fit)
    out.t = pd.DataFrame(t, index=genes, columns=names)
    out.p_value = pd.DataFrame(p_value, index=genes, columns=names)
    out.lods = pd.DataFrame(lods, index=genes, columns=names)
    out.s2_prior = pd.Series(s2_prior, index=genes) if np.ndim(s2_prior) else s2_prior
    out.df_prior = df_prior
    out.s2_post = pd.Series(s2_post, index=genes, name="s2_post")
    out.df_total = pd.Series(df_total, index=genes, name="df_total")
    out.var_prior = pd.Series(var_prior, index=names, name="var_prior")
    out.proportion = proportion
    out.F = pd.Series(F, index=genes, name="F")
    out.F_p_value = pd.Series(F_p_value, index=genes, name="F_p_value")

    prior_text = (f"{s2_prior:.4f}" if np.ndim(s2_prior) == 0
                  else f"trend, median {np.median(s2_prior):.4f}")
    print(f"Prior degrees of freedom: {df_prior:.2f}")
    print(f"Prior variance: {prior_text}")
    print(f"✓ Moderated statistics computed for {len(genes)} genes x {len(names)} coefficients")

    return out
