"""
Linear Model Module for Microarray Analysis Toolkit

Gene-wise ordinary least squares fits against a shared design matrix, and
re-expression of the fitted coefficients in terms of a contrast matrix.
The fitting itself is done by inmoose.limma (lmFit, contrasts_fit); this
module matches samples, handles missing values and keeps the results as
gene-indexed pandas objects.
"""

import inmoose.limma as imo
import numpy as np
import pandas as pd
from inmoose.limma.marraylm import MArrayLM

from .design import as_design_matrix, check_full_rank, validate_contrast_matrix
from .validation import SampleMatchingError


class LinearModelFit:
    """
    Container for gene-wise linear model fits.

    Attributes:
    -----------
    coefficients : pd.DataFrame
        genes x parameters (or contrasts once contrasts_fit has run)
    stdev_unscaled : pd.DataFrame
        Unscaled standard errors, same shape as coefficients
    sigma : pd.Series
        Residual standard deviation per gene
    df_residual : pd.Series
        Residual degrees of freedom per gene
    Amean : pd.Series
        Average log2 expression per gene
    cov_coefficients : pd.DataFrame
        Unscaled covariance of the coefficients, shared by complete genes
    design : pd.DataFrame
        Design matrix used for the fit
    contrasts : pd.DataFrame or None
        Contrast matrix applied by contrasts_fit

    The empirical Bayes attributes (s2_prior, df_prior, s2_post, df_total,
    var_prior, t, p_value, lods, F, F_p_value) are None until ebayes() runs.
    """

    def __init__(self, coefficients, stdev_unscaled, sigma, df_residual, Amean,
                 cov_coefficients, design, contrasts=None):
        self.coefficients = coefficients
        self.stdev_unscaled = stdev_unscaled
        self.sigma = sigma
        self.df_residual = df_residual
        self.Amean = Amean
        self.cov_coefficients = cov_coefficients
        self.design = design
        self.contrasts = contrasts

        # Filled in by ebayes()
        self.s2_prior = None
        self.df_prior = None
        self.s2_post = None
        self.df_total = None
        self.var_prior = None
        self.proportion = None
        self.t = None
        self.p_value = None
        self.lods = None
        self.F = None
        self.F_p_value = None

    @property
    def genes(self) -> pd.Index:
        return self.coefficients.index

    @property
    def coef_names(self):
        return list(self.coefficients.columns)

    @property
    def is_moderated(self) -> bool:
        return self.t is not None

    def __len__(self):
        return len(self.coefficients)

    def __repr__(self):
        state = "moderated" if self.is_moderated else "unmoderated"
        return (f"LinearModelFit({len(self)} genes, coefficients={self.coef_names}, "
                f"{state})")


def _align_to_design(expression: pd.DataFrame, design: pd.DataFrame) -> pd.DataFrame:
    """Reorder expression columns to the design's sample order."""
    if expression.shape[1] != design.shape[0]:
        raise SampleMatchingError(
            f"Expression has {expression.shape[1]} samples but the design has "
            f"{design.shape[0]} rows"
        )

    if isinstance(design.index, pd.RangeIndex):
        return expression

    design_samples = [str(s) for s in design.index]
    data_samples = [str(c) for c in expression.columns]
    missing = [s for s in design_samples if s not in data_samples]
    if missing:
        raise SampleMatchingError(
            f"Design samples not found in expression columns: {missing}"
        )

    aligned = expression.copy()
    aligned.columns = data_samples
    return aligned[design_samples]


def _estimable_columns(X: np.ndarray) -> list:
    """Design columns kept, in order, while they add to the rank."""
    estimable = []
    for j in range(X.shape[1]):
        if np.linalg.matrix_rank(X[:, estimable + [j]]) == len(estimable) + 1:
            estimable.append(j)
    return estimable


def _limma_fit(expression: pd.DataFrame, design: pd.DataFrame):
    """Run inmoose lmFit and return coefficients, stdev_unscaled, sigma and df as arrays."""
    with np.errstate(divide="ignore", invalid="ignore"):
        fit = imo.lmFit(expression, design=as_design_matrix(design))
    n_genes = expression.shape[0]
    return (
        np.asarray(fit.coefficients, dtype=float).reshape(n_genes, design.shape[1]),
        np.asarray(fit.stdev_unscaled, dtype=float).reshape(n_genes, design.shape[1]),
        np.asarray(fit.sigma, dtype=float).reshape(n_genes),
        np.broadcast_to(np.asarray(fit.df_residual, dtype=float), (n_genes,)),
        fit.cov_coefficients,
    )


def lm_fit(expression: pd.DataFrame, design: pd.DataFrame) -> LinearModelFit:
    """
    Fit a linear model to every gene with ``inmoose.limma.lmFit``.

    Genes are fitted in batches sharing the same observed arrays. A gene
    with missing values is fitted on its observed arrays only; parameters
    those arrays cannot estimate (e.g. a group with no observed arrays)
    are left as NaN. Genes with no observed values get NaN throughout and
    zero residual df.

    Parameters:
    -----------
    expression : pd.DataFrame
        genes x samples log2 expression
    design : pd.DataFrame
        samples x parameters design matrix. When indexed by sample names
        the expression columns are matched to it by name

    Returns:
    --------
    LinearModelFit
    """
    if not isinstance(expression, pd.DataFrame) or not isinstance(design, pd.DataFrame):
        raise TypeError("expression and design must be pandas DataFrames")
    if expression.shape[0] == 0:
        raise ValueError("Expression matrix has no genes")

    expression = _align_to_design(expression, design)
    check_full_rank(design)

    print(f"Fitting linear models: {expression.shape[0]} genes, "
          f"{design.shape[0]} samples, {design.shape[1]} parameters")

    # columns now follow the design rows, as inmoose expects
    expression = expression.astype(float)
    n_genes = expression.shape[0]
    n_samples, n_params = design.shape
    X = design.to_numpy(dtype=float)

    coefficients = np.full((n_genes, n_params), np.nan)
    stdev_unscaled = np.full((n_genes, n_params), np.nan)
    sigma = np.full(n_genes, np.nan)
    df_residual = np.zeros(n_genes)
    cov_coefficients = None

    observed = expression.notna().to_numpy()
    patterns = pd.Series([row.tobytes() for row in observed])
    n_partial = 0

    for _, rows in patterns.groupby(patterns, sort=False).groups.items():
        rows = np.asarray(rows)
        mask = observed[rows[0]]
        if not mask.any():
            continue

        estimable = _estimable_columns(X[mask])
        if not estimable:
            df_residual[rows] = mask.sum()
            continue
        sub_design = design.iloc[mask, estimable]
        sub_expression = expression.iloc[rows, mask]

        beta, stdev, s, df, cov = _limma_fit(sub_expression, sub_design)
        coefficients[np.ix_(rows, estimable)] = beta
        stdev_unscaled[np.ix_(rows, estimable)] = stdev
        df_residual[rows] = df
        # no residual df means no variance estimate
        sigma[rows] = np.where(df > 0, s, np.nan)

        if mask.all():
            cov_coefficients = np.asarray(cov, dtype=float)
        else:
            n_partial += len(rows)

    if n_partial > 0:
        print(f"  {n_partial} genes with missing values fitted on observed samples")

    if cov_coefficients is None:
        cov_coefficients = np.linalg.inv(X.T @ X)

    genes = expression.index
    params = list(design.columns)
    fit = LinearModelFit(
        coefficients=pd.DataFrame(coefficients, index=genes, columns=params),
        stdev_unscaled=pd.DataFrame(stdev_unscaled, index=genes, columns=params),
        sigma=pd.Series(sigma, index=genes, name="sigma"),
        df_residual=pd.Series(df_residual, index=genes, name="df_residual"),
        Amean=expression.mean(axis=1, skipna=True).rename("Amean"),
        cov_coefficients=pd.DataFrame(cov_coefficients, index=params, columns=params),
        design=design,
    )

    print(f"✓ Linear models fitted (residual df = {n_samples - n_params})")
    return fit


def _as_marraylm(fit: LinearModelFit) -> MArrayLM:
    """
    inmoose MArrayLM holding the coefficients of a fit.

    Missing coefficients enter as zero with a huge standard error, as
    limma's contrasts.fit does; contrasts using them are masked afterwards.
    """
    coefficients = fit.coefficients.fillna(0.0)
    stdev_unscaled = fit.stdev_unscaled.where(fit.coefficients.notna(), 1e30).fillna(1e30)
    limma_fit = MArrayLM(
        coefficients,
        stdev_unscaled,
        fit.sigma.to_numpy(dtype=float),
        fit.df_residual.to_numpy(dtype=float),
        fit.cov_coefficients.astype(float),
    )
    limma_fit.Amean = fit.Amean.to_numpy(dtype=float)
    limma_fit.design = as_design_matrix(fit.design)
    return limma_fit


def contrasts_fit(fit: LinearModelFit, contrasts: pd.DataFrame,
                  require_zero_sum: bool = True) -> LinearModelFit:
    """
    Re-express a fit in terms of contrasts of its coefficients.

    Parameters:
    -----------
    fit : LinearModelFit
        Output of lm_fit()
    contrasts : pd.DataFrame
        parameters x contrasts weight matrix (see make_contrasts())
    require_zero_sum : bool
        Require comparisons to sum to zero for group-means designs

    Returns:
    --------
    LinearModelFit : new fit whose coefficients are the contrasts. Moderated
        statistics of the input are not carried over
    """
    if not isinstance(fit, LinearModelFit):
        raise TypeError("fit must be a LinearModelFit from lm_fit()")
    if fit.contrasts is not None:
        raise ValueError("Contrasts have already been applied to this fit")

    contrasts = validate_contrast_matrix(contrasts, fit.design, require_zero_sum=require_zero_sum)

    limma_fit = imo.contrasts_fit(_as_marraylm(fit), contrasts=contrasts)

    genes = fit.genes
    names = list(contrasts.columns)
    shape = (len(genes), len(names))
    coefficients = np.asarray(limma_fit.coefficients, dtype=float).reshape(shape)
    stdev_unscaled = np.asarray(limma_fit.stdev_unscaled, dtype=float).reshape(shape)

    # Parameters with zero weight do not propagate missing values
    used = (contrasts.to_numpy(dtype=float) != 0).astype(float)
    missing = (fit.coefficients.isna().to_numpy().astype(float) @ used) > 0
    coefficients[missing] = np.nan
    stdev_unscaled[missing] = np.nan

    new_fit = LinearModelFit(
        coefficients=pd.DataFrame(coefficients, index=genes, columns=names),
        stdev_unscaled=pd.DataFrame(stdev_unscaled, index=genes, columns=names),
        sigma=fit.sigma.copy(),
        df_residual=fit.df_residual.copy(),
        Amean=fit.Amean.copy(),
        cov_coefficients=pd.DataFrame(
            np.asarray(limma_fit.cov_coefficients, dtype=float).reshape(len(names), len(names)),
            index=names, columns=names,
        ),
        design=fit.design,
        contrasts=contrasts,
    )

    print(f"✓ Applied {len(names)} contrasts: {names}")
    return new_fit


def residuals(fit: LinearModelFit, expression: pd.DataFrame) -> pd.DataFrame:
    """Residuals of an lm_fit() fit (before contrasts) on the given expression."""
    if fit.contrasts is not None:
        raise ValueError("Residuals need the original parameter fit, not a contrasts fit")
    expression = _align_to_design(expression, fit.design)
    fitted = fit.coefficients.to_numpy() @ fit.design.to_numpy(dtype=float).T
    return pd.DataFrame(expression.to_numpy(dtype=float) - fitted,
                        index=expression.index, columns=expression.columns)
