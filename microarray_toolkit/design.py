"""
Experimental Design Module for Microarray Analysis Toolkit

Functions for building design matrices from the targets table, checking
that they can be fitted, and building contrast matrices from readable
expressions such as ``"present10-absent10"``.

Two parameterizations of the same factorial experiment are supported:

- group means: one indicator column per treatment-time group, no intercept
- reference: an ``Intercept`` column (the reference group mean) plus one
  column per remaining group holding its difference from the reference
"""

import re

import inmoose.limma as imo
import numpy as np
import pandas as pd
import patsy
from typing import Dict, List, Optional, Sequence, Union

from .validation import ContrastMatrixError, DesignMatrixError, validate_targets


def make_names(values: Sequence, unique: bool = True) -> List[str]:
    """
    Turn arbitrary labels into valid identifiers.

    Invalid characters become ``_``, a leading digit gets an ``X`` prefix,
    and duplicates are suffixed ``_1``, ``_2``... when ``unique`` is set.

    Examples:
    ---------
    >>> make_names(["absent10", "10", "a-b"])
    ['absent10', 'X10', 'a_b']
    """
    names = []
    for value in values:
        name = re.sub(r"[^A-Za-z0-9_]", "_", str(value).strip())
        if name == "" or not (name[0].isalpha() or name[0] == "_"):
            name = "X" + name
        names.append(name)

    if unique:
        seen = {}
        for i, name in enumerate(names):
            if name in seen:
                seen[name] += 1
                candidate = f"{name}_{seen[name]}"
                while candidate in seen:
                    seen[name] += 1
                    candidate = f"{name}_{seen[name]}"
                names[i] = candidate
                seen[candidate] = 0
            else:
                seen[name] = 0

    return names


def build_group_factor(
    targets: pd.DataFrame,
    factors: List[str],
    sample_column: str = "Sample",
) -> pd.Series:
    """
    Combine the factor columns of the targets table into one group label per sample.

    Parameters:
    -----------
    targets : pd.DataFrame
        One row per array
    factors : List[str]
        Factor columns, concatenated in this order (``estrogen`` + ``time.h``
        gives ``absent10``)
    sample_column : str
        Column used as the index of the returned Series

    Returns:
    --------
    pd.Series : identifier-safe group label per sample
    """
    validate_targets(targets, factors, sample_column=sample_column)

    combined = targets[factors[0]].astype(str)
    for factor in factors[1:]:
        combined = combined + targets[factor].astype(str)

    groups = pd.Series(
        make_names(combined.tolist(), unique=False),
        index=targets[sample_column].astype(str).tolist(),
        name="Group",
    )
    return groups


def model_matrix(
    targets: pd.DataFrame,
    factors: List[str],
    intercept: bool = False,
    reference: Optional[str] = None,
    sample_column: str = "Sample",
) -> pd.DataFrame:
    """
    Build the design matrix of a one-way layout on the combined groups.

    Parameters:
    -----------
    targets : pd.DataFrame
        One row per array
    factors : List[str]
        Factor columns combined into groups
    intercept : bool
        False for the group-means form, True for the reference form
    reference : str, optional
        Reference group for the intercept form. Defaults to the first level
        in sorted order
    sample_column : str
        Column holding sample names (design index)

    Returns:
    --------
    pd.DataFrame : samples x parameters 0/1 design matrix
    """
    groups = build_group_factor(targets, factors, sample_column=sample_column)
    levels = sorted(groups.unique())

    # One 0/1 indicator per group; patsy names each column after its variable
    indicators = pd.DataFrame(
        {level: (groups == level).astype(int) for level in levels},
        index=groups.index,
    )

    if not intercept:
        formula = "0 + " + " + ".join(levels)
    else:
        reference = levels[0] if reference is None else make_names([reference])[0]
        if reference not in levels:
            raise DesignMatrixError(
                f"Reference group '{reference}' is not one of the groups: {levels}"
            )
        formula = " + ".join(["1"] + [level for level in levels if level != reference])

    design = patsy.dmatrix(formula, indicators, return_type="dataframe")
    design.index = groups.index
    design.index.name = sample_column
    return design


def as_design_matrix(design: pd.DataFrame) -> patsy.DesignMatrix:
    """patsy DesignMatrix with the columns and values of a design DataFrame."""
    return patsy.DesignMatrix(
        design.to_numpy(dtype=float),
        design_info=patsy.DesignInfo([str(c) for c in design.columns]),
    )


def check_full_rank(design: pd.DataFrame) -> None:
    """
    Raise if the design matrix cannot be fitted by least squares.

    Raises:
    -------
    DesignMatrixError: empty indicator columns, linearly dependent columns,
        or no residual degrees of freedom
    """
    X = design.to_numpy(dtype=float)
    n_samples, n_params = X.shape

    if n_params == 0:
        raise DesignMatrixError("Design matrix has no columns")

    empty_columns = design.columns[(X == 0).all(axis=0)].tolist()
    if empty_columns:
        raise DesignMatrixError(f"Design columns with no samples: {empty_columns}")

    rank = np.linalg.matrix_rank(X)
    if rank < n_params:
        aliased = []
        current_rank = 0
        for j in range(n_params):
            sub_rank = np.linalg.matrix_rank(X[:, :j + 1])
            if sub_rank == current_rank:
                aliased.append(design.columns[j])
            current_rank = sub_rank
        raise DesignMatrixError(
            f"Design matrix is not of full rank ({rank} < {n_params}). "
            f"Aliased columns: {aliased}"
        )

    if n_samples - n_params <= 0:
        raise DesignMatrixError(
            f"No residual degrees of freedom: {n_samples} samples for {n_params} parameters"
        )


def _referenced_names(expression: str) -> List[str]:
    """Identifiers used in a contrast expression, in order of appearance."""
    return re.findall(r"(?<![\w.])[A-Za-z_][A-Za-z0-9_]*", str(expression))


def make_contrasts(
    contrasts: Union[Dict[str, str], List[str]],
    levels: Union[pd.DataFrame, Sequence[str]],
) -> pd.DataFrame:
    """
    Build a contrast matrix from linear expressions in the parameter names.

    The expressions are evaluated by ``inmoose.limma.makeContrasts``; this
    wrapper checks the parameter names first and labels the result.

    Parameters:
    -----------
    contrasts : Dict[str, str] or List[str]
        Contrast name -> expression, e.g. ``{"E10": "present10-absent10"}``.
        A plain list uses each expression as its own name
    levels : pd.DataFrame or sequence of str
        Parameter names, or a design matrix whose columns are used

    Returns:
    --------
    pd.DataFrame : parameters x contrasts weight matrix

    Examples:
    ---------
    >>> make_contrasts({"E10": "present10-absent10"}, ["absent10", "present10"])
               E10
    Levels
    absent10  -1.0
    present10  1.0
    """
    if isinstance(levels, pd.DataFrame):
        levels = list(levels.columns)
    levels = [str(level) for level in levels]

    if len(set(levels)) != len(levels):
        raise ContrastMatrixError(f"Duplicated parameter names: {levels}")
    invalid = [level for level in levels if make_names([level])[0] != level]
    if invalid:
        raise ContrastMatrixError(
            f"Parameter names are not valid identifiers: {invalid}. Use make_names() first"
        )

    if isinstance(contrasts, dict):
        items = [(str(name), str(expr).strip()) for name, expr in contrasts.items()]
    else:
        items = [(str(expr).strip(), str(expr).strip()) for expr in contrasts]
    if not items:
        raise ContrastMatrixError("No contrasts given")

    for name, expression in items:
        referenced = _referenced_names(expression)
        unknown = [token for token in referenced if token not in levels]
        if unknown:
            raise ContrastMatrixError(
                f"Unknown parameter '{unknown[0]}' in contrast '{expression}'. "
                f"Available: {levels}"
            )
        if not referenced:
            raise ContrastMatrixError(f"Contrast '{expression}' involves no parameters")

    try:
        weights = imo.makeContrasts([expr for _, expr in items], levels=levels)
    except Exception as e:
        raise ContrastMatrixError(
            f"Cannot parse contrasts {[expr for _, expr in items]}: {e}"
        ) from e

    contrast_matrix = pd.DataFrame(
        np.asarray(weights, dtype=float),
        index=pd.Index(levels, name="Levels"),
        columns=[name for name, _ in items],
    )

    # a product of parameters evaluates to zero weights
    zero_columns = contrast_matrix.columns[(contrast_matrix == 0).all(axis=0)].tolist()
    if zero_columns:
        raise ContrastMatrixError(
            f"Contrasts {zero_columns} are not linear combinations of the parameters "
            f"(all weights are zero)"
        )

    return contrast_matrix


def validate_contrast_matrix(
    contrasts: pd.DataFrame,
    design: pd.DataFrame,
    require_zero_sum: bool = True,
) -> pd.DataFrame:
    """
    Check a contrast matrix against a design and return it in design column order.

    For a group-means design each comparison must have weights summing to
    zero. In the reference form the intercept row carries that constraint,
    so no sum check is applied.

    Raises:
    -------
    ContrastMatrixError: row names differ from design columns, an all-zero
        column, or a non-zero-sum comparison
    """
    rows = [str(r) for r in contrasts.index]
    params = [str(c) for c in design.columns]
    if sorted(rows) != sorted(params):
        raise ContrastMatrixError(
            f"Contrast rows {rows} do not match design columns {params}"
        )

    contrasts = contrasts.copy()
    contrasts.index = rows
    contrasts = contrasts.loc[params].astype(float)

    zero_columns = contrasts.columns[(contrasts == 0).all(axis=0)].tolist()
    if zero_columns:
        raise ContrastMatrixError(f"Contrasts with all-zero weights: {zero_columns}")

    if require_zero_sum and "Intercept" not in params:
        sums = contrasts.sum(axis=0)
        bad = sums[np.abs(sums) > 1e-8]
        if len(bad) > 0:
            raise ContrastMatrixError(
                f"Contrast weights do not sum to zero: {bad.round(6).to_dict()}"
            )

    return contrasts


def translate_contrasts(
    contrasts: pd.DataFrame,
    reference: str,
    design: pd.DataFrame,
) -> pd.DataFrame:
    """
    Rewrite a group-means contrast matrix for a reference-form design.

    With ``mean_ref = Intercept`` and ``mean_g = Intercept + beta_g``, the
    contrast ``sum_g w_g mean_g`` equals ``(sum_g w_g) Intercept +
    sum_{g != ref} w_g beta_g``. For comparisons the intercept weight is zero.

    Parameters:
    -----------
    contrasts : pd.DataFrame
        Group-means contrast matrix (rows are group names)
    reference : str
        Reference group of the intercept design
    design : pd.DataFrame
        Reference-form design matrix

    Returns:
    --------
    pd.DataFrame : contrast matrix with rows matching design columns
    """
    reference = make_names([reference])[0]
    if reference not in contrasts.index:
        raise ContrastMatrixError(
            f"Reference group '{reference}' not found in contrast rows {list(contrasts.index)}"
        )
    if "Intercept" not in design.columns:
        raise ContrastMatrixError("Target design has no Intercept column")

    translated = pd.DataFrame(0.0, index=list(design.columns), columns=contrasts.columns)
    translated.loc["Intercept"] = contrasts.sum(axis=0)
    for group in contrasts.index:
        if group == reference:
            continue
        if group not in translated.index:
            raise ContrastMatrixError(f"Group '{group}' has no column in the reference design")
        translated.loc[group] = contrasts.loc[group]

    translated.index.name = "Levels"
    return translated
