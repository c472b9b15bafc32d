"""
Visualization Module for Microarray Analysis Toolkit

Functions for creating plots of array intensities and differential
expression results.
"""

import pandas as pd
import numpy as np
import matplotlib.pyplot as plt
from matplotlib.patches import Circle
import seaborn as sns
from scipy.ndimage import gaussian_filter1d
from typing import Dict, List, Optional, Tuple, Literal
import warnings

from .design import build_group_factor


def _sample_groups(targets: pd.DataFrame, factors: List[str], sample_column: str) -> Dict[str, str]:
    groups = build_group_factor(targets, factors, sample_column=sample_column)
    return groups.to_dict()


def _group_color_map(groups: List[str], group_colors: Optional[Dict[str, str]] = None) -> Dict:
    unique_groups = sorted(set(groups))
    colors = plt.cm.tab10(np.linspace(0, 1, max(len(unique_groups), 1)))
    color_map = {group: colors[i] for i, group in enumerate(unique_groups)}
    if group_colors:
        color_map.update(group_colors)
    return color_map


def plot_box_plot(
    data: pd.DataFrame,
    targets: pd.DataFrame,
    factors: List[str],
    sample_column: str = "Sample",
    group_colors: Optional[Dict[str, str]] = None,
    log_transform: bool = True,
    figsize: Tuple[int, int] = (16, 8),
    title: str = "Intensity Distribution by Array",
) -> None:
    """
    Create box plot of intensities by array, grouped by experimental group.

    Parameters:
    -----------
    data : pd.DataFrame
        Probe-level intensities or expression values, one column per array
    targets : pd.DataFrame
        Sample metadata
    factors : List[str]
        Factor columns defining the groups
    sample_column : str
        Column in targets naming each array
    group_colors : Dict[str, str], optional
        Colors for each group
    log_transform : bool
        Whether to log2 transform data for plotting
    figsize : Tuple[int, int]
        Figure size (width, height)
    title : str
        Plot title
    """

    sample_groups = _sample_groups(targets, factors, sample_column)
    sample_columns = [s for s in sample_groups if s in data.columns]

    if log_transform:
        plot_data = np.log2(data[sample_columns].where(data[sample_columns] > 0))
        ylabel = "Log2 Intensity"
    else:
        plot_data = data[sample_columns]
        ylabel = "Intensity"

    samples_by_group = {}
    for sample in sample_columns:
        samples_by_group.setdefault(sample_groups[sample], []).append(sample)

    group_colors = _group_color_map(list(samples_by_group), group_colors)

    fig, ax = plt.subplots(figsize=figsize)

    positions = []
    box_data = []
    colors = []
    labels = []
    pos = 0

    group_order = sorted(samples_by_group.keys())
    for group in group_order:
        for sample in samples_by_group[group]:
            box_data.append(plot_data[sample].dropna())
            positions.append(pos)
            colors.append(group_colors[group])
            labels.append(sample)
            pos += 1
        pos += 0.5  # Add space between groups

    bp = ax.boxplot(
        box_data,
        positions=positions,
        patch_artist=True,
        widths=0.8,
        showfliers=True,
        flierprops={"marker": "o", "markersize": 2, "alpha": 0.5},
    )

    for patch, color in zip(bp["boxes"], colors):
        patch.set_facecolor(color)
        patch.set_alpha(0.7)

    ax.set_xlabel("Array", fontsize=14)
    ax.set_ylabel(ylabel, fontsize=14)
    ax.set_title(title, fontsize=16, fontweight="bold")
    ax.set_xticks(positions)
    ax.set_xticklabels(labels, rotation=45, ha="right", fontsize=10)
    ax.grid(True, alpha=0.3, axis="y")

    legend_elements = [
        plt.Rectangle((0, 0), 1, 1, facecolor=group_colors[group], alpha=0.7, label=group)
        for group in group_order
    ]
    ax.legend(handles=legend_elements, loc="upper right")

    plt.tight_layout()
    plt.show()

    print("Box plot summary:")
    print(f"Total arrays plotted: {len(box_data)}")
    print(f"Average values per array: {np.mean([len(values) for values in box_data]):.0f}")


def plot_normalization_comparison(
    raw_data: pd.DataFrame,
    expression: pd.DataFrame,
    method: str = "RMA",
    figsize: Tuple[int, int] = (15, 6),
) -> None:
    """
    Compare array distributions before and after normalization.

    Parameters:
    -----------
    raw_data : pd.DataFrame
        Raw linear-scale probe intensities
    expression : pd.DataFrame
        Normalized log2 expression
    method : str
        Normalization method name for plot title
    figsize : Tuple[int, int]
        Figure size (width, height)
    """

    fig, (ax1, ax2) = plt.subplots(1, 2, figsize=figsize)

    log2_raw = np.log2(raw_data.where(raw_data > 0))
    panels = [
        (ax1, log2_raw, "Before Normalization"),
        (ax2, expression, f"After {method} Normalization"),
    ]

    for ax, frame, panel_title in panels:
        for col in frame.columns:
            values = frame[col].dropna()
            if len(values) > 0:
                counts, bins = np.histogram(values, bins=100, density=True)
                bin_centers = (bins[:-1] + bins[1:]) / 2
                ax.plot(bin_centers, gaussian_filter1d(counts, sigma=0.8),
                        alpha=0.7, linewidth=1.5, label=col)
        ax.set_xlabel("Log2 Intensity")
        ax.set_ylabel("Density")
        ax.set_title(panel_title)
        ax.grid(True, alpha=0.3)

    ax2.legend(fontsize=8, loc="upper right")

    plt.tight_layout()
    plt.show()

    raw_medians = log2_raw.median()
    norm_medians = expression.median()
    raw_range = raw_medians.max() - raw_medians.min()
    norm_range = norm_medians.max() - norm_medians.min()

    print(f"Normalization comparison ({method}):")
    print(f"Original median range: {raw_range:.3f}")
    print(f"Normalized median range: {norm_range:.3f}")
    if raw_range > 0:
        print(f"Range reduction: {1 - norm_range / raw_range:.1%}")


def plot_sample_correlation_heatmap(
    expression: pd.DataFrame,
    targets: pd.DataFrame,
    factors: List[str],
    sample_column: str = "Sample",
    figsize: Tuple[int, int] = (10, 8),
    method: Literal["pearson", "kendall", "spearman"] = "pearson",
    group_colors: Optional[Dict[str, str]] = None,
) -> None:
    """
    Plot clustered correlation heatmap between arrays.

    Parameters:
    -----------
    expression : pd.DataFrame
        Log2 expression data
    targets : pd.DataFrame
        Sample metadata
    factors : List[str]
        Factor columns defining the groups
    figsize : Tuple[int, int]
        Figure size
    method : str
        Correlation method ('pearson', 'kendall', 'spearman')
    group_colors : Optional[Dict[str, str]]
        Dictionary mapping group names to colors
    """

    sample_groups = _sample_groups(targets, factors, sample_column)
    sample_columns = [s for s in sample_groups if s in expression.columns]
    correlation_matrix = expression[sample_columns].corr(method=method)

    color_map = _group_color_map([sample_groups[s] for s in sample_columns], group_colors)
    row_colors = [color_map[sample_groups[s]] for s in sample_columns]

    correlation_values = correlation_matrix.values
    upper_triangle = correlation_values[np.triu_indices_from(correlation_values, k=1)]

    with warnings.catch_warnings():
        warnings.simplefilter("ignore")

        actual_min = np.min(upper_triangle)
        g = sns.clustermap(
            correlation_matrix,
            figsize=figsize,
            cmap="RdYlBu",
            vmin=actual_min,
            vmax=1.0,
            linewidths=0.1,
            row_colors=row_colors,
            col_colors=row_colors,
            cbar_kws={"label": f"{method.title()} Correlation"},
        )
        g.ax_heatmap.set_xlabel("Arrays")
        g.ax_heatmap.set_ylabel("Arrays")
        g.fig.suptitle(f"Array Correlation Heatmap ({method.title()})", fontsize=16, y=1.02)

    plt.show()

    print(f"Correlation summary ({method}):")
    print(f"Mean correlation: {np.mean(upper_triangle):.3f}")
    print(f"Min correlation: {np.min(upper_triangle):.3f}")
    print(f"Max correlation: {np.max(upper_triangle):.3f}")


def plot_ma(
    table: pd.DataFrame,
    status: Optional[pd.Series] = None,
    label_top_n: int = 5,
    figsize: Tuple[int, int] = (10, 7),
    title: str = "MA Plot",
) -> None:
    """
    Plot log fold change against average expression.

    Parameters:
    -----------
    table : pd.DataFrame
        Top table for one contrast (needs Gene, logFC, AveExpr)
    status : pd.Series, optional
        Decision per gene (-1/0/1) indexed by gene, e.g. one column of
        decide_tests(); colors points as down/not significant/up
    label_top_n : int
        Number of genes from the head of the table to label
    figsize : Tuple[int, int]
        Figure size (width, height)
    title : str
        Plot title
    """

    if len(table) == 0:
        print("No data to plot")
        return

    df = table.copy()
    if status is not None:
        df["status"] = df["Gene"].map(status.rename(index=str)).fillna(0).astype(int)
    else:
        df["status"] = 0

    style = {
        0: ("gray", "Not significant"),
        1: ("red", "Up"),
        -1: ("blue", "Down"),
    }

    fig, ax = plt.subplots(figsize=figsize)
    for value in [0, -1, 1]:
        subset = df[df["status"] == value]
        if len(subset) > 0:
            color, label = style[value]
            ax.scatter(subset["AveExpr"], subset["logFC"], c=color, alpha=0.6,
                       s=20 if value == 0 else 35, label=f"{label} ({len(subset)})")

    ax.axhline(y=0, color="black", linestyle="--", alpha=0.5)

    for _, row in df.head(label_top_n).iterrows():
        ax.annotate(row["Gene"], (row["AveExpr"], row["logFC"]), xytext=(5, 5),
                    textcoords="offset points", fontsize=8, alpha=0.7)

    ax.set_xlabel("Average log2 Expression", fontsize=14)
    ax.set_ylabel("Log2 Fold Change", fontsize=14)
    ax.set_title(title, fontsize=16, fontweight="bold")
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)
    ax.grid(True, alpha=0.3)
    ax.legend(loc="upper right")

    plt.tight_layout()
    plt.show()

    print("MA plot summary:")
    print(f"Total genes: {len(df)}")
    print(f"Up: {(df['status'] == 1).sum()}, Down: {(df['status'] == -1).sum()}")


def plot_volcano(
    table: pd.DataFrame,
    fc_threshold: float = 1.0,
    p_threshold: float = 0.05,
    figsize: Tuple[int, int] = (12, 8),
    title: Optional[str] = None,
    label_top_n: int = 10,
    use_adjusted_pvalue: str = "adjusted",
) -> None:
    """
    Create volcano plot for one contrast.

    Parameters:
    -----------
    table : pd.DataFrame
        Top table for one contrast (Gene, logFC, P.Value, adj.P.Val)
    fc_threshold : float
        Log2 fold change threshold for highlighting
    p_threshold : float
        P-value threshold (applied to selected p-value type)
    figsize : Tuple[int, int]
        Figure size (width, height)
    title : str, optional
        Plot title
    label_top_n : int
        Number of top significant genes to label
    use_adjusted_pvalue : str
        "adjusted" to use BH-corrected p-values, "unadjusted" for raw p-values
    """

    if len(table) == 0:
        print("No data to plot")
        return

    df = table.copy()

    if use_adjusted_pvalue == "adjusted":
        p_col_used, p_type_label = "adj.P.Val", "FDR"
    elif use_adjusted_pvalue == "unadjusted":
        p_col_used, p_type_label = "P.Value", "P-value"
    else:
        raise ValueError("use_adjusted_pvalue must be 'adjusted' or 'unadjusted'")

    df["neg_log10_p"] = -np.log10(df[p_col_used].clip(lower=1e-300))

    significant = df[p_col_used] < p_threshold
    large = df["logFC"].abs() > fc_threshold
    df["color"] = "gray"
    df.loc[significant & ~large, "color"] = "orange"
    df.loc[significant & large & (df["logFC"] < 0), "color"] = "blue"
    df.loc[significant & large & (df["logFC"] > 0), "color"] = "red"

    fig, ax = plt.subplots(figsize=figsize)

    labels = {
        "gray": "Not significant",
        "orange": "Significant",
        "blue": "Decreased",
        "red": "Increased",
    }
    for color in ["gray", "orange", "blue", "red"]:
        subset = df[df["color"] == color]
        if len(subset) > 0:
            ax.scatter(subset["logFC"], subset["neg_log10_p"], c=color, alpha=0.6,
                       s=30, label=labels[color])

    ax.axhline(y=-np.log10(p_threshold), color="black", linestyle="--", alpha=0.5)
    ax.axvline(x=fc_threshold, color="black", linestyle="--", alpha=0.5)
    ax.axvline(x=-fc_threshold, color="black", linestyle="--", alpha=0.5)

    if label_top_n > 0:
        to_label = df[significant & large].sort_values(p_col_used, kind="mergesort").head(label_top_n)
        for _, row in to_label.iterrows():
            ax.annotate(row["Gene"], (row["logFC"], row["neg_log10_p"]), xytext=(5, 5),
                        textcoords="offset points", fontsize=8, alpha=0.7)

    plot_title = title or f"Volcano Plot (FC > {fc_threshold}, {p_type_label} < {p_threshold})"
    print(f"\n{plot_title}")

    ax.set_title(plot_title, fontsize=16, fontweight="bold")
    ax.set_xlabel("Log2 Fold Change", fontsize=16, fontweight="bold")
    ax.set_ylabel(f"-Log10 {p_type_label}", fontsize=16, fontweight="bold")
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)
    ax.spines["left"].set_linewidth(2)
    ax.spines["bottom"].set_linewidth(2)
    ax.tick_params(axis="both", which="major", labelsize=12, width=1.5, length=6)
    ax.grid(True, alpha=0.3)
    ax.legend(loc="upper right", frameon=True, fancybox=True, shadow=True, fontsize=11)

    plt.tight_layout()
    plt.show()

    n_up = int((significant & large & (df["logFC"] > 0)).sum())
    n_down = int((significant & large & (df["logFC"] < 0)).sum())

    print("Volcano plot summary:")
    print(f"Total genes: {len(df)}")
    print(f"Significant ({p_type_label} < {p_threshold}): {int(significant.sum())}")
    print(f"Up-regulated (FC > {fc_threshold}, {p_type_label} < {p_threshold}): {n_up}")
    print(f"Down-regulated (FC < -{fc_threshold}, {p_type_label} < {p_threshold}): {n_down}")


# Circle centres and radius for 2- and 3-set diagrams in unit axes
_VENN_LAYOUT = {
    2: [(0.37, 0.5), (0.63, 0.5)],
    3: [(0.37, 0.6), (0.63, 0.6), (0.5, 0.37)],
}
_VENN_RADIUS = 0.25


def plot_venn_diagram(
    counts: pd.DataFrame,
    figsize: Tuple[int, int] = (8, 8),
    title: str = "Significant Genes per Contrast",
) -> None:
    """
    Draw a Venn diagram from venn_counts() output (two or three contrasts).

    Parameters:
    -----------
    counts : pd.DataFrame
        0/1 membership columns per contrast plus 'Counts'
    figsize : Tuple[int, int]
        Figure size (width, height)
    title : str
        Plot title
    """

    contrasts = [col for col in counts.columns if col != "Counts"]
    if len(contrasts) not in _VENN_LAYOUT:
        raise ValueError(f"Venn diagrams need 2 or 3 contrasts, got {len(contrasts)}")

    centres = _VENN_LAYOUT[len(contrasts)]
    colors = sns.color_palette("Set2", len(contrasts))

    fig, ax = plt.subplots(figsize=figsize)
    for (x, y), color, name in zip(centres, colors, contrasts):
        ax.add_patch(Circle((x, y), _VENN_RADIUS, facecolor=color, alpha=0.35,
                            edgecolor="black", linewidth=1.5))
        dx, dy = x - 0.5, y - 0.5
        ax.text(x + dx * 1.3, y + dy * 1.3 + (0.28 if dy >= 0 else -0.28), name,
                ha="center", va="center", fontsize=13, fontweight="bold")

    # Each region is labelled at the mean centre of its member sets pushed away from the others
    outside = 0
    for _, row in counts.iterrows():
        membership = [int(row[name]) for name in contrasts]
        if not any(membership):
            outside = int(row["Counts"])
            continue
        inside = np.array([c for c, m in zip(centres, membership) if m])
        others = np.array([c for c, m in zip(centres, membership) if not m])
        point = inside.mean(axis=0)
        if len(others):
            point = point + (point - others.mean(axis=0)) * 0.35
        ax.text(point[0], point[1], str(int(row["Counts"])), ha="center", va="center",
                fontsize=14)

    ax.text(0.95, 0.05, f"Not significant: {outside}", ha="right", va="bottom", fontsize=11)
    ax.set_xlim(0, 1)
    ax.set_ylim(0, 1)
    ax.set_aspect("equal")
    ax.axis("off")
    ax.set_title(title, fontsize=16, fontweight="bold")

    plt.tight_layout()
    plt.show()

    print("Venn diagram summary:")
    for name in contrasts:
        print(f"  {name}: {int(counts.loc[counts[name] == 1, 'Counts'].sum())} genes")
