"""
Exploratory Data Analysis (EDA) Module
======================================

Describes the clean table before modeling.

Functions:
    - plot_target_distribution: Histogram of the target (and its log)
    - plot_correlation_matrix: Correlation heatmap
    - plot_distributions: Histograms of numeric columns
    - plot_categorical_counts: Frequency bars of categorical columns
    - generate_eda_report: Full EDA report with all visualizations
"""

import logging
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple

import pandas as pd
import numpy as np
import matplotlib.pyplot as plt
import seaborn as sns
from scipy import stats

logger = logging.getLogger(__name__)

# Set style for all plots
plt.style.use('seaborn-v0_8-whitegrid')
sns.set_palette("husl")


def _grid(n_items: int, n_cols: int = 2, figsize: Tuple[int, int] = (14, 10)):
    n_rows = max((n_items + n_cols - 1) // n_cols, 1)
    fig, axes = plt.subplots(n_rows, n_cols, figsize=figsize, squeeze=False)
    axes = axes.flatten()
    for idx in range(n_items, len(axes)):
        axes[idx].set_visible(False)
    return fig, axes


def plot_target_distribution(
    df: pd.DataFrame,
    target: str,
    figsize: Tuple[int, int] = (12, 4),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Histogram of the target; a second panel shows the log for positive targets.

    Args:
        df: DataFrame with the target column
        target: Target column name
        figsize: Figure size
        save_path: Path to save the figure (optional)

    Returns:
        Matplotlib Figure object
    """
    values = df[target].dropna().astype(float)
    positive = bool((values > 0).all()) and values.nunique() > 2

    fig, axes = plt.subplots(1, 2 if positive else 1, figsize=figsize, squeeze=False)
    axes = axes.flatten()

    sns.histplot(values, kde=values.nunique() > 2, ax=axes[0], bins=40, alpha=0.7)
    axes[0].axvline(values.mean(), color='red', linestyle='--', label=f'Mean: {values.mean():.2f}')
    axes[0].axvline(values.median(), color='green', linestyle='--', label=f'Median: {values.median():.2f}')
    axes[0].set_title(f'{target}', fontsize=11, fontweight='bold')
    axes[0].legend(fontsize=8)

    if positive:
        sns.histplot(np.log(values), kde=True, ax=axes[1], bins=40, alpha=0.7, color='coral')
        axes[1].set_title(f'ln({target})', fontsize=11, fontweight='bold')
        axes[1].set_xlabel(f'ln({target})')

    plt.suptitle('Target Distribution', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Target distribution saved to {save_path}")

    return fig


def plot_correlation_matrix(
    df: pd.DataFrame,
    method: str = 'pearson',
    max_columns: int = 25,
    figsize: Tuple[int, int] = (10, 8),
    save_path: Optional[str] = None
) -> Tuple[plt.Figure, pd.DataFrame]:
    """
    Create a correlation heatmap for numerical columns.

    Args:
        df: DataFrame with numerical data
        method: Correlation method ('pearson', 'spearman', 'kendall')
        max_columns: Plot at most this many columns (highest variance first)
        figsize: Figure size (width, height)
        save_path: Path to save the figure (optional)

    Returns:
        Tuple of (Figure, correlation matrix DataFrame)
    """
    numeric = df.select_dtypes(include=[np.number])
    numeric = numeric.loc[:, numeric.nunique() > 1]
    corr_matrix = numeric.corr(method=method)

    shown = corr_matrix
    if len(shown) > max_columns:
        keep = numeric.std().sort_values(ascending=False).index[:max_columns]
        shown = corr_matrix.loc[keep, keep]

    fig, ax = plt.subplots(figsize=figsize)

    mask = np.triu(np.ones_like(shown, dtype=bool), k=1)
    sns.heatmap(
        shown,
        mask=mask,
        annot=len(shown) <= 12,
        fmt='.2f',
        cmap='RdYlBu_r',
        center=0,
        square=True,
        linewidths=0.5,
        cbar_kws={"shrink": 0.8, "label": "Correlation"},
        ax=ax,
        vmin=-1,
        vmax=1
    )

    ax.set_title(f'Correlation Matrix ({method.capitalize()})',
                 fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Correlation matrix saved to {save_path}")

    return fig, corr_matrix


def plot_distributions(
    df: pd.DataFrame,
    columns: Optional[List[str]] = None,
    figsize: Tuple[int, int] = (14, 10),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Create distribution plots (histogram + KDE) for numeric columns.

    Args:
        df: DataFrame with numerical data
        columns: Columns to plot (default: numeric non-binary columns, max 8)
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    if columns is None:
        numeric = df.select_dtypes(include=[np.number])
        columns = [c for c in numeric.columns if numeric[c].nunique() > 2][:8]

    fig, axes = _grid(len(columns), figsize=figsize)

    for idx, col in enumerate(columns):
        ax = axes[idx]
        values = df[col].dropna()

        sns.histplot(values, kde=True, ax=ax, bins=40, alpha=0.7)

        mean_val = values.mean()
        median_val = values.median()
        ax.axvline(mean_val, color='red', linestyle='--', label=f'Mean: {mean_val:.2f}')
        ax.axvline(median_val, color='green', linestyle='--', label=f'Median: {median_val:.2f}')

        if len(values) >= 8:
            _, p_value = stats.normaltest(values)
            normality = "Normal" if p_value > 0.05 else "Non-Normal"
            ax.set_title(f'{col} ({normality}, p={p_value:.3f})', fontsize=10, fontweight='bold')
        else:
            ax.set_title(col, fontsize=10, fontweight='bold')
        ax.legend(fontsize=8)

    plt.suptitle('Distribution Analysis', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Distribution plots saved to {save_path}")

    return fig


def plot_categorical_counts(
    df: pd.DataFrame,
    columns: Optional[List[str]] = None,
    top_n: int = 15,
    figsize: Tuple[int, int] = (14, 10),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Frequency bars for categorical columns.

    Args:
        df: DataFrame
        columns: Columns to plot (default: non-numeric columns, max 6)
        top_n: Most frequent levels shown per column
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    if columns is None:
        columns = df.select_dtypes(exclude=[np.number, 'bool']).columns.tolist()[:6]

    fig, axes = _grid(len(columns), figsize=figsize)

    for idx, col in enumerate(columns):
        counts = df[col].fillna('missing').astype(str).value_counts().head(top_n)
        axes[idx].barh(counts.index[::-1], counts.values[::-1], color='steelblue', alpha=0.8)
        axes[idx].set_title(f'{col} ({df[col].nunique()} levels)', fontsize=10, fontweight='bold')
        axes[idx].set_xlabel('Count')

    plt.suptitle('Categorical Variables', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Categorical counts saved to {save_path}")

    return fig


def generate_eda_report(
    df: pd.DataFrame,
    target: Optional[str] = None,
    output_dir: str = "reports/figures/",
    show_plots: bool = False
) -> Dict[str, Any]:
    """
    Generate a complete EDA report with all visualizations.

    Args:
        df: DataFrame to analyze
        target: Target column (optional)
        output_dir: Directory to save figures
        show_plots: Whether to display plots interactively

    Returns:
        Dictionary containing EDA results and file paths
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    report = {
        "data_shape": df.shape,
        "columns": list(df.columns),
        "figures": [],
        "correlation_matrix": None,
        "target_correlations": {},
        "statistics": {}
    }

    logger.info("=" * 60)
    logger.info("STARTING EXPLORATORY DATA ANALYSIS")
    logger.info("=" * 60)

    if target is not None and pd.api.types.is_numeric_dtype(df[target]):
        logger.info("Plotting target distribution...")
        plot_target_distribution(df, target, save_path=str(output_dir / "01_target.png"))
        report["figures"].append("01_target.png")

    logger.info("Computing correlation matrix...")
    _, corr_matrix = plot_correlation_matrix(
        df, save_path=str(output_dir / "02_correlation_matrix.png")
    )
    report["figures"].append("02_correlation_matrix.png")
    report["correlation_matrix"] = corr_matrix.to_dict()
    if target is not None and target in corr_matrix.columns:
        report["target_correlations"] = (
            corr_matrix[target].drop(target).sort_values(key=np.abs, ascending=False).to_dict()
        )

    logger.info("Plotting distributions...")
    plot_distributions(df, save_path=str(output_dir / "03_distributions.png"))
    report["figures"].append("03_distributions.png")

    if len(df.select_dtypes(exclude=[np.number, 'bool']).columns):
        logger.info("Plotting categorical frequencies...")
        plot_categorical_counts(df, save_path=str(output_dir / "04_categorical.png"))
        report["figures"].append("04_categorical.png")

    for col in df.select_dtypes(include=[np.number]).columns:
        report["statistics"][col] = {
            "mean": float(df[col].mean()),
            "std": float(df[col].std()),
            "min": float(df[col].min()),
            "max": float(df[col].max()),
            "skew": float(df[col].skew())
        }

    if show_plots:
        plt.show()
    else:
        plt.close('all')

    logger.info("=" * 60)
    logger.info("EDA COMPLETE - All figures saved to: %s", output_dir)
    logger.info("=" * 60)

    return report


def print_correlation_insights(corr_matrix: pd.DataFrame, threshold: float = 0.5) -> None:
    """
    Print insights about strongly correlated variables.

    Args:
        corr_matrix: Correlation matrix DataFrame
        threshold: Correlation threshold for "strong" correlation
    """
    print("\n" + "=" * 50)
    print("CORRELATION INSIGHTS")
    print("=" * 50)

    strong_corr = []
    for i in range(len(corr_matrix.columns)):
        for j in range(i + 1, len(corr_matrix.columns)):
            corr_val = corr_matrix.iloc[i, j]
            if abs(corr_val) >= threshold:
                strong_corr.append({
                    "col1": corr_matrix.columns[i],
                    "col2": corr_matrix.columns[j],
                    "correlation": corr_val
                })

    if strong_corr:
        print(f"\nStrong correlations (|r| >= {threshold}):")
        for item in sorted(strong_corr, key=lambda x: abs(x["correlation"]), reverse=True):
            direction = "positive" if item["correlation"] > 0 else "negative"
            print(f"  • {item['col1']} ↔ {item['col2']}: {item['correlation']:.3f} ({direction})")
        print("\n  Strongly correlated predictors inflate OLS standard errors;")
        print("  check the variance inflation factors in the model report.")
    else:
        print(f"\nNo strong correlations found (|r| >= {threshold})")

    print("=" * 50 + "\n")
