"""
Model Evaluation Module
=======================

Holdout metrics, ROC analysis, cost-sensitive thresholds and plots.

Features:
    - RMSE, MAE, R² for regression
    - ROC-AUC, probability RMSE, Brier score, confusion counts for classification
    - Expected loss for given false-positive / false-negative costs
    - Threshold selection (expected loss, Youden, cost formula)
    - Actual vs predicted, residual, ROC, calibration and loss-curve plots
"""

import logging
import json
import re
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from sklearn.calibration import calibration_curve
from sklearn.metrics import (
    mean_squared_error, mean_absolute_error, r2_score,
    roc_auc_score, roc_curve, brier_score_loss, confusion_matrix,
    accuracy_score, precision_score, recall_score
)

logger = logging.getLogger(__name__)

THRESHOLD_METHODS = ('expected_loss', 'youden', 'formula')

# Above every probability: classifies all observations as negative
NO_POSITIVE_THRESHOLD = float(np.nextafter(1.0, 2.0))


def slugify(name: str) -> str:
    """File-name friendly version of a model name."""
    return re.sub(r'[^0-9a-z]+', '_', name.lower()).strip('_')


def regression_metrics(y_true, y_pred) -> Dict[str, float]:
    """
    Holdout metrics for a regression model.

    Args:
        y_true: Ground truth values
        y_pred: Predicted values

    Returns:
        Dictionary with rmse, mae, r2, mean_error and n
    """
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)
    errors = y_true - y_pred

    return {
        'rmse': float(np.sqrt(mean_squared_error(y_true, y_pred))),
        'mae': float(mean_absolute_error(y_true, y_pred)),
        'r2': float(r2_score(y_true, y_pred)),
        'mean_error': float(np.mean(errors)),
        'max_error': float(np.max(np.abs(errors))),
        'n': int(len(y_true))
    }


def _check_costs(fp_cost: float, fn_cost: float) -> None:
    if fp_cost <= 0 or fn_cost <= 0:
        raise ValueError(f"Costs must be positive, got fp_cost={fp_cost}, fn_cost={fn_cost}")


def expected_loss(y_true, y_pred, fp_cost: float = 1.0, fn_cost: float = 1.0) -> float:
    """
    Average misclassification cost per observation.

    Args:
        y_true: True 0/1 labels
        y_pred: Predicted 0/1 labels
        fp_cost: Cost of a false positive
        fn_cost: Cost of a false negative

    Returns:
        (FP * fp_cost + FN * fn_cost) / n
    """
    _check_costs(fp_cost, fn_cost)
    y_true = np.asarray(y_true).astype(int)
    y_pred = np.asarray(y_pred).astype(int)
    fp = int(((y_pred == 1) & (y_true == 0)).sum())
    fn = int(((y_pred == 0) & (y_true == 1)).sum())
    return float((fp * fp_cost + fn * fn_cost) / len(y_true))


def formula_threshold(fp_cost: float, fn_cost: float) -> float:
    """Loss-minimizing threshold for calibrated probabilities: FP / (FP + FN)."""
    _check_costs(fp_cost, fn_cost)
    return float(fp_cost / (fp_cost + fn_cost))


def classification_metrics(y_true, y_proba, threshold: float = 0.5) -> Dict[str, float]:
    """
    Holdout metrics for a probability model.

    Args:
        y_true: True 0/1 labels
        y_proba: Predicted probabilities of the positive class
        threshold: Decision threshold for the confusion counts

    Returns:
        Dictionary of metrics
    """
    y_true = np.asarray(y_true).astype(int)
    y_proba = np.asarray(y_proba, dtype=float)
    y_pred = (y_proba >= threshold).astype(int)

    tn, fp, fn, tp = confusion_matrix(y_true, y_pred, labels=[0, 1]).ravel()
    auc = roc_auc_score(y_true, y_proba) if len(np.unique(y_true)) == 2 else float('nan')

    return {
        'auc': float(auc),
        'rmse': float(np.sqrt(np.mean((y_true - y_proba) ** 2))),
        'brier': float(brier_score_loss(y_true, y_proba)),
        'accuracy': float(accuracy_score(y_true, y_pred)),
        'precision': float(precision_score(y_true, y_pred, zero_division=0)),
        'recall': float(recall_score(y_true, y_pred, zero_division=0)),
        'specificity': float(tn / (tn + fp)) if (tn + fp) else float('nan'),
        'threshold': float(threshold),
        'tn': int(tn), 'fp': int(fp), 'fn': int(fn), 'tp': int(tp),
        'n': int(len(y_true))
    }


def roc_table(y_true, y_proba) -> pd.DataFrame:
    """
    ROC curve points.

    Returns:
        DataFrame with fpr, tpr and threshold. The all-negative point gets
        NO_POSITIVE_THRESHOLD, other thresholds are clipped to [0, 1]
    """
    fpr, tpr, thresholds = roc_curve(np.asarray(y_true).astype(int), np.asarray(y_proba, dtype=float))
    return pd.DataFrame({
        'fpr': fpr,
        'tpr': tpr,
        'threshold': np.where(
            np.isfinite(thresholds) & (thresholds <= 1.0),
            np.clip(thresholds, 0.0, 1.0),
            NO_POSITIVE_THRESHOLD
        )
    })


def optimal_threshold(
    y_true,
    y_proba,
    fp_cost: float = 1.0,
    fn_cost: float = 1.0,
    method: str = 'expected_loss'
) -> Dict[str, float]:
    """
    Choose a classification threshold.

    Methods:
        - expected_loss: ROC threshold with the lowest expected loss
        - youden: ROC threshold maximizing TPR - FPR
        - formula: fp_cost / (fp_cost + fn_cost)

    Args:
        y_true: True 0/1 labels
        y_proba: Predicted probabilities
        fp_cost: Cost of a false positive
        fn_cost: Cost of a false negative
        method: Selection method

    Returns:
        Dictionary with threshold, expected_loss and method
    """
    _check_costs(fp_cost, fn_cost)
    if method not in THRESHOLD_METHODS:
        raise ValueError(f"Unknown threshold method: {method}. Choose from: {', '.join(THRESHOLD_METHODS)}")

    y_true = np.asarray(y_true).astype(int)
    y_proba = np.asarray(y_proba, dtype=float)

    if method == 'formula':
        threshold = formula_threshold(fp_cost, fn_cost)
    else:
        roc = roc_table(y_true, y_proba)
        if method == 'youden':
            best = int(np.argmax(roc['tpr'].values - roc['fpr'].values))
        else:
            n = len(y_true)
            n_pos = int(y_true.sum())
            n_neg = n - n_pos
            losses = (roc['fpr'].values * n_neg * fp_cost
                      + (1 - roc['tpr'].values) * n_pos * fn_cost) / n
            best = int(np.argmin(losses))
        threshold = float(roc['threshold'].iloc[best])

    loss = expected_loss(y_true, (y_proba >= threshold).astype(int), fp_cost, fn_cost)
    return {'threshold': threshold, 'expected_loss': loss, 'method': method}


def loss_curve(
    y_true,
    y_proba,
    fp_cost: float = 1.0,
    fn_cost: float = 1.0,
    grid: Optional[np.ndarray] = None
) -> pd.DataFrame:
    """
    Expected loss over a grid of thresholds.

    Returns:
        DataFrame with threshold and expected_loss
    """
    if grid is None:
        grid = np.linspace(0.01, 0.99, 99)
    y_proba = np.asarray(y_proba, dtype=float)
    rows = [
        (float(t), expected_loss(y_true, (y_proba >= t).astype(int), fp_cost, fn_cost))
        for t in grid
    ]
    return pd.DataFrame(rows, columns=['threshold', 'expected_loss'])


def calibration_table(y_true, y_proba, n_bins: int = 10) -> pd.DataFrame:
    """
    Calibration curve: observed positive share per bin of predicted probability.

    Returns:
        DataFrame with mean_predicted and observed_share
    """
    observed, predicted = calibration_curve(
        np.asarray(y_true).astype(int), np.asarray(y_proba, dtype=float),
        n_bins=n_bins, strategy='uniform'
    )
    return pd.DataFrame({'mean_predicted': predicted, 'observed_share': observed})


def _save(fig: plt.Figure, save_path: Optional[str], label: str) -> None:
    if save_path:
        Path(save_path).parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"{label} saved to {save_path}")


def plot_actual_vs_predicted(
    y_true,
    y_pred,
    title: str = 'Actual vs Predicted',
    figsize: Tuple[int, int] = (7, 6),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Scatter of actual against predicted values with the 45-degree line.

    Returns:
        Matplotlib Figure object
    """
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)

    fig, ax = plt.subplots(figsize=figsize)
    ax.scatter(y_true, y_pred, alpha=0.5, s=20)

    min_val = min(y_true.min(), y_pred.min())
    max_val = max(y_true.max(), y_pred.max())
    ax.plot([min_val, max_val], [min_val, max_val], 'r--', linewidth=2, label='Perfect')

    r2 = r2_score(y_true, y_pred)
    rmse = np.sqrt(mean_squared_error(y_true, y_pred))

    ax.set_xlabel('Actual')
    ax.set_ylabel('Predicted')
    ax.set_title(f'{title}\nR²={r2:.4f}, RMSE={rmse:.4f}', fontsize=11, fontweight='bold')
    ax.legend(loc='upper left', fontsize=8)
    plt.tight_layout()

    _save(fig, save_path, "Actual vs Predicted plot")
    return fig


def plot_residuals(
    y_true,
    y_pred,
    title: str = 'Residuals',
    figsize: Tuple[int, int] = (12, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Residual histogram and residual-vs-fitted scatter.

    Returns:
        Matplotlib Figure object
    """
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)
    residuals = y_true - y_pred

    fig, axes = plt.subplots(1, 2, figsize=figsize)

    sns.histplot(residuals, kde=True, ax=axes[0], bins=40, alpha=0.7)
    axes[0].axvline(0, color='red', linestyle='--', linewidth=2, label='Zero')
    axes[0].axvline(np.mean(residuals), color='green', linestyle='--',
                    linewidth=2, label=f'Mean: {np.mean(residuals):.4f}')
    axes[0].set_xlabel('Residual (Actual - Predicted)')
    axes[0].set_ylabel('Frequency')
    axes[0].set_title(f'Distribution (Std: {np.std(residuals):.4f})', fontweight='bold')
    axes[0].legend(fontsize=8)

    axes[1].scatter(y_pred, residuals, alpha=0.5, s=15)
    axes[1].axhline(0, color='red', linestyle='--', linewidth=2)
    axes[1].set_xlabel('Predicted')
    axes[1].set_ylabel('Residual')
    axes[1].set_title('Residuals vs Predicted', fontweight='bold')

    plt.suptitle(title, fontsize=14, fontweight='bold')
    plt.tight_layout()

    _save(fig, save_path, "Residuals plot")
    return fig


def plot_roc_curves(
    curves: Dict[str, Tuple[Any, Any]],
    thresholds: Optional[Dict[str, float]] = None,
    figsize: Tuple[int, int] = (7, 6),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    ROC curves of several models, with the chosen thresholds marked.

    Args:
        curves: {model name: (y_true, y_proba)}
        thresholds: {model name: threshold} points to mark (optional)

    Returns:
        Matplotlib Figure object
    """
    thresholds = thresholds or {}
    fig, ax = plt.subplots(figsize=figsize)

    for name, (y_true, y_proba) in curves.items():
        roc = roc_table(y_true, y_proba)
        auc = roc_auc_score(np.asarray(y_true).astype(int), y_proba)
        line, = ax.plot(roc['fpr'], roc['tpr'], linewidth=1.5, label=f'{name} (AUC={auc:.3f})')

        if name in thresholds:
            metrics = classification_metrics(y_true, y_proba, thresholds[name])
            fpr = 1 - metrics['specificity']
            ax.scatter([fpr], [metrics['recall']], color=line.get_color(), s=60, zorder=5,
                       edgecolor='black')

    ax.plot([0, 1], [0, 1], color='gray', linestyle=':', label='Random')
    ax.set_xlabel('False positive rate (1 - specificity)')
    ax.set_ylabel('True positive rate (sensitivity)')
    ax.set_title('ROC Curves', fontsize=12, fontweight='bold')
    ax.legend(loc='lower right', fontsize=8)
    plt.tight_layout()

    _save(fig, save_path, "ROC plot")
    return fig


def plot_calibration(
    y_true,
    y_proba,
    title: str = 'Calibration',
    n_bins: int = 10,
    figsize: Tuple[int, int] = (6, 6),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Calibration curve against the diagonal.

    Returns:
        Matplotlib Figure object
    """
    table = calibration_table(y_true, y_proba, n_bins=n_bins)

    fig, ax = plt.subplots(figsize=figsize)
    ax.plot(table['mean_predicted'], table['observed_share'], 'o-', linewidth=1.5, label='Model')
    ax.plot([0, 1], [0, 1], color='gray', linestyle=':', label='Perfect calibration')
    ax.set_xlabel('Mean predicted probability')
    ax.set_ylabel('Observed share of positives')
    ax.set_xlim(0, 1)
    ax.set_ylim(0, 1)
    ax.set_title(title, fontsize=12, fontweight='bold')
    ax.legend(fontsize=8)
    plt.tight_layout()

    _save(fig, save_path, "Calibration plot")
    return fig


def plot_loss_curve(
    y_true,
    y_proba,
    fp_cost: float,
    fn_cost: float,
    chosen_threshold: Optional[float] = None,
    title: str = 'Expected loss by threshold',
    figsize: Tuple[int, int] = (7, 4),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Expected loss as a function of the threshold.

    Returns:
        Matplotlib Figure object
    """
    curve = loss_curve(y_true, y_proba, fp_cost, fn_cost)

    fig, ax = plt.subplots(figsize=figsize)
    ax.plot(curve['threshold'], curve['expected_loss'], linewidth=1.5, color='steelblue')
    ax.axvline(formula_threshold(fp_cost, fn_cost), color='gray', linestyle=':',
               label=f'Formula: {formula_threshold(fp_cost, fn_cost):.3f}')
    if chosen_threshold is not None:
        ax.axvline(chosen_threshold, color='red', linestyle='--',
                   label=f'Chosen: {chosen_threshold:.3f}')
    ax.set_xlabel('Threshold')
    ax.set_ylabel(f'Expected loss (FP={fp_cost:g}, FN={fn_cost:g})')
    ax.set_title(title, fontsize=12, fontweight='bold')
    ax.legend(fontsize=8)
    plt.tight_layout()

    _save(fig, save_path, "Loss curve plot")
    return fig


def plot_model_comparison(
    table: pd.DataFrame,
    metrics: List[str],
    figsize: Tuple[int, int] = (12, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Bar charts of the given metrics for every model in a comparison table.

    Args:
        table: Comparison table with a 'model' column
        metrics: Metric columns to plot (missing columns are skipped)

    Returns:
        Matplotlib Figure object
    """
    metrics = [m for m in metrics if m in table.columns]
    fig, axes = plt.subplots(1, max(len(metrics), 1), figsize=figsize, squeeze=False)
    axes = axes.flatten()

    x = np.arange(len(table))
    for ax, metric in zip(axes, metrics):
        values = table[metric].astype(float).values
        ax.bar(x, values, 0.6, color='steelblue', alpha=0.8)
        ax.set_xticks(x)
        ax.set_xticklabels(table['model'], rotation=45, ha='right')
        ax.set_ylabel(metric)
        ax.set_title(metric.replace('_', ' ').upper(), fontweight='bold')

    plt.suptitle('Model Comparison', fontsize=14, fontweight='bold')
    plt.tight_layout()

    _save(fig, save_path, "Model comparison plot")
    return fig


def _write_metrics(metrics: Dict[str, Any], metrics_file: Path) -> None:
    metrics_file.parent.mkdir(parents=True, exist_ok=True)
    with open(metrics_file, 'w') as f:
        json.dump(metrics, f, indent=2)
    logger.info(f"Metrics saved to {metrics_file}")


def evaluate_regression(
    y_true,
    y_pred,
    name: str = 'model',
    output_dir: str = "reports/",
    show_plots: bool = False
) -> Dict[str, Any]:
    """
    Holdout evaluation of a regression model with metrics JSON and figures.

    Args:
        y_true: Ground truth values
        y_pred: Predicted values
        name: Model name (used in titles and file names)
        output_dir: Directory for output files
        show_plots: Whether to display plots interactively

    Returns:
        Dictionary containing metrics and file paths
    """
    output_dir = Path(output_dir)
    slug = slugify(name)

    metrics = regression_metrics(y_true, y_pred)
    metrics_file = output_dir / "metrics" / f"{slug}_metrics.json"
    _write_metrics(metrics, metrics_file)

    figures = [f"figures/{slug}_actual_vs_predicted.png", f"figures/{slug}_residuals.png"]
    plot_actual_vs_predicted(y_true, y_pred, title=name, save_path=str(output_dir / figures[0]))
    plot_residuals(y_true, y_pred, title=f'Residuals - {name}', save_path=str(output_dir / figures[1]))

    if show_plots:
        plt.show()
    else:
        plt.close('all')

    logger.info(f"{name}: RMSE={metrics['rmse']:.4f} R²={metrics['r2']:.4f}")

    return {'metrics': metrics, 'figures': figures, 'metrics_file': str(metrics_file)}


def evaluate_classifier(
    y_true,
    y_proba,
    name: str = 'model',
    threshold: float = 0.5,
    fp_cost: float = 1.0,
    fn_cost: float = 1.0,
    output_dir: str = "reports/",
    show_plots: bool = False
) -> Dict[str, Any]:
    """
    Holdout evaluation of a probability model at a chosen threshold.

    Args:
        y_true: True 0/1 labels
        y_proba: Predicted probabilities
        name: Model name (used in titles and file names)
        threshold: Decision threshold
        fp_cost: Cost of a false positive
        fn_cost: Cost of a false negative
        output_dir: Directory for output files
        show_plots: Whether to display plots interactively

    Returns:
        Dictionary containing metrics and file paths
    """
    output_dir = Path(output_dir)
    slug = slugify(name)

    metrics = classification_metrics(y_true, y_proba, threshold)
    metrics['expected_loss'] = expected_loss(
        y_true, (np.asarray(y_proba) >= threshold).astype(int), fp_cost, fn_cost
    )
    metrics_file = output_dir / "metrics" / f"{slug}_metrics.json"
    _write_metrics(metrics, metrics_file)

    figures = [
        f"figures/{slug}_roc.png",
        f"figures/{slug}_calibration.png",
        f"figures/{slug}_loss_curve.png"
    ]
    plot_roc_curves({name: (y_true, y_proba)}, {name: threshold},
                    save_path=str(output_dir / figures[0]))
    plot_calibration(y_true, y_proba, title=f'Calibration - {name}',
                     save_path=str(output_dir / figures[1]))
    plot_loss_curve(y_true, y_proba, fp_cost, fn_cost, chosen_threshold=threshold,
                    title=f'Expected loss - {name}', save_path=str(output_dir / figures[2]))

    if show_plots:
        plt.show()
    else:
        plt.close('all')

    logger.info(
        f"{name}: AUC={metrics['auc']:.4f} RMSE={metrics['rmse']:.4f} "
        f"expected loss={metrics['expected_loss']:.4f} at threshold {threshold:.3f}"
    )

    return {'metrics': metrics, 'figures': figures, 'metrics_file': str(metrics_file)}


def print_evaluation_report(metrics: Dict[str, Any], name: str = 'model') -> None:
    """
    Print a formatted evaluation report to console.

    Args:
        metrics: Metrics dictionary from regression_metrics or classification_metrics
        name: Model name
    """
    print("\n" + "=" * 60)
    print(f"MODEL EVALUATION REPORT: {name}")
    print("=" * 60)

    if 'auc' in metrics:
        print(f"  • ROC-AUC: {metrics['auc']:.4f}")
        print(f"  • RMSE (probabilities): {metrics['rmse']:.4f}")
        print(f"  • Brier score: {metrics['brier']:.4f}")
        print(f"  • Threshold: {metrics['threshold']:.3f}")
        print(f"  • Accuracy: {metrics['accuracy']:.4f}")
        print(f"  • Sensitivity (recall): {metrics['recall']:.4f}")
        print(f"  • Specificity: {metrics['specificity']:.4f}")
        print(f"  • Confusion: TN={metrics['tn']} FP={metrics['fp']} FN={metrics['fn']} TP={metrics['tp']}")
        if 'expected_loss' in metrics:
            print(f"  • Expected loss: {metrics['expected_loss']:.4f}")
    else:
        print(f"  • RMSE: {metrics['rmse']:.4f}")
        print(f"  • MAE: {metrics['mae']:.4f}")
        print(f"  • R²: {metrics['r2']:.4f}")
        print(f"  • Samples evaluated: {metrics['n']}")

        print("\nInterpretation:")
        if metrics['r2'] > 0.7:
            print("  ✓ Good fit on the holdout set (R² > 0.7)")
        elif metrics['r2'] > 0.3:
            print("  ⚠ Moderate fit on the holdout set (R² > 0.3)")
        else:
            print("  ✗ Weak fit on the holdout set (R² <= 0.3)")

    print("=" * 60 + "\n")
