"""
Model Comparison Module
=======================

Fits every configured model on the same train/holdout split and tabulates
cross-validated and holdout performance side by side.

Regression tables carry CV RMSE, holdout RMSE/R² and (for OLS) BIC.
Classification tables carry CV/holdout probability RMSE and AUC, the
cost-sensitive threshold chosen by cross-validation and the resulting
expected loss on the holdout set.
"""

import logging
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt

from .model import PredictionModel, train_model, variance_inflation_factors
from .cross_validation import cross_validate_model
from .evaluation import (
    regression_metrics, classification_metrics, expected_loss, slugify,
    plot_model_comparison, plot_actual_vs_predicted, plot_residuals,
    plot_roc_curves, plot_calibration, plot_loss_curve
)

logger = logging.getLogger(__name__)

SELECTION_METRICS = {
    'cv_rmse': True,
    'cv_expected_loss': True,
    'cv_auc': False,
    'bic': True
}


def model_matrices(
    prep_result: Dict[str, Any],
    features: Optional[List[str]] = None
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Train and holdout feature matrices restricted to some input columns.

    Args:
        prep_result: Dictionary from preprocess_pipeline
        features: Input (pre-encoding) column names; None keeps all features.
            Names not among the transformer inputs (e.g. dropped as empty
            or constant during cleaning) are skipped with a warning.

    Returns:
        Tuple of (X_train, X_test)
    """
    if features:
        transformer = prep_result['transformer']
        available = [col for col in features if col in transformer.input_columns]
        unavailable = [col for col in features if col not in transformer.input_columns]
        if unavailable:
            logger.warning(f"Features not in the clean data, skipped: {unavailable}")
        if not available:
            raise ValueError(f"None of the features {features} are in the clean data")
        columns = transformer.columns_for(available)
    else:
        columns = prep_result['feature_names']
    return prep_result['X_train'][columns], prep_result['X_test'][columns]


def compare_models(
    prep_result: Dict[str, Any],
    model_configs: List[Dict[str, Any]],
    cv_config: Optional[Dict[str, Any]] = None,
    threshold_config: Optional[Dict[str, Any]] = None,
    selection_metric: str = 'cv_rmse',
    output_dir: str = "reports/",
    model_dir: Optional[str] = None,
    show_plots: bool = False
) -> Dict[str, Any]:
    """
    Run the model-comparison harness.

    Args:
        prep_result: Dictionary from preprocess_pipeline
        model_configs: List of {'name', 'kind', 'params', 'features'} entries
        cv_config: {'n_folds': 5, 'random_state': 42}
        threshold_config: {'fp_cost', 'fn_cost', 'method'} (classification)
        selection_metric: Column used to rank models and pick the best one
        output_dir: Directory for tables and figures
        model_dir: Directory to save fitted models (optional)
        show_plots: Whether to display plots interactively

    Returns:
        Dictionary containing the comparison table, fitted models, CV results,
        the best model name and written file paths
    """
    if not model_configs:
        raise ValueError("No models configured for comparison")
    if selection_metric not in SELECTION_METRICS:
        raise ValueError(
            f"Unknown selection metric: {selection_metric}. "
            f"Choose from: {', '.join(SELECTION_METRICS)}"
        )

    task = prep_result['task']
    cv_config = cv_config or {}
    n_folds = cv_config.get('n_folds', 5)
    random_state = cv_config.get('random_state', 42)

    threshold_config = threshold_config or {}
    fp_cost = threshold_config.get('fp_cost')
    fn_cost = threshold_config.get('fn_cost')
    threshold_method = threshold_config.get('method', 'expected_loss')
    with_costs = task == 'classification' and fp_cost is not None and fn_cost is not None

    y_train = prep_result['y_train']
    y_test = prep_result['y_test']

    logger.info("=" * 60)
    logger.info(f"STARTING MODEL COMPARISON ({len(model_configs)} models, {task})")
    logger.info("=" * 60)

    rows = []
    models: Dict[str, PredictionModel] = {}
    cv_results: Dict[str, Dict[str, Any]] = {}
    predictions: Dict[str, np.ndarray] = {}
    vif: Dict[str, pd.Series] = {}

    for cfg in model_configs:
        kind = cfg['kind']
        name = cfg.get('name', kind)
        if name in models:
            raise ValueError(f"Duplicate model name: {name}")

        X_train, X_test = model_matrices(prep_result, cfg.get('features'))

        cv = cross_validate_model(
            X_train, y_train, kind,
            task=task,
            params=cfg.get('params'),
            n_folds=n_folds,
            random_state=random_state,
            name=name,
            fp_cost=fp_cost if with_costs else None,
            fn_cost=fn_cost if with_costs else None,
            threshold_method=threshold_method
        )

        save_path = str(Path(model_dir) / f"{slugify(name)}.joblib") if model_dir else None
        model = train_model(X_train, y_train, {**cfg, 'name': name}, task=task, save_path=save_path)

        row = {
            'model': name,
            'kind': kind,
            'n_features': int(X_train.shape[1]),
            'n_coefficients': model.n_coefficients(),
            'cv_rmse': cv['rmse']
        }

        if kind == 'ols':
            row['bic'] = model.summary()['bic']
            vif[name] = variance_inflation_factors(X_train)

        if task == 'regression':
            predicted = model.predict(X_test)
            metrics = regression_metrics(y_test, predicted)
            row['holdout_rmse'] = metrics['rmse']
            row['holdout_r2'] = metrics['r2']
        else:
            predicted = model.predict_proba(X_test)
            threshold = cv['threshold'] if with_costs else 0.5
            model.threshold = threshold
            metrics = classification_metrics(y_test, predicted, threshold)
            row['cv_auc'] = cv['auc']
            row['holdout_rmse'] = metrics['rmse']
            row['holdout_auc'] = metrics['auc']
            row['threshold'] = threshold
            if with_costs:
                row['cv_expected_loss'] = cv['expected_loss']
                row['holdout_expected_loss'] = expected_loss(
                    y_test, (predicted >= threshold).astype(int), fp_cost, fn_cost
                )

        rows.append(row)
        models[name] = model
        cv_results[name] = cv
        predictions[name] = predicted

    table = pd.DataFrame(rows)
    if selection_metric not in table.columns or table[selection_metric].isna().all():
        logger.warning(f"Selection metric '{selection_metric}' unavailable, using cv_rmse")
        selection_metric = 'cv_rmse'
    ascending = SELECTION_METRICS[selection_metric]
    table = table.sort_values(selection_metric, ascending=ascending, kind='mergesort',
                              na_position='last').reset_index(drop=True)
    best_model = str(table.loc[0, 'model'])

    output_dir = Path(output_dir)
    tables_dir = output_dir / "tables"
    tables_dir.mkdir(parents=True, exist_ok=True)

    table_csv = tables_dir / "model_comparison.csv"
    table.to_csv(table_csv, index=False)
    table_md = tables_dir / "model_comparison.md"
    table_md.write_text(table.to_markdown(index=False, floatfmt='.4f') + "\n")
    logger.info(f"Comparison table saved to {table_csv}")

    figures = _comparison_figures(
        table, task, best_model, predictions, y_test,
        fp_cost if with_costs else None,
        fn_cost if with_costs else None,
        output_dir
    )

    if show_plots:
        plt.show()
    else:
        plt.close('all')

    logger.info("=" * 60)
    logger.info("MODEL COMPARISON COMPLETE")
    logger.info(f"  Best model by {selection_metric}: {best_model}")
    logger.info("=" * 60)

    return {
        'task': task,
        'table': table,
        'models': models,
        'cv_results': cv_results,
        'vif': vif,
        'best_model': best_model,
        'selection_metric': selection_metric,
        'figures': figures,
        'table_csv': str(table_csv),
        'table_md': str(table_md)
    }


def _comparison_figures(
    table: pd.DataFrame,
    task: str,
    best_model: str,
    predictions: Dict[str, np.ndarray],
    y_test,
    fp_cost: Optional[float],
    fn_cost: Optional[float],
    output_dir: Path
) -> List[str]:
    figures = []
    slug = slugify(best_model)

    if task == 'regression':
        figures.append("figures/model_comparison.png")
        plot_model_comparison(table, ['cv_rmse', 'holdout_rmse', 'holdout_r2'],
                              save_path=str(output_dir / figures[-1]))

        figures.append(f"figures/{slug}_actual_vs_predicted.png")
        plot_actual_vs_predicted(y_test, predictions[best_model], title=best_model,
                                 save_path=str(output_dir / figures[-1]))

        figures.append(f"figures/{slug}_residuals.png")
        plot_residuals(y_test, predictions[best_model], title=f'Residuals - {best_model}',
                       save_path=str(output_dir / figures[-1]))
        return figures

    figures.append("figures/model_comparison.png")
    plot_model_comparison(
        table, ['cv_rmse', 'holdout_auc', 'holdout_expected_loss'],
        save_path=str(output_dir / figures[-1])
    )

    figures.append("figures/roc_curves.png")
    plot_roc_curves(
        {name: (y_test, proba) for name, proba in predictions.items()},
        dict(zip(table['model'], table['threshold'])),
        save_path=str(output_dir / figures[-1])
    )

    figures.append(f"figures/{slug}_calibration.png")
    plot_calibration(y_test, predictions[best_model], title=f'Calibration - {best_model}',
                     save_path=str(output_dir / figures[-1]))

    if fp_cost is not None and fn_cost is not None:
        chosen = float(table.loc[table['model'] == best_model, 'threshold'].iloc[0])
        figures.append(f"figures/{slug}_loss_curve.png")
        plot_loss_curve(y_test, predictions[best_model], fp_cost, fn_cost,
                        chosen_threshold=chosen, title=f'Expected loss - {best_model}',
                        save_path=str(output_dir / figures[-1]))

    return figures


def print_comparison_table(result: Dict[str, Any]) -> None:
    """
    Print the comparison table to console.

    Args:
        result: Dictionary from compare_models
    """
    print("\n" + "=" * 70)
    print("MODEL COMPARISON")
    print("=" * 70)
    print(result['table'].to_string(index=False, float_format=lambda v: f"{v:.4f}"))
    print("-" * 70)
    print(f"Best model by {result['selection_metric']}: {result['best_model']}")
    print("=" * 70 + "\n")
