"""
Cross-Validation Module
=======================

k-fold cross-validation of the model kinds in model.py.

Regression models are scored by fold RMSE. Probability models are scored by
the RMSE of the predicted probabilities and by ROC-AUC; with misclassification
costs, each fold also picks its own loss-minimizing threshold.
"""

import logging
from typing import Dict, Any, Optional, Iterator, Tuple

import numpy as np
import pandas as pd
from sklearn.metrics import roc_auc_score
from sklearn.model_selection import KFold, StratifiedKFold

from .model import PredictionModel
from .evaluation import optimal_threshold

logger = logging.getLogger(__name__)


def make_folds(
    y,
    task: str = 'regression',
    n_folds: int = 5,
    random_state: int = 42
) -> Iterator[Tuple[np.ndarray, np.ndarray]]:
    """
    Shuffled k-fold indices; stratified for classification.

    Yields:
        (train_index, validation_index) pairs
    """
    if n_folds < 2:
        raise ValueError(f"n_folds must be at least 2, got {n_folds}")

    y = np.asarray(y)
    if task == 'classification':
        splitter = StratifiedKFold(n_splits=n_folds, shuffle=True, random_state=random_state)
    else:
        splitter = KFold(n_splits=n_folds, shuffle=True, random_state=random_state)
    return splitter.split(np.zeros(len(y)), y)


def _rows(X, index: np.ndarray):
    if isinstance(X, (pd.DataFrame, pd.Series)):
        return X.iloc[index]
    return np.asarray(X)[index]


def cross_validate_model(
    X,
    y,
    kind: str,
    task: str = 'regression',
    params: Optional[Dict[str, Any]] = None,
    n_folds: int = 5,
    random_state: int = 42,
    name: Optional[str] = None,
    fp_cost: Optional[float] = None,
    fn_cost: Optional[float] = None,
    threshold_method: str = 'expected_loss'
) -> Dict[str, Any]:
    """
    Cross-validate one model kind.

    A fresh model is fitted on each training fold and scored on the
    held-out fold.

    Args:
        X: Feature matrix
        y: Target vector
        kind: Model kind
        task: 'regression' or 'classification'
        params: Hyperparameter overrides
        n_folds: Number of folds
        random_state: Seed for the fold assignment
        name: Display name
        fp_cost: False-positive cost (classification, enables threshold search)
        fn_cost: False-negative cost (classification, enables threshold search)
        threshold_method: Threshold selection method per fold

    Returns:
        Dictionary with fold_rmse / rmse, and for classification fold_auc / auc
        and, when costs are given, fold_thresholds / threshold and
        fold_losses / expected_loss
    """
    name = name or kind
    y = np.asarray(y)
    with_threshold = task == 'classification' and fp_cost is not None and fn_cost is not None

    result: Dict[str, Any] = {
        'name': name,
        'kind': kind,
        'n_folds': n_folds,
        'fold_rmse': []
    }
    if task == 'classification':
        result['fold_auc'] = []
    if with_threshold:
        result['fold_thresholds'] = []
        result['fold_losses'] = []

    for fold, (train_idx, valid_idx) in enumerate(
        make_folds(y, task, n_folds, random_state), start=1
    ):
        model = PredictionModel(kind, task=task, params=params, name=name)
        model.fit(_rows(X, train_idx), y[train_idx])

        y_valid = y[valid_idx]
        predicted = model.predict_values(_rows(X, valid_idx))
        rmse = float(np.sqrt(np.mean((y_valid - predicted) ** 2)))
        result['fold_rmse'].append(rmse)

        if task == 'classification':
            auc = float(roc_auc_score(y_valid, predicted))
            result['fold_auc'].append(auc)

            if with_threshold:
                best = optimal_threshold(
                    y_valid, predicted, fp_cost=fp_cost, fn_cost=fn_cost,
                    method=threshold_method
                )
                result['fold_thresholds'].append(best['threshold'])
                result['fold_losses'].append(best['expected_loss'])

        logger.debug(f"{name} fold {fold}/{n_folds}: RMSE={rmse:.4f}")

    result['rmse'] = float(np.mean(result['fold_rmse']))
    if task == 'classification':
        result['auc'] = float(np.mean(result['fold_auc']))
    if with_threshold:
        result['threshold'] = float(np.mean(result['fold_thresholds']))
        result['expected_loss'] = float(np.mean(result['fold_losses']))

    logger.info(f"{name}: {n_folds}-fold CV RMSE={result['rmse']:.4f}"
                + (f" AUC={result['auc']:.4f}" if 'auc' in result else ""))
    return result


def cross_validate_threshold(
    X,
    y,
    kind: str,
    params: Optional[Dict[str, Any]] = None,
    fp_cost: float = 1.0,
    fn_cost: float = 1.0,
    n_folds: int = 5,
    random_state: int = 42,
    method: str = 'expected_loss'
) -> Dict[str, Any]:
    """
    Average of the per-fold loss-minimizing thresholds of a probability model.

    Args:
        X: Feature matrix
        y: 0/1 target
        kind: Classification model kind
        params: Hyperparameter overrides
        fp_cost: False-positive cost
        fn_cost: False-negative cost
        n_folds: Number of folds
        random_state: Seed for the fold assignment
        method: Threshold selection method per fold

    Returns:
        Dictionary with fold_thresholds, fold_losses, threshold and expected_loss
    """
    result = cross_validate_model(
        X, y, kind,
        task='classification',
        params=params,
        n_folds=n_folds,
        random_state=random_state,
        fp_cost=fp_cost,
        fn_cost=fn_cost,
        threshold_method=method
    )
    return {
        'fold_thresholds': result['fold_thresholds'],
        'fold_losses': result['fold_losses'],
        'threshold': result['threshold'],
        'expected_loss': result['expected_loss']
    }


def print_cv_results(result: Dict[str, Any]) -> None:
    """
    Print per-fold cross-validation results.

    Args:
        result: Dictionary from cross_validate_model
    """
    print(f"\n{result['name']} ({result['n_folds']}-fold CV)")
    print("-" * 50)
    for i, rmse in enumerate(result['fold_rmse'], start=1):
        line = f"  Fold {i}: RMSE={rmse:.4f}"
        if 'fold_auc' in result:
            line += f" AUC={result['fold_auc'][i - 1]:.4f}"
        if 'fold_thresholds' in result:
            line += (f" threshold={result['fold_thresholds'][i - 1]:.3f}"
                     f" loss={result['fold_losses'][i - 1]:.4f}")
        print(line)
    print(f"  Average: RMSE={result['rmse']:.4f}"
          + (f" AUC={result['auc']:.4f}" if 'auc' in result else ""))
