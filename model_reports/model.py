"""
Model Training Module
=====================

One wrapper class around the estimators compared in the reports.

Kinds:
    - ols: statsmodels OLS with heteroskedasticity-robust standard errors
    - lasso: Standardization + LassoCV
    - random_forest: RandomForestRegressor / RandomForestClassifier
    - xgboost: XGBRegressor / XGBClassifier
    - cart: DecisionTreeRegressor / DecisionTreeClassifier
    - logit: Unpenalized logistic regression
    - logit_lasso: Standardization + L1 LogisticRegressionCV

Features:
    - Uniform fit / predict / predict_proba across libraries
    - Feature importances and model summaries (BIC for OLS)
    - Model persistence (save/load)
"""

import logging
from pathlib import Path
from typing import Dict, Any, Optional, List, Union
from datetime import datetime

import numpy as np
import pandas as pd
import joblib
import statsmodels.api as sm
from statsmodels.stats.outliers_influence import variance_inflation_factor
from sklearn.ensemble import RandomForestClassifier, RandomForestRegressor
from sklearn.linear_model import LassoCV, LogisticRegression, LogisticRegressionCV
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler
from sklearn.tree import DecisionTreeClassifier, DecisionTreeRegressor
import xgboost as xgb

logger = logging.getLogger(__name__)

REGRESSION_KINDS = ('ols', 'lasso', 'random_forest', 'xgboost', 'cart')
CLASSIFICATION_KINDS = ('logit', 'logit_lasso', 'random_forest', 'xgboost', 'cart')

DEFAULT_PARAMS: Dict[str, Dict[str, Any]] = {
    'ols': {'cov_type': 'HC1'},
    'lasso': {'cv': 5, 'max_iter': 10000},
    'random_forest': {
        'n_estimators': 500,
        'max_features': 'sqrt',
        'min_samples_leaf': 5,
        'random_state': 42,
        'n_jobs': -1
    },
    'xgboost': {
        'n_estimators': 300,
        'max_depth': 4,
        'learning_rate': 0.05,
        'subsample': 0.8,
        'colsample_bytree': 0.8,
        'random_state': 42,
        'n_jobs': -1
    },
    # minimum split of 20 rows, leaves of round(20 / 3)
    'cart': {
        'min_samples_split': 20,
        'min_samples_leaf': 7,
        'ccp_alpha': 0.0,
        'random_state': 42
    },
    'logit': {'max_iter': 1000},
    'logit_lasso': {
        'Cs': 10,
        'cv': 5,
        'solver': 'liblinear',
        'scoring': 'neg_brier_score',
        'max_iter': 5000,
        'random_state': 42
    }
}

ArrayLike = Union[pd.DataFrame, np.ndarray]


def build_estimator(kind: str, task: str, params: Optional[Dict[str, Any]] = None):
    """
    Create an unfitted library estimator.

    Args:
        kind: Model kind (see module docstring)
        task: 'regression' or 'classification'
        params: Overrides for the default hyperparameters

    Returns:
        scikit-learn compatible estimator, or None for 'ols' (statsmodels is
        fitted directly)
    """
    if task == 'regression':
        allowed = REGRESSION_KINDS
    elif task == 'classification':
        allowed = CLASSIFICATION_KINDS
    else:
        raise ValueError(f"Unknown task: {task}. Choose 'regression' or 'classification'")

    if kind not in allowed:
        raise ValueError(
            f"Model kind '{kind}' is not available for {task}. Choose from: {', '.join(allowed)}"
        )

    merged = {**DEFAULT_PARAMS[kind], **(params or {})}
    regression = task == 'regression'

    if kind == 'ols':
        return None

    if kind == 'lasso':
        return Pipeline([
            ('scaler', StandardScaler()),
            ('lasso', LassoCV(**merged))
        ])

    if kind == 'random_forest':
        cls = RandomForestRegressor if regression else RandomForestClassifier
        return cls(**merged)

    if kind == 'xgboost':
        cls = xgb.XGBRegressor if regression else xgb.XGBClassifier
        return cls(**merged)

    if kind == 'cart':
        cls = DecisionTreeRegressor if regression else DecisionTreeClassifier
        return cls(**merged)

    if kind == 'logit':
        return LogisticRegression(penalty=None, **merged)

    # logit_lasso
    return Pipeline([
        ('scaler', StandardScaler()),
        ('logit', LogisticRegressionCV(penalty='l1', **merged))
    ])


class PredictionModel:
    """
    Regression or binary classification model with a library-independent API.
    """

    def __init__(
        self,
        kind: str,
        task: str = 'regression',
        params: Optional[Dict[str, Any]] = None,
        name: Optional[str] = None,
        threshold: float = 0.5
    ):
        """
        Initialize the model.

        Args:
            kind: Model kind (ols, lasso, random_forest, xgboost, cart, logit, logit_lasso)
            task: 'regression' or 'classification'
            params: Hyperparameter overrides
            name: Display name used in tables (default: kind)
            threshold: Classification threshold used by predict()
        """
        # Validates the kind/task pair
        build_estimator(kind, task, params)

        self.kind = kind
        self.task = task
        self.params = dict(params or {})
        self.name = name or kind
        self.threshold = threshold

        self.estimator_ = None
        self.results_ = None
        self.feature_names_in_: Optional[List[str]] = None
        self.training_info: Dict[str, Any] = {}
        self._is_fitted = False

    def _as_frame(self, X: ArrayLike) -> pd.DataFrame:
        if isinstance(X, pd.DataFrame):
            if self.feature_names_in_ is not None:
                missing = [c for c in self.feature_names_in_ if c not in X.columns]
                if missing:
                    raise ValueError(
                        f"Expected {len(self.feature_names_in_)} features, missing: {missing}"
                    )
                return X[self.feature_names_in_]
            return X

        X = np.asarray(X, dtype=float)
        if X.ndim != 2:
            raise ValueError(f"Expected a 2D feature array, got shape {X.shape}")
        if self.feature_names_in_ is not None:
            if X.shape[1] != len(self.feature_names_in_):
                raise ValueError(
                    f"Expected {len(self.feature_names_in_)} features, but got {X.shape[1]}"
                )
            names = self.feature_names_in_
        else:
            names = [f"x{i + 1}" for i in range(X.shape[1])]
        return pd.DataFrame(X, columns=names)

    def fit(self, X: ArrayLike, y: ArrayLike) -> 'PredictionModel':
        """
        Train the model.

        Args:
            X: Feature matrix of shape (n_samples, n_features)
            y: Target vector (0/1 for classification)

        Returns:
            Self for method chaining
        """
        start_time = datetime.now()

        self.feature_names_in_ = None
        X = self._as_frame(X)
        y = np.asarray(y, dtype=float if self.task == 'regression' else int)

        if len(X) != len(y):
            raise ValueError(f"X has {len(X)} rows but y has {len(y)}")

        logger.info(f"Training {self.name} ({self.kind}, {self.task}): X={X.shape}")

        if self.kind == 'ols':
            merged = {**DEFAULT_PARAMS['ols'], **self.params}
            exog = sm.add_constant(X.astype(float), has_constant='add')
            self.results_ = sm.OLS(y, exog).fit(cov_type=merged['cov_type'])
        else:
            self.estimator_ = build_estimator(self.kind, self.task, self.params)
            self.estimator_.fit(X, y)

        self.feature_names_in_ = X.columns.tolist()

        end_time = datetime.now()
        duration = (end_time - start_time).total_seconds()
        self.training_info = {
            'training_duration_seconds': duration,
            'n_samples': int(X.shape[0]),
            'n_features': int(X.shape[1]),
            'trained_at': end_time.isoformat()
        }
        self._is_fitted = True

        logger.info(f"Trained {self.name} in {duration:.2f} seconds")
        return self

    def _check_fitted(self) -> None:
        if not self._is_fitted:
            raise ValueError("Model must be trained before prediction. Call fit() first.")

    def predict_values(self, X: ArrayLike) -> np.ndarray:
        """Raw model output: fitted values (regression) or probabilities (classification)."""
        if self.task == 'classification':
            return self.predict_proba(X)

        self._check_fitted()
        X = self._as_frame(X)
        if self.kind == 'ols':
            exog = sm.add_constant(X.astype(float), has_constant='add')
            return np.asarray(self.results_.predict(exog), dtype=float)
        return np.asarray(self.estimator_.predict(X), dtype=float)

    def predict(self, X: ArrayLike) -> np.ndarray:
        """
        Predict target values, or class labels at self.threshold.

        Args:
            X: Feature matrix

        Returns:
            Predictions of shape (n_samples,)
        """
        if self.task == 'classification':
            return (self.predict_proba(X) >= self.threshold).astype(int)
        return self.predict_values(X)

    def predict_proba(self, X: ArrayLike) -> np.ndarray:
        """
        Probability of the positive class.

        Args:
            X: Feature matrix

        Returns:
            Probabilities of shape (n_samples,)
        """
        if self.task != 'classification':
            raise ValueError("predict_proba is only available for classification models")
        self._check_fitted()
        X = self._as_frame(X)
        return np.asarray(self.estimator_.predict_proba(X)[:, 1], dtype=float)

    def _final_step(self):
        if isinstance(self.estimator_, Pipeline):
            return self.estimator_.steps[-1][1]
        return self.estimator_

    def get_feature_importances(self) -> pd.Series:
        """
        Feature importances, largest first.

        Absolute coefficients for linear models (standardized scale for the
        penalized ones), impurity/gain importances for tree models.

        Returns:
            Series indexed by feature name
        """
        self._check_fitted()

        if self.kind == 'ols':
            values = self.results_.params.drop('const').abs().values
        else:
            step = self._final_step()
            if hasattr(step, 'feature_importances_'):
                values = step.feature_importances_
            else:
                values = np.abs(np.ravel(step.coef_))

        importances = pd.Series(values, index=self.feature_names_in_, name='importance')
        return importances.sort_values(ascending=False)

    def n_coefficients(self) -> float:
        """
        Model size: estimated coefficients (incl. intercept) for linear
        models, terminal nodes for CART, NaN for ensembles.
        """
        self._check_fitted()
        n_features = len(self.feature_names_in_)

        if self.kind == 'ols':
            return float(len(self.results_.params))
        if self.kind == 'logit':
            return float(n_features + 1)
        if self.kind in ('lasso', 'logit_lasso'):
            return float(np.count_nonzero(np.ravel(self._final_step().coef_)) + 1)
        if self.kind == 'cart':
            return float(self.estimator_.get_n_leaves())
        return float('nan')

    def summary(self) -> Dict[str, Any]:
        """
        Model summary.

        Returns:
            OLS: coefficients, robust standard errors, p-values, R², AIC, BIC.
            Penalized models: chosen penalty and non-zero coefficients.
            Others: hyperparameters.
        """
        self._check_fitted()
        summary: Dict[str, Any] = {
            'name': self.name,
            'kind': self.kind,
            'task': self.task,
            'n_coefficients': self.n_coefficients(),
            'params': {**DEFAULT_PARAMS[self.kind], **self.params}
        }

        if self.kind == 'ols':
            res = self.results_
            summary.update({
                'coefficients': {k: float(v) for k, v in res.params.items()},
                'std_errors': {k: float(v) for k, v in res.bse.items()},
                'p_values': {k: float(v) for k, v in res.pvalues.items()},
                'r2': float(res.rsquared),
                'adj_r2': float(res.rsquared_adj),
                'aic': float(res.aic),
                'bic': float(res.bic),
                'nobs': int(res.nobs)
            })
        elif self.kind == 'lasso':
            lasso = self._final_step()
            coefs = pd.Series(lasso.coef_, index=self.feature_names_in_)
            summary.update({
                'alpha': float(lasso.alpha_),
                'coefficients': {k: float(v) for k, v in coefs[coefs != 0].items()}
            })
        elif self.kind == 'logit_lasso':
            logit = self._final_step()
            coefs = pd.Series(np.ravel(logit.coef_), index=self.feature_names_in_)
            summary.update({
                'C': float(np.ravel(logit.C_)[0]),
                'coefficients': {k: float(v) for k, v in coefs[coefs != 0].items()}
            })
        elif self.kind == 'logit':
            coefs = pd.Series(np.ravel(self.estimator_.coef_), index=self.feature_names_in_)
            summary['coefficients'] = {k: float(v) for k, v in coefs.items()}
            summary['intercept'] = float(np.ravel(self.estimator_.intercept_)[0])

        return summary

    def save(self, filepath: str) -> None:
        """
        Save the trained model to disk.

        Args:
            filepath: Path to save the model
        """
        if not self._is_fitted:
            raise ValueError("Cannot save untrained model.")

        state = {
            'kind': self.kind,
            'task': self.task,
            'params': self.params,
            'name': self.name,
            'threshold': self.threshold,
            'estimator_': self.estimator_,
            'results_': self.results_,
            'feature_names_in_': self.feature_names_in_,
            'training_info': self.training_info,
            '_is_fitted': self._is_fitted
        }

        Path(filepath).parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(state, filepath)
        logger.info(f"Model saved to {filepath}")

    @classmethod
    def load(cls, filepath: str) -> 'PredictionModel':
        """
        Load a trained model from disk.

        Args:
            filepath: Path to the saved model

        Returns:
            Loaded PredictionModel instance
        """
        state = joblib.load(filepath)

        model = cls(
            state['kind'],
            task=state['task'],
            params=state['params'],
            name=state['name'],
            threshold=state['threshold']
        )
        model.estimator_ = state['estimator_']
        model.results_ = state['results_']
        model.feature_names_in_ = state['feature_names_in_']
        model.training_info = state['training_info']
        model._is_fitted = state['_is_fitted']

        logger.info(f"Model loaded from {filepath}")
        return model


def variance_inflation_factors(X: pd.DataFrame) -> pd.Series:
    """
    Variance inflation factor of each column (multicollinearity check).

    Args:
        X: Numeric feature matrix

    Returns:
        Series of VIFs indexed by column, largest first
    """
    exog = sm.add_constant(X.astype(float), has_constant='add')
    values = {}
    with np.errstate(divide='ignore', invalid='ignore'):
        for i, col in enumerate(exog.columns):
            if col == 'const':
                continue
            values[col] = variance_inflation_factor(exog.values, i)
    return pd.Series(values, name='vif').sort_values(ascending=False)


def train_model(
    X_train: ArrayLike,
    y_train: ArrayLike,
    model_config: Dict[str, Any],
    task: str = 'regression',
    save_path: Optional[str] = None
) -> PredictionModel:
    """
    Train a model from one entry of the 'models' configuration list.

    Args:
        X_train: Training features
        y_train: Training target
        model_config: {'kind': ..., 'name': ..., 'params': {...}}
        task: 'regression' or 'classification'
        save_path: Path to save the trained model (optional)

    Returns:
        Trained PredictionModel
    """
    if 'kind' not in model_config:
        raise ValueError(f"Model configuration needs a 'kind': {model_config}")

    model = PredictionModel(
        model_config['kind'],
        task=task,
        params=model_config.get('params'),
        name=model_config.get('name')
    )

    model.fit(X_train, y_train)

    if save_path:
        model.save(save_path)

    return model


def print_model_summary(model: PredictionModel) -> None:
    """
    Print a summary of the trained model.

    Args:
        model: Trained model instance
    """
    summary = model.summary()

    print("\n" + "=" * 50)
    print(f"MODEL SUMMARY: {model.name}")
    print("=" * 50)
    print(f"Model Type: {model.kind} ({model.task})")
    print(f"Number of input features: {len(model.feature_names_in_)}")
    print(f"Number of coefficients: {summary['n_coefficients']}")

    if model.kind == 'ols':
        print(f"\nR²: {summary['r2']:.4f} | Adj. R²: {summary['adj_r2']:.4f}")
        print(f"AIC: {summary['aic']:.2f} | BIC: {summary['bic']:.2f}")
        print(f"\n{'Term':<25} {'Coef':>12} {'Robust SE':>12} {'p':>8}")
        print("-" * 60)
        for term, coef in summary['coefficients'].items():
            print(f"{term:<25} {coef:>12.4f} {summary['std_errors'][term]:>12.4f} "
                  f"{summary['p_values'][term]:>8.3f}")
    elif 'alpha' in summary:
        print(f"\nChosen alpha: {summary['alpha']:.6f}")
    elif 'C' in summary:
        print(f"\nChosen C: {summary['C']:.6f}")

    if model.training_info:
        print(f"\nTraining Info:")
        print(f"  - Duration: {model.training_info.get('training_duration_seconds', 0.0):.2f}s")
        print(f"  - Samples: {model.training_info.get('n_samples', 'N/A')}")

    print("=" * 50 + "\n")
