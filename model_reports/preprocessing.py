"""
Data Preprocessing Module
=========================

Turns a clean table into model-ready feature matrices.

Functions:
    - FeatureTransformer: scikit-learn ColumnTransformer for median imputation,
      one-hot encoding and scaling learned on the training data only
    - split_data: Random (optionally stratified) holdout split
    - prepare_target: Binary target coding for classification
    - preprocess_pipeline: Split, fit the transformer and encode both parts
"""

import logging
import re
from pathlib import Path
from typing import Dict, Any, Tuple, Optional, List

import pandas as pd
import numpy as np
from sklearn.compose import ColumnTransformer
from sklearn.impute import SimpleImputer
from sklearn.model_selection import train_test_split
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import OneHotEncoder, OrdinalEncoder, StandardScaler
import joblib

from .cleaning import near_zero_variance, DEFAULT_FREQ_CUT, DEFAULT_UNIQUE_CUT

logger = logging.getLogger(__name__)

MISSING_LEVEL = 'missing'
FLAG_PREFIX = 'flag_miss_'


def _feature_name(name: str) -> str:
    # xgboost rejects '[', ']' and '<' in feature names
    return re.sub(r'[\[\]<>,]', '_', name)


class FeatureTransformer:
    """
    Feature encoding for heterogeneous tabular data.

    A scikit-learn ColumnTransformer median-imputes numeric columns (with
    optional missing-value indicators) and one-hot encodes categorical
    columns against the levels seen in fit; the result can be standardized
    for penalized models.
    """

    def __init__(
        self,
        impute: Optional[str] = 'median',
        add_missing_flags: bool = True,
        one_hot: bool = True,
        drop_first: bool = True,
        scale: bool = False,
        drop_near_zero_variance: bool = False,
        nzv_freq_cut: float = DEFAULT_FREQ_CUT,
        nzv_unique_cut: float = DEFAULT_UNIQUE_CUT
    ):
        """
        Initialize the transformer.

        Args:
            impute: 'median' or None (leave missing values in place)
            add_missing_flags: Add flag_miss_<col> for columns missing in fit data
            one_hot: One-hot encode categoricals (otherwise integer codes)
            drop_first: Drop the first level of each categorical (reference level)
            scale: Standardize all output columns
            drop_near_zero_variance: Drop near-zero-variance input columns
            nzv_freq_cut: Frequency-ratio cutoff for near-zero variance
            nzv_unique_cut: Percent-unique cutoff for near-zero variance
        """
        if impute not in ('median', None):
            raise ValueError(f"Unknown imputation strategy: {impute}. Choose 'median' or None")

        self.impute = impute
        self.add_missing_flags = add_missing_flags
        self.one_hot = one_hot
        self.drop_first = drop_first
        self.scale = scale
        self.drop_near_zero_variance = drop_near_zero_variance
        self.nzv_freq_cut = nzv_freq_cut
        self.nzv_unique_cut = nzv_unique_cut

        self.input_columns: Optional[List[str]] = None
        self.numeric_columns: Optional[List[str]] = None
        self.categorical_columns: Optional[List[str]] = None
        self.nzv_columns: List[str] = []
        self.medians: Dict[str, float] = {}
        self.flag_columns: List[str] = []
        self.categories: Dict[str, List[str]] = {}
        self.pipeline_: Optional[Pipeline] = None
        self.feature_names_: Optional[List[str]] = None
        self.feature_sources_: Dict[str, str] = {}
        self._is_fitted = False

    def _build_pipeline(self) -> Pipeline:
        if self.impute == 'median':
            numeric_step = SimpleImputer(
                strategy='median',
                add_indicator=self.add_missing_flags,
                keep_empty_features=True
            )
        else:
            numeric_step = 'passthrough'

        if self.one_hot:
            encoder = OneHotEncoder(
                drop='first' if self.drop_first else None,
                handle_unknown='ignore',
                sparse_output=False
            )
        else:
            encoder = OrdinalEncoder(handle_unknown='use_encoded_value', unknown_value=-1)

        categorical_step = Pipeline([
            ('imputer', SimpleImputer(strategy='constant', fill_value=MISSING_LEVEL)),
            ('encoder', encoder)
        ])

        preprocessor = ColumnTransformer(
            transformers=[
                ('num', numeric_step, self.numeric_columns),
                ('cat', categorical_step, self.categorical_columns)
            ],
            remainder='drop',
            verbose_feature_names_out=False
        )

        steps = [('preprocessor', preprocessor)]
        if self.scale:
            steps.append(('scaler', StandardScaler()))
        return Pipeline(steps)

    def _prepare(self, df: pd.DataFrame) -> pd.DataFrame:
        # Numeric as float; categorical labels as strings with NaN for missing
        data = df[self.numeric_columns + self.categorical_columns].copy()
        for col in self.numeric_columns:
            data[col] = data[col].astype(float)
        for col in self.categorical_columns:
            present = data[col].notna()
            data[col] = data[col].astype(str).where(present, np.nan).astype(object)
        return data

    def _feature_sources(self) -> List[str]:
        """Input column behind each output column, in output order."""
        preprocessor = self.pipeline_.named_steps['preprocessor']
        sources: List[str] = []

        for name, step, columns in preprocessor.transformers_:
            if name == 'remainder' or len(columns) == 0:
                continue
            columns = list(columns)
            if name == 'num':
                sources += columns
                if isinstance(step, SimpleImputer) and step.indicator_ is not None:
                    sources += [columns[i] for i in step.indicator_.features_]
            else:
                encoder = step.named_steps['encoder']
                if isinstance(encoder, OneHotEncoder):
                    for i, (col, levels) in enumerate(zip(columns, encoder.categories_)):
                        dropped = encoder.drop_idx_ is not None and encoder.drop_idx_[i] is not None
                        sources += [col] * (len(levels) - int(dropped))
                else:
                    sources += columns

        return sources

    def fit(self, df: pd.DataFrame) -> 'FeatureTransformer':
        """
        Learn imputation values, category levels and scaling parameters.

        Args:
            df: Feature DataFrame (target excluded)

        Returns:
            Self for method chaining
        """
        self.input_columns = df.columns.tolist()

        if self.drop_near_zero_variance:
            metrics = near_zero_variance(
                df, freq_cut=self.nzv_freq_cut, unique_cut=self.nzv_unique_cut
            )
            self.nzv_columns = metrics.index[metrics['nzv']].tolist()
            if self.nzv_columns:
                logger.info(f"Near-zero-variance columns excluded: {self.nzv_columns}")
        else:
            self.nzv_columns = []

        data = df.drop(columns=self.nzv_columns)
        self.numeric_columns = data.select_dtypes(include=[np.number, 'bool']).columns.tolist()
        self.categorical_columns = [c for c in data.columns if c not in self.numeric_columns]

        self.pipeline_ = self._build_pipeline()
        self.pipeline_.fit(self._prepare(data))

        preprocessor = self.pipeline_.named_steps['preprocessor']
        names = [
            _feature_name(re.sub(r'^missingindicator_', FLAG_PREFIX, name))
            for name in preprocessor.get_feature_names_out()
        ]
        self.feature_names_ = names
        self.feature_sources_ = dict(zip(names, self._feature_sources()))

        self.medians = {}
        self.flag_columns = []
        if self.impute == 'median' and self.numeric_columns:
            imputer = preprocessor.named_transformers_['num']
            self.medians = {
                col: 0.0 if np.isnan(value) else float(value)
                for col, value in zip(self.numeric_columns, imputer.statistics_)
            }
            if imputer.indicator_ is not None:
                self.flag_columns = [self.numeric_columns[i] for i in imputer.indicator_.features_]

        self.categories = {}
        if self.categorical_columns:
            encoder = preprocessor.named_transformers_['cat'].named_steps['encoder']
            for col, levels in zip(self.categorical_columns, encoder.categories_):
                self.categories[col] = [str(level) for level in levels]
                logger.info(f"Categorical '{col}': {len(levels)} levels")

        if self.scale:
            logger.info("Fitted StandardScaler to encoded features")

        self._is_fitted = True
        logger.info(
            f"FeatureTransformer fitted: {len(self.input_columns)} input columns -> "
            f"{len(self.feature_names_)} features"
        )
        return self

    def transform(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Encode data using fitted parameters.

        Args:
            df: DataFrame with the columns seen in fit

        Returns:
            Encoded feature DataFrame (index preserved)
        """
        if not self._is_fitted:
            raise ValueError("Transformer must be fitted before transform. Call fit() first.")

        missing = [col for col in self.input_columns if col not in df.columns]
        if missing:
            raise KeyError(f"Columns seen in fit are missing: {missing}")

        values = self.pipeline_.transform(self._prepare(df))
        return pd.DataFrame(values, columns=self.feature_names_, index=df.index)

    def fit_transform(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Fit and transform in one step.

        Args:
            df: DataFrame to fit and transform

        Returns:
            Encoded feature DataFrame
        """
        self.fit(df)
        return self.transform(df)

    def get_feature_names(self) -> List[str]:
        """
        Names of the encoded features.

        Returns:
            List of output column names
        """
        if self.feature_names_ is None:
            raise ValueError("Transformer must be fitted first.")
        return list(self.feature_names_)

    def columns_for(self, sources: List[str]) -> List[str]:
        """
        Encoded columns derived from the given input columns.

        Args:
            sources: Input column names

        Returns:
            Encoded column names, in feature order
        """
        if self.feature_names_ is None:
            raise ValueError("Transformer must be fitted first.")

        unknown = [s for s in sources if s not in self.input_columns]
        if unknown:
            raise KeyError(f"Unknown input columns: {unknown}")

        wanted = set(sources)
        return [name for name in self.feature_names_ if self.feature_sources_[name] in wanted]

    def save(self, filepath: str) -> None:
        """
        Save the transformer state to disk.

        Args:
            filepath: Path to save the transformer
        """
        state = {
            'params': {
                'impute': self.impute,
                'add_missing_flags': self.add_missing_flags,
                'one_hot': self.one_hot,
                'drop_first': self.drop_first,
                'scale': self.scale,
                'drop_near_zero_variance': self.drop_near_zero_variance,
                'nzv_freq_cut': self.nzv_freq_cut,
                'nzv_unique_cut': self.nzv_unique_cut
            },
            'input_columns': self.input_columns,
            'numeric_columns': self.numeric_columns,
            'categorical_columns': self.categorical_columns,
            'nzv_columns': self.nzv_columns,
            'medians': self.medians,
            'flag_columns': self.flag_columns,
            'categories': self.categories,
            'pipeline_': self.pipeline_,
            'feature_names_': self.feature_names_,
            'feature_sources_': self.feature_sources_,
            '_is_fitted': self._is_fitted
        }
        Path(filepath).parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(state, filepath)
        logger.info(f"Transformer saved to {filepath}")

    @classmethod
    def load(cls, filepath: str) -> 'FeatureTransformer':
        """
        Load a transformer from disk.

        Args:
            filepath: Path to the saved transformer

        Returns:
            Loaded FeatureTransformer instance
        """
        state = joblib.load(filepath)

        transformer = cls(**state['params'])
        for key in (
            'input_columns', 'numeric_columns', 'categorical_columns', 'nzv_columns',
            'medians', 'flag_columns', 'categories', 'pipeline_',
            'feature_names_', 'feature_sources_', '_is_fitted'
        ):
            setattr(transformer, key, state[key])

        logger.info(f"Transformer loaded from {filepath}")
        return transformer


def prepare_target(
    y: pd.Series,
    task: str,
    positive_class: Optional[Any] = None
) -> pd.Series:
    """
    Validate the target and code a classification target as 0/1.

    Args:
        y: Target values
        task: 'regression' or 'classification'
        positive_class: Label treated as 1 (classification only)

    Returns:
        Target series
    """
    if task == 'regression':
        if not pd.api.types.is_numeric_dtype(y):
            raise ValueError(f"Regression target must be numeric, got {y.dtype}")
        return y.astype(float)

    if task != 'classification':
        raise ValueError(f"Unknown task: {task}. Choose 'regression' or 'classification'")

    if positive_class is not None:
        return (y == positive_class).astype(int)

    values = set(pd.unique(y.dropna()))
    if not values <= {0, 1}:
        raise ValueError(
            f"Classification target must be 0/1 or set positive_class, got values {sorted(map(str, values))}"
        )
    return y.astype(int)


def split_data(
    X: pd.DataFrame,
    y: pd.Series,
    test_size: float = 0.2,
    random_state: int = 42,
    stratify: bool = False
) -> Tuple[pd.DataFrame, pd.DataFrame, pd.Series, pd.Series]:
    """
    Random holdout split.

    Args:
        X: Features
        y: Target
        test_size: Holdout share
        random_state: Random seed
        stratify: Preserve the class balance of y

    Returns:
        Tuple of (X_train, X_test, y_train, y_test)
    """
    X_train, X_test, y_train, y_test = train_test_split(
        X, y,
        test_size=test_size,
        random_state=random_state,
        stratify=y if stratify else None
    )

    logger.info(
        f"Train/Test split: {len(X_train)} train samples, {len(X_test)} test samples"
    )

    return X_train, X_test, y_train, y_test


def preprocess_pipeline(
    df: pd.DataFrame,
    target: str,
    task: str = 'regression',
    positive_class: Optional[Any] = None,
    exclude: Optional[List[str]] = None,
    test_size: float = 0.2,
    random_state: int = 42,
    stratify: Optional[bool] = None,
    transformer_params: Optional[Dict[str, Any]] = None,
    save_transformer: Optional[str] = None
) -> Dict[str, Any]:
    """
    Complete preprocessing pipeline for a clean table.

    The transformer is fitted on the training part only.

    Args:
        df: Clean DataFrame
        target: Target column
        task: 'regression' or 'classification'
        positive_class: Positive label for classification targets
        exclude: Columns never used as features (IDs, leakage)
        test_size: Holdout share
        random_state: Random seed for the split
        stratify: Stratify the split (default: True for classification)
        transformer_params: Keyword arguments for FeatureTransformer
        save_transformer: Path to save the fitted transformer

    Returns:
        Dictionary containing:
            - X_train, X_test, y_train, y_test: Encoded split data
            - X_train_raw, X_test_raw: Unencoded feature frames
            - transformer: Fitted FeatureTransformer
            - feature_names: Encoded feature names
            - target, task: Echo of the inputs
    """
    logger.info("=" * 60)
    logger.info("STARTING DATA PREPROCESSING")
    logger.info("=" * 60)

    if target not in df.columns:
        raise KeyError(f"Target column '{target}' not found")

    exclude = [col for col in (exclude or []) if col in df.columns and col != target]
    y = prepare_target(df[target], task, positive_class)
    X = df.drop(columns=[target] + exclude)

    if stratify is None:
        stratify = task == 'classification'

    X_train_raw, X_test_raw, y_train, y_test = split_data(
        X, y, test_size=test_size, random_state=random_state, stratify=stratify
    )

    transformer = FeatureTransformer(**(transformer_params or {}))
    X_train = transformer.fit_transform(X_train_raw)
    X_test = transformer.transform(X_test_raw)

    if save_transformer:
        transformer.save(save_transformer)

    result = {
        'X_train': X_train,
        'X_test': X_test,
        'y_train': y_train,
        'y_test': y_test,
        'X_train_raw': X_train_raw,
        'X_test_raw': X_test_raw,
        'transformer': transformer,
        'feature_names': transformer.get_feature_names(),
        'target': target,
        'task': task
    }

    logger.info("=" * 60)
    logger.info("PREPROCESSING COMPLETE")
    logger.info(f"  Training samples: {len(X_train)}")
    logger.info(f"  Test samples: {len(X_test)}")
    logger.info(f"  Features per sample: {X_train.shape[1]}")
    logger.info("=" * 60)

    return result


def print_preprocessing_summary(result: Dict[str, Any]) -> None:
    """
    Print a summary of the preprocessing results.

    Args:
        result: Dictionary from preprocess_pipeline
    """
    transformer = result['transformer']
    print("\n" + "=" * 50)
    print("PREPROCESSING SUMMARY")
    print("=" * 50)
    print(f"Target: {result['target']} ({result['task']})")
    print(f"Training samples: {result['X_train'].shape[0]}")
    print(f"Test samples: {result['X_test'].shape[0]}")
    print(f"Features per sample: {result['X_train'].shape[1]}")
    print(f"\nNumeric inputs: {len(transformer.numeric_columns)}")
    print(f"Categorical inputs: {len(transformer.categorical_columns)}")
    print(f"Missing-value flags: {len(transformer.flag_columns)}")
    print(f"Scaling: {transformer.scale}")
    if result['task'] == 'classification':
        print(f"Positive share (train): {result['y_train'].mean():.3f}")
    print("=" * 50 + "\n")
