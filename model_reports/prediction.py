"""
Prediction Module
=================

Scores new rows with a fitted transformer and model.

Features:
    - Regression predictions with prediction intervals (from holdout RMSE)
    - Classification probabilities and labels at the chosen threshold
    - Export predictions to CSV
    - Prediction report generation
"""

import logging
import json
from pathlib import Path
from typing import Dict, Any, Optional
from datetime import datetime

import numpy as np
import pandas as pd
from scipy import stats

from .model import PredictionModel
from .preprocessing import FeatureTransformer

logger = logging.getLogger(__name__)


def prediction_intervals(
    predictions: np.ndarray,
    rmse: float,
    confidence_level: float = 0.95
) -> pd.DataFrame:
    """
    Normal-approximation prediction intervals around point predictions.

    Args:
        predictions: Predicted values
        rmse: Holdout RMSE of the model
        confidence_level: Two-sided coverage (default 95%)

    Returns:
        DataFrame with lower_bound, upper_bound and margin_of_error columns
    """
    if not 0 < confidence_level < 1:
        raise ValueError(f"confidence_level must be in (0, 1), got {confidence_level}")

    z_score = stats.norm.ppf(0.5 + confidence_level / 2)
    margin = z_score * rmse
    predictions = np.asarray(predictions, dtype=float)

    return pd.DataFrame({
        'lower_bound': predictions - margin,
        'upper_bound': predictions + margin,
        'margin_of_error': np.full(len(predictions), margin)
    })


def predict_new(
    model: PredictionModel,
    transformer: FeatureTransformer,
    df: pd.DataFrame,
    rmse: Optional[float] = None,
    confidence_level: float = 0.95,
    id_column: Optional[str] = None
) -> pd.DataFrame:
    """
    Predict for new rows.

    Args:
        model: Trained model
        transformer: Fitted transformer
        df: Raw rows with the transformer's input columns
        rmse: Holdout RMSE; adds interval columns for regression models
        confidence_level: Interval coverage
        id_column: Column copied to the output to identify rows

    Returns:
        DataFrame with 'prediction' (and interval columns) for regression,
        or 'probability' and 'label' for classification
    """
    features = transformer.transform(df)
    features = features[model.feature_names_in_]

    if model.task == 'classification':
        proba = model.predict_proba(features)
        result = pd.DataFrame({
            'probability': proba,
            'label': (proba >= model.threshold).astype(int)
        }, index=df.index)
    else:
        values = model.predict(features)
        result = pd.DataFrame({'prediction': values}, index=df.index)
        if rmse is not None:
            intervals = prediction_intervals(values, rmse, confidence_level)
            intervals.index = df.index
            result = pd.concat([result, intervals], axis=1)

    if id_column is not None:
        result.insert(0, id_column, df[id_column].values)

    logger.info(f"Predicted {len(result)} rows with {model.name}")
    return result


def export_predictions(
    predictions: pd.DataFrame,
    output_path: str,
    name: str = 'predictions',
    include_timestamp: bool = True
) -> str:
    """
    Export predictions to CSV file.

    Args:
        predictions: DataFrame from predict_new
        output_path: Directory to save the file
        name: File name stem
        include_timestamp: Whether to add timestamp to filename

    Returns:
        Path to the saved file
    """
    output_path = Path(output_path)
    output_path.mkdir(parents=True, exist_ok=True)

    if include_timestamp:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        filename = f"{name}_{timestamp}.csv"
    else:
        filename = f"{name}.csv"

    filepath = output_path / filename
    predictions.to_csv(filepath, index_label='row_index')

    logger.info(f"Predictions exported to {filepath}")
    return str(filepath)


def run_prediction(
    model: PredictionModel,
    transformer: FeatureTransformer,
    df: pd.DataFrame,
    rmse: Optional[float] = None,
    confidence_level: float = 0.95,
    id_column: Optional[str] = None,
    output_dir: str = "data/predictions/"
) -> Dict[str, Any]:
    """
    Execute the complete prediction workflow: score, export, summarize.

    Args:
        model: Trained model
        transformer: Fitted transformer
        df: Raw rows to score
        rmse: Holdout RMSE of the model (regression intervals)
        confidence_level: Interval coverage
        id_column: Identifier column copied to the output
        output_dir: Directory for output files

    Returns:
        Dictionary containing predictions, summary and file paths
    """
    logger.info("=" * 60)
    logger.info("STARTING PREDICTION")
    logger.info("=" * 60)

    predictions = predict_new(
        model, transformer, df,
        rmse=rmse,
        confidence_level=confidence_level,
        id_column=id_column
    )

    csv_path = export_predictions(predictions, output_dir, name=f"predictions_{model.name}")

    if model.task == 'classification':
        summary = {
            'n_rows': len(predictions),
            'threshold': float(model.threshold),
            'mean_probability': float(predictions['probability'].mean()),
            'positive_share': float(predictions['label'].mean())
        }
    else:
        summary = {
            'n_rows': len(predictions),
            'mean_prediction': float(predictions['prediction'].mean()),
            'min_prediction': float(predictions['prediction'].min()),
            'max_prediction': float(predictions['prediction'].max())
        }
        if rmse is not None:
            summary['rmse'] = float(rmse)
            summary['confidence_level'] = confidence_level

    report_path = Path(output_dir) / f"prediction_report_{model.name}.json"
    report = {
        'generated_at': datetime.now().isoformat(),
        'model': model.name,
        'kind': model.kind,
        'task': model.task,
        'summary': summary
    }
    with open(report_path, 'w') as f:
        json.dump(report, f, indent=2)
    logger.info(f"Prediction report saved to {report_path}")

    logger.info("=" * 60)
    logger.info("PREDICTION COMPLETE")
    logger.info(f"  Rows: {len(predictions)}")
    logger.info(f"  Output: {csv_path}")
    logger.info("=" * 60)

    return {
        'predictions': predictions,
        'model_name': model.name,
        'task': model.task,
        'summary': summary,
        'csv_path': csv_path,
        'report_path': str(report_path)
    }


def print_prediction_results(result: Dict[str, Any], max_rows: int = 10) -> None:
    """
    Print formatted prediction results to console.

    Args:
        result: Result dictionary from run_prediction
        max_rows: Rows shown
    """
    print("\n" + "=" * 70)
    print(f"PREDICTION RESULTS - {result['model_name']}")
    print("=" * 70)

    print(result['predictions'].head(max_rows).to_string(float_format=lambda v: f"{v:.4f}"))
    if len(result['predictions']) > max_rows:
        print(f"... ({len(result['predictions']) - max_rows} more rows)")

    print("-" * 70)
    for key, value in result['summary'].items():
        print(f"  {key}: {value}")

    print(f"\nPredictions exported to: {result['csv_path']}")
    print(f"Full report saved to: {result['report_path']}")

    if 'rmse' in result['summary']:
        print("\nNote: Intervals assume normal errors with spread equal to the holdout RMSE.")

    print("=" * 70 + "\n")
