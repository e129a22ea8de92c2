#!/usr/bin/env python3
"""
Model Comparison Reports - Main Pipeline
========================================

Orchestrates one analysis: clean a table, fit several models and compare
their predictive performance.

Phases:
    1. Clean - Column selection, row filters, parsing and feature engineering
    2. EDA - Exploratory Data Analysis of the clean table
    3. Training - Fit and evaluate a single configured model
    4. Comparison - Cross-validate and compare all configured models
    5. Prediction - Score rows with the best model

Usage:
    # Run complete pipeline
    python main.py --data data/raw/morg2014.csv

    # Run specific phase
    python main.py --data data/raw/morg2014.csv --phase clean

    # Run with custom config
    python main.py --data data/raw/listings.csv --config config/airbnb.yaml
"""

import argparse
import logging
import sys
from pathlib import Path
from datetime import datetime
from typing import Dict, Any, Optional

import pandas as pd

from model_reports.data_loader import (
    load_config, load_data, validate_data, get_data_summary, print_data_summary
)
from model_reports.cleaning import clean_pipeline, clean_new_rows, print_cleaning_summary
from model_reports.eda import generate_eda_report, print_correlation_insights
from model_reports.preprocessing import preprocess_pipeline, print_preprocessing_summary
from model_reports.model import train_model, print_model_summary, PredictionModel
from model_reports.cross_validation import cross_validate_threshold
from model_reports.evaluation import (
    evaluate_regression, evaluate_classifier, print_evaluation_report
)
from model_reports.comparison import compare_models, model_matrices, print_comparison_table
from model_reports.prediction import run_prediction, print_prediction_results
from model_reports.report import render_report

PHASES = ['eda', 'clean', 'train', 'compare', 'predict', 'all']


def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the pipeline."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(f'pipeline_{datetime.now().strftime("%Y%m%d_%H%M%S")}.log')
        ]
    )


def _output(config: Dict[str, Any], key: str, default: str) -> str:
    return config.get('output', {}).get(key, default)


def _target(config: Dict[str, Any]) -> Dict[str, Any]:
    target_cfg = config.get('target', {})
    if 'column' not in target_cfg:
        raise ValueError("Configuration needs target.column")
    return {
        'column': target_cfg['column'],
        'task': target_cfg.get('task', 'regression'),
        'positive_class': target_cfg.get('positive_class'),
        'exclude': target_cfg.get('exclude', [])
    }


def run_cleaning(df: pd.DataFrame, config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Execute Phase 1: Data Cleaning.

    Args:
        df: Raw data
        config: Configuration dictionary

    Returns:
        Dictionary with the clean DataFrame and the cleaning report
    """
    print("\n" + "=" * 70)
    print("PHASE 1: DATA CLEANING")
    print("=" * 70)

    target = _target(config)
    clean_df, report = clean_pipeline(df, config.get('cleaning', {}), target=target['column'])
    print_cleaning_summary(report)

    validate_data(clean_df, target=target['column'], task=target['task'], strict=False)

    processed_path = config.get('data', {}).get('processed_path')
    if processed_path:
        Path(processed_path).parent.mkdir(parents=True, exist_ok=True)
        clean_df.to_csv(processed_path, index=False)
        print(f"✓ Clean data saved to {processed_path}")

    return {'data': clean_df, 'report': report}


def run_eda(df: pd.DataFrame, config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Execute Phase 2: Exploratory Data Analysis.

    Args:
        df: Clean data
        config: Configuration dictionary

    Returns:
        EDA report dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 2: EXPLORATORY DATA ANALYSIS")
    print("=" * 70)

    output_dir = str(Path(_output(config, 'reports_path', 'reports/')) / 'figures')
    report = generate_eda_report(
        df, target=_target(config)['column'], output_dir=output_dir, show_plots=False
    )

    corr_df = pd.DataFrame(report["correlation_matrix"])
    print_correlation_insights(corr_df)

    print(f"\n✓ EDA complete. {len(report['figures'])} figures saved to {output_dir}")

    return report


def run_preprocessing(df: pd.DataFrame, config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Split the clean table and encode features.

    Args:
        df: Clean data
        config: Configuration dictionary

    Returns:
        Preprocessing result dictionary
    """
    target = _target(config)
    split_cfg = config.get('split', {})
    model_dir = Path(_output(config, 'model_path', 'models/'))

    result = preprocess_pipeline(
        df,
        target=target['column'],
        task=target['task'],
        positive_class=target['positive_class'],
        exclude=target['exclude'],
        test_size=split_cfg.get('test_size', 0.2),
        random_state=split_cfg.get('random_state', 42),
        stratify=split_cfg.get('stratify'),
        transformer_params=config.get('preprocessing', {}),
        save_transformer=str(model_dir / 'transformer.joblib')
    )

    print_preprocessing_summary(result)

    return result


def _threshold_config(config: Dict[str, Any]) -> Dict[str, Any]:
    thresholds = config.get('thresholds', {})
    return {
        'fp_cost': thresholds.get('fp_cost'),
        'fn_cost': thresholds.get('fn_cost'),
        'method': thresholds.get('method', 'expected_loss')
    }


def _model_config(config: Dict[str, Any], name: Optional[str] = None) -> Dict[str, Any]:
    models = config.get('models', [])
    if not models:
        raise ValueError("Configuration needs at least one entry under models")
    if name is None:
        return models[0]
    for cfg in models:
        if cfg.get('name', cfg['kind']) == name:
            return cfg
    raise ValueError(f"Model '{name}' not found in configuration")


def run_training(prep_result: Dict[str, Any], config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Execute Phase 3: Fit and evaluate one model on the holdout set.

    Uses prediction.model when set, otherwise the first configured model.

    Args:
        prep_result: Preprocessing result dictionary
        config: Configuration dictionary

    Returns:
        Dictionary with the trained model and its evaluation
    """
    print("\n" + "=" * 70)
    print("PHASE 3: MODEL TRAINING")
    print("=" * 70)

    task = prep_result['task']
    model_cfg = _model_config(config, config.get('prediction', {}).get('model'))
    name = model_cfg.get('name', model_cfg['kind'])
    model_dir = Path(_output(config, 'model_path', 'models/'))
    reports_dir = _output(config, 'reports_path', 'reports/')

    X_train, X_test = model_matrices(prep_result, model_cfg.get('features'))

    model = train_model(
        X_train, prep_result['y_train'], model_cfg, task=task,
        save_path=str(model_dir / f"{name}.joblib")
    )
    print_model_summary(model)

    if task == 'regression':
        evaluation = evaluate_regression(
            prep_result['y_test'], model.predict(X_test), name=name, output_dir=reports_dir
        )
    else:
        thresholds = _threshold_config(config)
        fp_cost = thresholds['fp_cost'] or 1.0
        fn_cost = thresholds['fn_cost'] or 1.0
        cv_cfg = config.get('cross_validation', {})
        chosen = cross_validate_threshold(
            X_train, prep_result['y_train'], model_cfg['kind'],
            params=model_cfg.get('params'),
            fp_cost=fp_cost,
            fn_cost=fn_cost,
            n_folds=cv_cfg.get('n_folds', 5),
            random_state=cv_cfg.get('random_state', 42),
            method=thresholds['method']
        )
        model.threshold = chosen['threshold']
        evaluation = evaluate_classifier(
            prep_result['y_test'], model.predict_proba(X_test),
            name=name,
            threshold=model.threshold,
            fp_cost=fp_cost,
            fn_cost=fn_cost,
            output_dir=reports_dir
        )

    print_evaluation_report(evaluation['metrics'], name=name)

    return {'model': model, 'evaluation': evaluation}


def run_comparison(prep_result: Dict[str, Any], config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Execute Phase 4: Model Comparison.

    Args:
        prep_result: Preprocessing result dictionary
        config: Configuration dictionary

    Returns:
        Comparison result dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 4: MODEL COMPARISON")
    print("=" * 70)

    cv_cfg = config.get('cross_validation', {})
    default_metric = 'cv_rmse' if prep_result['task'] == 'regression' else 'cv_expected_loss'

    result = compare_models(
        prep_result,
        config.get('models', []),
        cv_config=cv_cfg,
        threshold_config=_threshold_config(config),
        selection_metric=cv_cfg.get('selection_metric', default_metric),
        output_dir=_output(config, 'reports_path', 'reports/'),
        model_dir=_output(config, 'model_path', 'models/')
    )

    print_comparison_table(result)

    return result


def run_prediction_phase(
    prep_result: Dict[str, Any],
    comparison: Dict[str, Any],
    config: Dict[str, Any],
    clean_df: Optional[pd.DataFrame] = None,
    cleaning_report: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Execute Phase 5: Score rows with the best model.

    Scores prediction.data_path when set (raw rows, cleaned with the
    medians, flags and amenity columns learned on the training data),
    otherwise the holdout rows.

    Args:
        prep_result: Preprocessing result dictionary
        comparison: Comparison result dictionary
        config: Configuration dictionary
        clean_df: Clean table; holdout rows are scored with all its columns
        cleaning_report: Cleaning report of the training data

    Returns:
        Prediction result dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 5: PREDICTION")
    print("=" * 70)

    pred_cfg = config.get('prediction', {})
    name = pred_cfg.get('model') or comparison['best_model']
    if name not in comparison['models']:
        raise ValueError(f"Model '{name}' was not fitted in the comparison")
    model: PredictionModel = comparison['models'][name]

    row = comparison['table'].set_index('model').loc[name]
    rmse = float(row['holdout_rmse']) if prep_result['task'] == 'regression' else None

    data_path = pred_cfg.get('data_path')
    if data_path:
        if cleaning_report is None:
            raise ValueError("Scoring prediction.data_path requires the training cleaning report")
        new_df = load_data(data_path)
        rows = clean_new_rows(new_df, config.get('cleaning', {}), cleaning_report)
    elif clean_df is not None:
        rows = clean_df.loc[prep_result['X_test_raw'].index]
    else:
        rows = prep_result['X_test_raw']

    result = run_prediction(
        model,
        prep_result['transformer'],
        rows,
        rmse=rmse,
        confidence_level=pred_cfg.get('confidence_level', 0.95),
        id_column=pred_cfg.get('id_column'),
        output_dir=_output(config, 'predictions_path', 'data/predictions/')
    )

    print_prediction_results(result)

    return result


def run_pipeline(
    data_path: str,
    config_path: str = "config/config.yaml",
    phase: str = "all",
    verbose: bool = False
) -> Dict[str, Any]:
    """
    Execute the pipeline up to the requested phase.

    Args:
        data_path: Path to input CSV/Excel file
        config_path: Path to configuration file
        phase: One of eda, clean, train, compare, predict, all
        verbose: Log at DEBUG level

    Returns:
        Dictionary containing all phase results
    """
    if phase not in PHASES:
        raise ValueError(f"Unknown phase: {phase}. Choose from: {', '.join(PHASES)}")

    config = load_config(config_path)
    setup_logging('DEBUG' if verbose else config.get('logging', {}).get('level', 'INFO'))

    print("\n" + "=" * 70)
    print(f"MODEL COMPARISON PIPELINE: {config.get('title', Path(config_path).stem)}")
    print(f"Started at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70)

    data_cfg = config.get('data', {})
    print("\n📊 Loading data...")
    df = load_data(data_path, sheet_name=data_cfg.get('sheet_name'), usecols=data_cfg.get('usecols'))
    print_data_summary(df)

    results: Dict[str, Any] = {'config': config, 'data_shape': df.shape}

    cleaning = run_cleaning(df, config)
    results['cleaning'] = cleaning['report']
    results['data_summary'] = get_data_summary(cleaning['data'])
    if phase == 'clean':
        return results

    if phase in ('eda', 'all'):
        results['eda'] = run_eda(cleaning['data'], config)
        if phase == 'eda':
            return results

    prep_result = run_preprocessing(cleaning['data'], config)

    if phase in ('train', 'all'):
        results['training'] = run_training(prep_result, config)
        if phase == 'train':
            return results

    results['comparison'] = run_comparison(prep_result, config)

    if phase in ('predict', 'all'):
        results['prediction'] = run_prediction_phase(
            prep_result, results['comparison'], config,
            clean_df=cleaning['data'], cleaning_report=cleaning['report']
        )

    report_path = render_report(
        results,
        output_dir=_output(config, 'reports_path', 'reports/'),
        title=config.get('title')
    )
    results['report_path'] = report_path

    print("\n" + "=" * 70)
    print("PIPELINE COMPLETE")
    print("=" * 70)
    print(f"  • Input data: {df.shape[0]} rows × {df.shape[1]} columns")
    print(f"  • Clean data: {cleaning['data'].shape[0]} rows × {cleaning['data'].shape[1]} columns")
    print(f"  • Best model: {results['comparison']['best_model']}")
    print(f"  • Report: {report_path}")
    print(f"Completed at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70 + "\n")

    return results


def main():
    """Main entry point with argument parsing."""
    parser = argparse.ArgumentParser(
        description="Clean a tabular dataset and compare predictive models",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --data data/raw/morg2014.csv
  python main.py --data data/raw/morg2014.csv --phase clean
  python main.py --data data/raw/listings.csv --config config/airbnb.yaml
  python main.py --data data/raw/bisnode_firms.csv --config config/firm_exit.yaml
        """
    )

    parser.add_argument(
        '--data', '-d',
        type=str,
        required=True,
        help='Path to the input CSV or Excel file'
    )

    parser.add_argument(
        '--config', '-c',
        type=str,
        default='config/config.yaml',
        help='Path to configuration file (default: config/config.yaml)'
    )

    parser.add_argument(
        '--phase', '-p',
        type=str,
        choices=PHASES,
        default='all',
        help='Phase to run (default: all)'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose output'
    )

    args = parser.parse_args()

    # Check if data file exists
    if not Path(args.data).exists():
        print(f"Error: Data file not found: {args.data}")
        print("\nExpected format: CSV, XLSX or XLS with the columns named in the config")
        return 1

    # Check if config exists
    if not Path(args.config).exists():
        print(f"Error: Config file not found: {args.config}")
        return 1

    try:
        run_pipeline(args.data, args.config, phase=args.phase, verbose=args.verbose)
        return 0

    except Exception as e:
        logging.error(f"Pipeline failed: {e}", exc_info=True)
        print(f"\n❌ Pipeline failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
