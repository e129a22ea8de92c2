"""
Data Loader Module
==================

Handles CSV/XLSX ingestion, validation, and basic data quality checks.

Functions:
    - load_config: Load YAML configuration file
    - load_data: Load CSV or Excel data with validation
    - validate_data: Check data quality constraints
    - get_data_summary: Generate basic statistics
"""

import logging
from pathlib import Path
from typing import Dict, Any, Optional, Tuple, List, Union

import pandas as pd
import numpy as np
import yaml

logger = logging.getLogger(__name__)

EXCEL_SUFFIXES = ('.xlsx', '.xls')


def load_config(config_path: str = "config/config.yaml") -> Dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to the configuration file

    Returns:
        Dictionary containing configuration parameters

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is malformed
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}

    logger.info(f"Loaded configuration from {config_path}")
    return config


def load_data(
    file_path: str,
    sheet_name: Optional[Union[str, int]] = None,
    usecols: Optional[List[str]] = None,
    expected_columns: Optional[int] = None
) -> pd.DataFrame:
    """
    Load a CSV or Excel table.

    Args:
        file_path: Path to a .csv, .xlsx or .xls file
        sheet_name: Excel sheet to read (default: first sheet)
        usecols: Subset of columns to read (optional)
        expected_columns: Expected number of columns (optional validation)

    Returns:
        DataFrame containing the loaded data

    Raises:
        FileNotFoundError: If data file doesn't exist
        ValueError: If the file type is unsupported or the column count is off
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"Data file not found: {file_path}")

    suffix = file_path.suffix.lower()
    if suffix == '.csv':
        df = pd.read_csv(file_path, usecols=usecols, low_memory=False)
    elif suffix in EXCEL_SUFFIXES:
        df = pd.read_excel(
            file_path,
            sheet_name=0 if sheet_name is None else sheet_name,
            usecols=usecols,
            engine='openpyxl' if suffix == '.xlsx' else None
        )
    else:
        raise ValueError(
            f"Unsupported file type '{suffix}' for {file_path}. "
            f"Expected .csv, .xlsx or .xls"
        )

    logger.info(f"Loaded data from {file_path}: {df.shape[0]} rows × {df.shape[1]} columns")

    if expected_columns is not None and df.shape[1] != expected_columns:
        raise ValueError(
            f"Expected {expected_columns} columns, but found {df.shape[1]}. "
            f"Columns: {list(df.columns)}"
        )

    return df


def validate_data(
    df: pd.DataFrame,
    target: Optional[str] = None,
    task: str = "regression",
    strict: bool = True
) -> Tuple[bool, Dict[str, Any]]:
    """
    Validate data quality constraints before modeling.

    Checks:
        - Target column is present (and numeric for regression)
        - No missing values
        - No duplicate rows
        - No constant columns

    Args:
        df: DataFrame to validate
        target: Name of the target column (optional)
        task: 'regression' or 'classification'
        strict: If True, raise errors on validation failure

    Returns:
        Tuple of (is_valid, validation_report)
    """
    report = {
        "total_rows": len(df),
        "total_columns": len(df.columns),
        "column_names": list(df.columns),
        "issues": []
    }

    if target is not None:
        if target not in df.columns:
            issue = f"Target column '{target}' not found"
            report["issues"].append(issue)
            logger.warning(issue)
        elif task == "regression" and not pd.api.types.is_numeric_dtype(df[target]):
            issue = f"Target column '{target}' is not numeric ({df[target].dtype})"
            report["issues"].append(issue)
            logger.warning(issue)

    missing_counts = df.isnull().sum()
    total_missing = missing_counts.sum()
    if total_missing > 0:
        missing_pct = (total_missing / (df.shape[0] * df.shape[1])) * 100
        issue = f"Missing values: {total_missing} ({missing_pct:.2f}%)"
        report["issues"].append(issue)
        report["missing_by_column"] = {
            col: int(n) for col, n in missing_counts[missing_counts > 0].items()
        }
        logger.warning(issue)

    duplicates = df.duplicated().sum()
    if duplicates > 0:
        issue = f"Duplicate rows found: {duplicates}"
        report["issues"].append(issue)
        logger.warning(issue)

    constant_cols = [col for col in df.columns if df[col].nunique(dropna=True) <= 1]
    if constant_cols:
        issue = f"Constant columns found: {constant_cols}"
        report["issues"].append(issue)
        logger.warning(issue)

    is_valid = len(report["issues"]) == 0
    report["is_valid"] = is_valid

    if strict and not is_valid:
        raise ValueError(f"Data validation failed: {report['issues']}")

    return is_valid, report


def get_data_summary(df: pd.DataFrame) -> Dict[str, Any]:
    """
    Generate summary statistics for the dataset.

    Args:
        df: DataFrame to summarize

    Returns:
        Dictionary containing summary statistics
    """
    summary = {
        "shape": df.shape,
        "columns": list(df.columns),
        "dtypes": df.dtypes.astype(str).to_dict(),
        "memory_usage_mb": df.memory_usage(deep=True).sum() / 1024 / 1024,
        "missing": {col: int(n) for col, n in df.isnull().sum().items() if n > 0},
        "statistics": {}
    }

    for col in df.select_dtypes(include=[np.number]).columns:
        summary["statistics"][col] = {
            "count": int(df[col].count()),
            "mean": float(df[col].mean()),
            "std": float(df[col].std()),
            "min": float(df[col].min()),
            "50%": float(df[col].quantile(0.50)),
            "max": float(df[col].max())
        }

    return summary


def print_data_summary(df: pd.DataFrame) -> None:
    """
    Print a formatted summary of the dataset to console.

    Args:
        df: DataFrame to summarize
    """
    print("\n" + "=" * 60)
    print("DATASET SUMMARY")
    print("=" * 60)
    print(f"Shape: {df.shape[0]} rows × {df.shape[1]} columns")
    print(f"Memory Usage: {df.memory_usage(deep=True).sum() / 1024:.2f} KB")
    print("\nColumn Information:")
    print("-" * 40)

    for col in df.columns:
        dtype = df[col].dtype
        non_null = df[col].count()
        null_pct = (1 - non_null / len(df)) * 100 if len(df) else 0.0
        print(f"  {col}: {dtype} | {non_null} non-null ({null_pct:.1f}% missing)")

    numeric = df.select_dtypes(include=[np.number])
    if not numeric.empty:
        print("\nBasic Statistics:")
        print("-" * 40)
        print(numeric.describe().round(4).to_string())
    print("=" * 60 + "\n")
