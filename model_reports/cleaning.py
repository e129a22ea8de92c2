"""
Data Cleaning Module
====================

Row filters, string parsing and feature engineering applied to a raw table
before it is split and modeled.

Functions:
    - select_columns / rename_columns: Column selection and renaming
    - filter_rows: Sample selection rules (non-zero, range, equality, ...)
    - to_boolean / parse_money / parse_percent: String column parsing
    - parse_amenities: Free-text amenity lists to dummy columns
    - add_ratio_column / add_log_columns: Derived variables
    - add_polynomial_terms / add_interaction_terms: Functional form terms
    - impute_median: Median imputation with missing-value flags
    - near_zero_variance: frequency-ratio and percent-unique diagnostics
    - clean_pipeline: Apply all configured steps in order
    - clean_new_rows: Clean rows to score with the state learned on training data
"""

import json
import logging
import re
from typing import Dict, Any, List, Optional, Tuple, Iterable

import numpy as np
import pandas as pd
from sklearn.preprocessing import MultiLabelBinarizer

logger = logging.getLogger(__name__)

TRUE_STRINGS = {'t', 'true', 'yes', 'y', '1', '1.0'}
FALSE_STRINGS = {'f', 'false', 'no', 'n', '0', '0.0'}

# Most common / second most common value; percent of distinct values
DEFAULT_FREQ_CUT = 95 / 5
DEFAULT_UNIQUE_CUT = 10.0

_AMENITY_TOKEN = re.compile(r'"([^"]*)"|([^,]+)')


def _require_columns(df: pd.DataFrame, columns: Iterable[str]) -> None:
    missing = [col for col in columns if col not in df.columns]
    if missing:
        raise KeyError(f"Columns not found in data: {missing}")


def _log_step(step: str, before: pd.DataFrame, after: pd.DataFrame) -> Dict[str, Any]:
    logger.info(
        f"{step}: {before.shape[0]} -> {after.shape[0]} rows, "
        f"{before.shape[1]} -> {after.shape[1]} columns"
    )
    return {'step': step, 'rows': int(after.shape[0]), 'columns': int(after.shape[1])}


def select_columns(df: pd.DataFrame, columns: List[str]) -> pd.DataFrame:
    """Keep only the listed columns, in the listed order."""
    _require_columns(df, columns)
    return df[list(columns)].copy()


def rename_columns(df: pd.DataFrame, mapping: Dict[str, str]) -> pd.DataFrame:
    """Rename columns; every key of the mapping must exist."""
    _require_columns(df, mapping.keys())
    return df.rename(columns=mapping)


def filter_rows(df: pd.DataFrame, rules: List[Dict[str, Any]]) -> pd.DataFrame:
    """
    Apply sample-selection rules in order.

    Supported rule types:
        - nonzero_notna: {'columns': [...]} drop rows with 0 or missing
        - notna: {'columns': [...]} drop rows with missing values
        - range: {'column': c, 'min': lo, 'max': hi} inclusive bounds
        - equals: {'column': c, 'value': v}
        - isin: {'column': c, 'values': [...]}

    Args:
        df: Input data
        rules: List of rule dictionaries

    Returns:
        Filtered DataFrame
    """
    out = df
    for rule in rules:
        rule_type = rule.get('type')
        before = len(out)

        if rule_type in ('nonzero_notna', 'notna'):
            columns = rule['columns']
            _require_columns(out, columns)
            mask = out[columns].notna().all(axis=1)
            if rule_type == 'nonzero_notna':
                mask &= (out[columns] != 0).all(axis=1)

        elif rule_type == 'range':
            column = rule['column']
            _require_columns(out, [column])
            mask = out[column].notna()
            if rule.get('min') is not None:
                mask &= out[column] >= rule['min']
            if rule.get('max') is not None:
                mask &= out[column] <= rule['max']

        elif rule_type == 'equals':
            column = rule['column']
            _require_columns(out, [column])
            mask = out[column] == rule['value']

        elif rule_type == 'isin':
            column = rule['column']
            _require_columns(out, [column])
            mask = out[column].isin(rule['values'])

        else:
            raise ValueError(
                f"Unknown filter type: {rule_type}. "
                f"Choose from: nonzero_notna, notna, range, equals, isin"
            )

        out = out.loc[mask].copy()
        logger.info(f"Filter {rule_type} {rule.get('column', rule.get('columns'))}: "
                    f"{before} -> {len(out)} rows")

    return out


def to_boolean(series: pd.Series) -> pd.Series:
    """
    Convert boolean-as-string values ('t'/'f', 'yes'/'no', ...) to 1.0/0.0.

    Unrecognized values become NaN.
    """
    normalized = series.astype(str).str.strip().str.lower()
    result = pd.Series(np.nan, index=series.index, dtype=float)
    result[normalized.isin(TRUE_STRINGS)] = 1.0
    result[normalized.isin(FALSE_STRINGS)] = 0.0
    return result


def parse_money(series: pd.Series) -> pd.Series:
    """Parse strings like '$1,250.00' to float."""
    cleaned = series.astype(str).str.replace(r'[\$,\s]', '', regex=True)
    return pd.to_numeric(cleaned, errors='coerce')


def parse_percent(series: pd.Series) -> pd.Series:
    """Parse strings like '95%' to float (95.0)."""
    cleaned = series.astype(str).str.replace(r'[%\s]', '', regex=True)
    return pd.to_numeric(cleaned, errors='coerce')


def _normalize_amenity(name: str) -> str:
    name = re.sub(r'[^0-9a-z]+', '_', name.strip().strip('"').lower())
    return name.strip('_')


def split_amenities(value: Any) -> List[str]:
    """
    Split one amenity cell into normalized names.

    Accepts brace lists ('{TV,"Air conditioning"}') and JSON arrays
    ('["TV", "Air conditioning"]').
    """
    items: List[str] = []
    if isinstance(value, (list, tuple)):
        items = [str(item) for item in value]
        text = ''
    elif value is None or pd.isna(value):
        return []
    else:
        text = str(value).strip()

    if text.startswith('['):
        try:
            parsed = json.loads(text)
            items = [str(item) for item in parsed]
        except json.JSONDecodeError:
            text = text.strip('[]')
    if not items:
        text = text.strip('{}[]')
        for quoted, bare in _AMENITY_TOKEN.findall(text):
            items.append(quoted or bare)

    names = []
    for item in items:
        name = _normalize_amenity(item)
        if name and name not in names:
            names.append(name)
    return names


def parse_amenities(
    series: pd.Series,
    prefix: str = 'd_',
    min_frequency: float = 0.0,
    top_n: Optional[int] = None,
    columns: Optional[List[str]] = None
) -> pd.DataFrame:
    """
    Expand an amenity-list column into 0/1 dummy columns.

    Args:
        series: Column of amenity-list strings
        prefix: Prefix for the dummy column names
        min_frequency: Keep amenities present in at least this share of rows
        top_n: Keep only the N most frequent amenities (optional)
        columns: Fixed dummy columns (learned on other rows); amenities
            outside them are ignored and no frequency filter is applied

    Returns:
        DataFrame of dummies aligned to the series index, most frequent first
    """
    parsed = [split_amenities(value) for value in series]

    if columns is not None:
        names = [col[len(prefix):] if col.startswith(prefix) else col for col in columns]
        known = set(names)
        parsed = [[name for name in row if name in known] for row in parsed]
        matrix = MultiLabelBinarizer(classes=names).fit_transform(parsed)
        return pd.DataFrame(matrix, columns=list(columns), index=series.index)

    binarizer = MultiLabelBinarizer()
    matrix = binarizer.fit_transform(parsed)
    dummies = pd.DataFrame(
        matrix,
        columns=[f"{prefix}{name}" for name in binarizer.classes_],
        index=series.index
    )

    if dummies.empty:
        return dummies

    frequency = dummies.mean()
    keep = frequency[frequency >= min_frequency].sort_values(ascending=False, kind='mergesort')
    if top_n is not None:
        keep = keep.head(top_n)

    logger.info(
        f"Parsed amenities: {len(binarizer.classes_)} distinct, {len(keep)} kept"
    )
    return dummies[keep.index.tolist()]


def to_categorical(series: pd.Series) -> pd.Series:
    """Treat a column as a factor: labels as strings, integral codes without '.0'."""
    def _label(value):
        if pd.isna(value):
            return np.nan
        if isinstance(value, (float, np.floating)) and float(value).is_integer():
            return str(int(value))
        return str(value)

    return series.map(_label).astype(object)


def add_ratio_column(
    df: pd.DataFrame,
    name: str,
    numerator: str,
    denominator: str,
    drop_invalid: bool = True
) -> pd.DataFrame:
    """
    Add numerator / denominator and drop rows where the ratio is infinite or missing.

    With drop_invalid=False the rows are kept and infinite ratios become NaN.
    """
    _require_columns(df, [numerator, denominator])
    out = df.copy()
    with np.errstate(divide='ignore', invalid='ignore'):
        out[name] = out[numerator].astype(float) / out[denominator].astype(float)
    keep = np.isfinite(out[name])
    if not drop_invalid:
        out[name] = out[name].where(keep)
        return out
    dropped = int((~keep).sum())
    if dropped:
        logger.info(f"Dropped {dropped} rows with infinite/missing {name}")
    return out.loc[keep].copy()


def add_log_columns(
    df: pd.DataFrame,
    columns: List[str],
    prefix: str = 'ln_'
) -> pd.DataFrame:
    """Add natural-log columns; non-positive values become NaN."""
    _require_columns(df, columns)
    out = df.copy()
    for col in columns:
        values = out[col].astype(float)
        out[f"{prefix}{col}"] = np.log(values.where(values > 0))
    return out


def _require_numeric(df: pd.DataFrame, columns: Iterable[str]) -> None:
    _require_columns(df, columns)
    for col in columns:
        if not pd.api.types.is_numeric_dtype(df[col]):
            raise TypeError(f"Column '{col}' must be numeric, got {df[col].dtype}")


def add_polynomial_terms(df: pd.DataFrame, column: str, degree: int) -> pd.DataFrame:
    """Add {column}_pow2 ... {column}_pow{degree}."""
    _require_numeric(df, [column])
    out = df.copy()
    for power in range(2, degree + 1):
        out[f"{column}_pow{power}"] = out[column].astype(float) ** power
    return out


def add_interaction_terms(df: pd.DataFrame, pairs: List[List[str]]) -> pd.DataFrame:
    """Add {a}_x_{b} products for each pair of numeric columns."""
    out = df.copy()
    for a, b in pairs:
        _require_numeric(out, [a, b])
        out[f"{a}_x_{b}"] = out[a].astype(float) * out[b].astype(float)
    return out


def impute_median(
    df: pd.DataFrame,
    columns: Optional[List[str]] = None,
    add_flags: bool = True,
    flag_prefix: str = 'flag_miss_'
) -> Tuple[pd.DataFrame, Dict[str, float]]:
    """
    Fill missing numeric values with the column median.

    Args:
        df: Input data
        columns: Columns to impute (default: all numeric)
        add_flags: Add a 0/1 indicator column per imputed column
        flag_prefix: Prefix of the indicator columns

    Returns:
        Tuple of (imputed DataFrame, {column: median})
    """
    out = df.copy()
    if columns is None:
        columns = out.select_dtypes(include=[np.number]).columns.tolist()
    _require_numeric(out, columns)

    medians = {}
    for col in columns:
        n_missing = int(out[col].isna().sum())
        if n_missing == 0:
            continue
        median = out[col].median()
        if pd.isna(median):
            logger.warning(f"Column '{col}' is entirely missing, not imputed")
            continue
        if add_flags:
            out[f"{flag_prefix}{col}"] = out[col].isna().astype(int)
        out[col] = out[col].fillna(median)
        medians[col] = float(median)
        logger.info(f"Imputed {n_missing} missing values in '{col}' with median {median:.4f}")

    return out, medians


def near_zero_variance(
    df: pd.DataFrame,
    freq_cut: float = DEFAULT_FREQ_CUT,
    unique_cut: float = DEFAULT_UNIQUE_CUT
) -> pd.DataFrame:
    """
    Near-zero-variance diagnostics per column.

    Args:
        df: Input data
        freq_cut: Cutoff for the ratio of the two most common values
        unique_cut: Cutoff for the percentage of distinct values

    Returns:
        DataFrame indexed by column with freq_ratio, percent_unique,
        zero_var and nzv
    """
    n_rows = len(df) or 1
    rows = []
    for col in df.columns:
        counts = df[col].value_counts(dropna=True)
        n_distinct = len(counts)
        freq_ratio = 0.0 if n_distinct < 2 else float(counts.iloc[0] / counts.iloc[1])
        percent_unique = 100.0 * n_distinct / n_rows
        zero_var = n_distinct < 2
        rows.append({
            'column': col,
            'freq_ratio': freq_ratio,
            'percent_unique': percent_unique,
            'zero_var': zero_var,
            'nzv': bool(zero_var or (freq_ratio > freq_cut and percent_unique <= unique_cut))
        })

    metrics = pd.DataFrame(rows, columns=['column', 'freq_ratio', 'percent_unique', 'zero_var', 'nzv'])
    return metrics.set_index('column')


def drop_constant_columns(
    df: pd.DataFrame,
    exclude: Optional[List[str]] = None
) -> Tuple[pd.DataFrame, List[str]]:
    """Drop columns with fewer than two distinct non-missing values."""
    exclude = set(exclude or [])
    dropped = [
        col for col in df.columns
        if col not in exclude and df[col].nunique(dropna=True) < 2
    ]
    if dropped:
        logger.info(f"Dropping constant columns: {dropped}")
    return df.drop(columns=dropped), dropped


def drop_near_zero_variance(
    df: pd.DataFrame,
    freq_cut: float = DEFAULT_FREQ_CUT,
    unique_cut: float = DEFAULT_UNIQUE_CUT,
    exclude: Optional[List[str]] = None
) -> Tuple[pd.DataFrame, List[str], pd.DataFrame]:
    """
    Drop near-zero-variance columns.

    Returns:
        Tuple of (DataFrame, dropped columns, metrics of the flagged columns)
    """
    exclude = set(exclude or [])
    metrics = near_zero_variance(df, freq_cut=freq_cut, unique_cut=unique_cut)
    flagged = metrics[metrics['nzv']]
    dropped = [col for col in flagged.index if col not in exclude]
    if dropped:
        logger.info(f"Dropping near-zero-variance columns: {dropped}")
    return df.drop(columns=dropped), dropped, flagged


def clean_pipeline(
    df: pd.DataFrame,
    cleaning_config: Dict[str, Any],
    target: Optional[str] = None
) -> Tuple[pd.DataFrame, Dict[str, Any]]:
    """
    Apply the configured cleaning steps in a fixed order.

    Order: select, rename, boolean/money/percent parsing, amenities, filters,
    categorical/numeric coercion, ratios, logs, polynomial and interaction
    terms, dropped columns, missing target, imputation, constant and
    near-zero-variance columns.

    Args:
        df: Raw DataFrame
        cleaning_config: The 'cleaning' section of the configuration
        target: Target column; never dropped and rows missing it are removed

    Returns:
        Tuple of (clean DataFrame, cleaning report)
    """
    logger.info("=" * 60)
    logger.info("STARTING DATA CLEANING")
    logger.info("=" * 60)

    cfg = cleaning_config or {}
    report: Dict[str, Any] = {
        'input_shape': df.shape,
        'steps': [],
        'dropped_columns': {},
        'imputed_medians': {},
        'amenity_columns': [],
        'nzv': {}
    }
    out = df.copy()

    def record(step, before):
        report['steps'].append(_log_step(step, before, out))

    if cfg.get('select_columns'):
        before, out = out, select_columns(out, cfg['select_columns'])
        record('select_columns', before)

    if cfg.get('rename'):
        before, out = out, rename_columns(out, cfg['rename'])
        record('rename', before)

    parsers = (
        ('boolean_columns', to_boolean),
        ('money_columns', parse_money),
        ('percent_columns', parse_percent),
    )
    for key, parser in parsers:
        if cfg.get(key):
            _require_columns(out, cfg[key])
            before, out = out, out.copy()
            for col in cfg[key]:
                out[col] = parser(out[col])
            record(key, before)

    amenities = cfg.get('amenities')
    if amenities:
        column = amenities['column']
        _require_columns(out, [column])
        dummies = parse_amenities(
            out[column],
            prefix=amenities.get('prefix', 'd_'),
            min_frequency=amenities.get('min_frequency', 0.0),
            top_n=amenities.get('top_n')
        )
        before = out
        out = pd.concat([out.drop(columns=[column]), dummies], axis=1)
        report['amenity_columns'] = dummies.columns.tolist()
        record('amenities', before)

    if cfg.get('filters'):
        before, out = out, filter_rows(out, cfg['filters'])
        record('filters', before)

    if cfg.get('categorical'):
        _require_columns(out, cfg['categorical'])
        before, out = out, out.copy()
        for col in cfg['categorical']:
            out[col] = to_categorical(out[col])
        record('categorical', before)

    if cfg.get('numeric'):
        _require_columns(out, cfg['numeric'])
        before, out = out, out.copy()
        for col in cfg['numeric']:
            out[col] = pd.to_numeric(out[col], errors='coerce')
        record('numeric', before)

    for ratio in cfg.get('ratios') or []:
        before, out = out, add_ratio_column(
            out, ratio['name'], ratio['numerator'], ratio['denominator']
        )
        record(f"ratio {ratio['name']}", before)

    if cfg.get('log_columns'):
        before, out = out, add_log_columns(out, cfg['log_columns'])
        record('log_columns', before)

    for column, degree in (cfg.get('polynomials') or {}).items():
        before, out = out, add_polynomial_terms(out, column, int(degree))
        record(f"polynomial {column}", before)

    if cfg.get('interactions'):
        before, out = out, add_interaction_terms(out, cfg['interactions'])
        record('interactions', before)

    if cfg.get('drop_columns'):
        drop = [col for col in cfg['drop_columns'] if col in out.columns]
        before, out = out, out.drop(columns=drop)
        report['dropped_columns']['configured'] = drop
        record('drop_columns', before)

    if target is not None:
        _require_columns(out, [target])
        if cfg.get('drop_missing_target', True):
            before = out
            out = out.loc[out[target].notna()].copy()
            record('drop_missing_target', before)

    if cfg.get('impute_median'):
        columns = cfg['impute_median']
        columns = None if columns is True else columns
        before = out
        out, medians = impute_median(
            out, columns=columns, add_flags=cfg.get('add_missing_flags', True)
        )
        report['imputed_medians'] = medians
        record('impute_median', before)

    protected = [target] if target is not None else []

    if cfg.get('drop_constant', True):
        before = out
        out, dropped = drop_constant_columns(out, exclude=protected)
        report['dropped_columns']['constant'] = dropped
        record('drop_constant', before)

    nzv_cfg = cfg.get('nzv', {})
    freq_cut = nzv_cfg.get('freq_cut', DEFAULT_FREQ_CUT)
    unique_cut = nzv_cfg.get('unique_cut', DEFAULT_UNIQUE_CUT)
    if cfg.get('drop_near_zero_variance', False):
        before = out
        out, dropped, flagged = drop_near_zero_variance(
            out, freq_cut=freq_cut, unique_cut=unique_cut, exclude=protected
        )
        report['dropped_columns']['near_zero_variance'] = dropped
        record('drop_near_zero_variance', before)
    else:
        metrics = near_zero_variance(out, freq_cut=freq_cut, unique_cut=unique_cut)
        flagged = metrics[metrics['nzv']]
    report['nzv'] = flagged.to_dict(orient='index')

    report['output_shape'] = out.shape

    logger.info("=" * 60)
    logger.info("CLEANING COMPLETE")
    logger.info(f"  Rows: {df.shape[0]} -> {out.shape[0]}")
    logger.info(f"  Columns: {df.shape[1]} -> {out.shape[1]}")
    logger.info("=" * 60)

    return out, report


def clean_new_rows(
    df: pd.DataFrame,
    cleaning_config: Dict[str, Any],
    report: Dict[str, Any],
    flag_prefix: str = 'flag_miss_'
) -> pd.DataFrame:
    """
    Clean rows to be scored with the state learned by clean_pipeline.

    Parsing, coercion and derived columns follow the configuration, but
    nothing is learned from the new rows: amenity dummies use the training
    vocabulary, missing values are filled with the training medians and
    every training flag column is present. Row filters and steps that need
    the target are skipped, and derived columns whose inputs are absent
    (e.g. a target ratio) are not built.

    Args:
        df: Raw rows with the same layout as the training data
        cleaning_config: The 'cleaning' section of the configuration
        report: Cleaning report returned by clean_pipeline on the training data

    Returns:
        Cleaned DataFrame with one row per input row
    """
    cfg = cleaning_config or {}
    out = df.copy()

    if cfg.get('select_columns'):
        out = out[[col for col in cfg['select_columns'] if col in out.columns]].copy()

    if cfg.get('rename'):
        out = out.rename(columns={k: v for k, v in cfg['rename'].items() if k in out.columns})

    def present(columns):
        return [col for col in columns if col in out.columns]

    parsers = (
        ('boolean_columns', to_boolean),
        ('money_columns', parse_money),
        ('percent_columns', parse_percent),
    )
    for key, parser in parsers:
        for col in present(cfg.get(key) or []):
            out[col] = parser(out[col])

    amenities = cfg.get('amenities')
    if amenities:
        column = amenities['column']
        _require_columns(out, [column])
        dummies = parse_amenities(
            out[column],
            prefix=amenities.get('prefix', 'd_'),
            columns=report.get('amenity_columns', [])
        )
        out = pd.concat([out.drop(columns=[column]), dummies], axis=1)

    for col in present(cfg.get('categorical') or []):
        out[col] = to_categorical(out[col])

    for col in present(cfg.get('numeric') or []):
        out[col] = pd.to_numeric(out[col], errors='coerce')

    for ratio in cfg.get('ratios') or []:
        if len(present([ratio['numerator'], ratio['denominator']])) == 2:
            out = add_ratio_column(
                out, ratio['name'], ratio['numerator'], ratio['denominator'], drop_invalid=False
            )
        else:
            logger.info(f"Ratio '{ratio['name']}' skipped: inputs not in new rows")

    if cfg.get('log_columns'):
        out = add_log_columns(out, present(cfg['log_columns']))

    for column, degree in (cfg.get('polynomials') or {}).items():
        if column in out.columns:
            out = add_polynomial_terms(out, column, int(degree))

    pairs = [pair for pair in cfg.get('interactions') or [] if len(present(pair)) == 2]
    if pairs:
        out = add_interaction_terms(out, pairs)

    if cfg.get('drop_columns'):
        out = out.drop(columns=present(cfg['drop_columns']))

    add_flags = cfg.get('add_missing_flags', True)
    for col, median in report.get('imputed_medians', {}).items():
        if col not in out.columns:
            continue
        if add_flags:
            out[f"{flag_prefix}{col}"] = out[col].isna().astype(int)
        out[col] = out[col].fillna(median)

    logger.info(f"Cleaned {len(out)} new rows with the training state: {out.shape[1]} columns")
    return out


def print_cleaning_summary(report: Dict[str, Any]) -> None:
    """
    Print a summary of the cleaning steps.

    Args:
        report: Report dictionary from clean_pipeline
    """
    print("\n" + "=" * 60)
    print("CLEANING SUMMARY")
    print("=" * 60)
    print(f"Input:  {report['input_shape'][0]} rows × {report['input_shape'][1]} columns")
    print(f"Output: {report['output_shape'][0]} rows × {report['output_shape'][1]} columns")
    print("\nSteps:")
    print("-" * 40)
    for step in report['steps']:
        print(f"  {step['step']:<28} {step['rows']:>8} rows {step['columns']:>5} cols")

    if report['nzv']:
        print("\nNear-zero-variance columns:")
        print("-" * 40)
        for col, m in report['nzv'].items():
            print(f"  {col:<20} freq_ratio={m['freq_ratio']:.2f} "
                  f"percent_unique={m['percent_unique']:.2f}")
    print("=" * 60 + "\n")
