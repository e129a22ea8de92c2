"""
Report Module
=============

Renders the results of one run as a Markdown document.

Sections:
    - Dataset summary
    - Cleaning log and near-zero-variance table
    - Model comparison table and best model
    - OLS coefficients and variance inflation factors
    - Figures
"""

import logging
from pathlib import Path
from typing import Dict, Any, List, Optional
from datetime import datetime

import pandas as pd

logger = logging.getLogger(__name__)

FLOAT_FORMAT = '.4f'


def _table(df: pd.DataFrame, index: bool = False) -> str:
    return df.to_markdown(index=index, floatfmt=FLOAT_FORMAT)


def _dataset_section(summary: Dict[str, Any]) -> List[str]:
    rows, cols = summary['shape']
    lines = ["## Dataset", "", f"- Rows: {rows}", f"- Columns: {cols}"]
    if summary.get('missing'):
        missing = ", ".join(f"{col} ({n})" for col, n in summary['missing'].items())
        lines.append(f"- Missing values: {missing}")
    else:
        lines.append("- Missing values: none")

    if summary.get('statistics'):
        stats = pd.DataFrame(summary['statistics']).T
        stats.index.name = 'column'
        lines += ["", _table(stats, index=True)]
    return lines + [""]


def _cleaning_section(cleaning: Dict[str, Any]) -> List[str]:
    lines = ["## Cleaning", ""]
    in_rows, in_cols = cleaning['input_shape']
    out_rows, out_cols = cleaning['output_shape']
    lines.append(f"{in_rows} rows × {in_cols} columns -> {out_rows} rows × {out_cols} columns.")
    lines.append("")

    if cleaning['steps']:
        lines += [_table(pd.DataFrame(cleaning['steps'])), ""]

    for reason, columns in cleaning.get('dropped_columns', {}).items():
        if columns:
            lines.append(f"- Dropped ({reason.replace('_', ' ')}): {', '.join(columns)}")
    if cleaning.get('imputed_medians'):
        imputed = ", ".join(f"{col}={value:g}" for col, value in cleaning['imputed_medians'].items())
        lines.append(f"- Median-imputed: {imputed}")
    if cleaning.get('amenity_columns'):
        lines.append(f"- Amenity dummies: {len(cleaning['amenity_columns'])}")
    lines.append("")

    lines += ["### Near-zero-variance columns", ""]
    if cleaning.get('nzv'):
        nzv = pd.DataFrame(cleaning['nzv']).T
        nzv.index.name = 'column'
        lines.append(_table(nzv, index=True))
    else:
        lines.append("None.")
    return lines + [""]


def _ols_section(comparison: Dict[str, Any]) -> List[str]:
    ols_rows = comparison['table'][comparison['table']['kind'] == 'ols']
    if ols_rows.empty:
        return []

    if comparison['best_model'] in ols_rows['model'].values:
        name = comparison['best_model']
    else:
        name = ols_rows.sort_values('bic', kind='mergesort')['model'].iloc[0]
    summary = comparison['models'][name].summary()

    coefs = pd.DataFrame({
        'coefficient': summary['coefficients'],
        'robust_se': summary['std_errors'],
        'p_value': summary['p_values']
    })
    coefs.index.name = 'term'

    lines = [
        f"## OLS: {name}",
        "",
        f"R² = {summary['r2']:.4f}, adjusted R² = {summary['adj_r2']:.4f}, "
        f"AIC = {summary['aic']:.2f}, BIC = {summary['bic']:.2f}, n = {summary['nobs']}",
        "",
        _table(coefs, index=True),
        ""
    ]

    vif = comparison.get('vif', {}).get(name)
    if vif is not None and len(vif):
        lines += ["### Variance inflation factors", "", _table(vif.to_frame(), index=True), ""]
    return lines


def render_report(
    results: Dict[str, Any],
    output_dir: str = "reports/",
    title: Optional[str] = None
) -> str:
    """
    Write report.md for one run.

    Args:
        results: Dictionary with any of 'data_summary' (get_data_summary),
            'cleaning' (clean_pipeline report), 'eda' (generate_eda_report)
            and 'comparison' (compare_models)
        output_dir: Directory of the report; figure links are relative to it
        title: Report title

    Returns:
        Path to the written report
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    lines = [
        f"# {title or 'Model comparison report'}",
        "",
        f"Generated {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}.",
        ""
    ]

    if results.get('data_summary'):
        lines += _dataset_section(results['data_summary'])

    if results.get('cleaning'):
        lines += _cleaning_section(results['cleaning'])

    figures: List[str] = []
    if results.get('eda'):
        figures += [f"figures/{name}" for name in results['eda']['figures']]

    comparison = results.get('comparison')
    if comparison:
        task = comparison['task']
        lines += [
            "## Model comparison",
            "",
            f"Task: {task}. Models ranked by {comparison['selection_metric']}.",
            "",
            _table(comparison['table']),
            "",
            f"**Best model:** {comparison['best_model']}",
            ""
        ]
        lines += _ols_section(comparison)
        figures += comparison['figures']

    if figures:
        lines += ["## Figures", ""]
        for fig in figures:
            lines.append(f"![{Path(fig).stem}]({fig})")
        lines.append("")

    report_path = output_dir / "report.md"
    report_path.write_text("\n".join(lines))
    logger.info(f"Report written to {report_path}")
    return str(report_path)
