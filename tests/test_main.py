"""
Test Suite for the Pipeline Entry Point
=======================================

Runs the phases of main.py on a small synthetic wage table.
"""

import pytest
import numpy as np
import pandas as pd
import yaml

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

import main


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    """Raw CSV and configuration with every output under tmp_path."""
    monkeypatch.chdir(tmp_path)

    np.random.seed(5)
    n = 200
    df = pd.DataFrame({
        'hhid': np.arange(n),
        'age': np.random.randint(18, 64, n),
        'sex': np.random.choice([1, 2], n),
        'uhours': np.random.choice([0, 30, 40, 45], n, p=[0.05, 0.2, 0.6, 0.15]),
        'grade92': np.random.choice([43, 44, 46], n)
    })
    wage = 12 + 0.25 * df['age'] + 3.0 * (df['sex'] == 1) + np.random.normal(0, 2.0, n)
    df['earnwke'] = (wage * df['uhours']).round(2)
    data_path = tmp_path / 'wages.csv'
    df.to_csv(data_path, index=False)

    config = {
        'title': 'Synthetic wages',
        'data': {'processed_path': str(tmp_path / 'processed' / 'wages.csv')},
        'cleaning': {
            'filters': [{'type': 'nonzero_notna', 'columns': ['uhours', 'earnwke']}],
            'categorical': ['sex'],
            'ratios': [{'name': 'earn_per_hour', 'numerator': 'earnwke',
                        'denominator': 'uhours'}],
            'polynomials': {'age': 2}
        },
        'target': {'column': 'earn_per_hour', 'exclude': ['hhid', 'earnwke']},
        'cross_validation': {'n_folds': 3, 'random_state': 42},
        'models': [
            {'name': 'ols_m1', 'kind': 'ols', 'features': ['age']},
            {'name': 'ols_m2', 'kind': 'ols', 'features': ['age', 'age_pow2', 'sex']},
            {'name': 'cart', 'kind': 'cart'}
        ],
        'prediction': {'id_column': 'hhid'},
        'output': {
            'reports_path': str(tmp_path / 'reports'),
            'model_path': str(tmp_path / 'models'),
            'predictions_path': str(tmp_path / 'predictions')
        }
    }
    config_path = tmp_path / 'config.yaml'
    with open(config_path, 'w') as f:
        yaml.safe_dump(config, f)

    return data_path, config_path, tmp_path


class TestRunPipeline:
    """Tests for run_pipeline."""

    def test_clean_phase(self, workspace):
        """Test that the clean phase stops after saving the clean table."""
        data_path, config_path, tmp_path = workspace

        results = main.run_pipeline(str(data_path), str(config_path), phase='clean')

        assert 'comparison' not in results
        clean = pd.read_csv(tmp_path / 'processed' / 'wages.csv')
        assert (clean['uhours'] > 0).all()
        assert 'earn_per_hour' in clean.columns
        assert 'age_pow2' in clean.columns

    def test_train_phase(self, workspace):
        """Test fitting the first configured model."""
        data_path, config_path, tmp_path = workspace

        results = main.run_pipeline(str(data_path), str(config_path), phase='train')

        assert results['training']['model'].name == 'ols_m1'
        assert (tmp_path / 'models' / 'ols_m1.joblib').exists()
        assert (tmp_path / 'models' / 'transformer.joblib').exists()

    def test_all_phases(self, workspace):
        """Test the full run writes the report and predictions."""
        data_path, config_path, tmp_path = workspace

        results = main.run_pipeline(str(data_path), str(config_path), phase='all')

        assert results['comparison']['best_model'] in ('ols_m1', 'ols_m2', 'cart')
        assert results['eda']['figures']
        predictions = results['prediction']['predictions']
        assert 'hhid' in predictions.columns
        assert 'lower_bound' in predictions.columns

        text = Path(results['report_path']).read_text()
        assert text.startswith('# Synthetic wages')
        assert '## Model comparison' in text

    def test_predict_new_rows(self, workspace):
        """Test scoring a new file with the training medians and missing-value flags."""
        data_path, config_path, tmp_path = workspace
        df = pd.read_csv(data_path)
        df.loc[:9, 'grade92'] = np.nan
        df.to_csv(data_path, index=False)

        new_rows = pd.DataFrame({
            'hhid': [1001, 1002, 1003],
            'age': [25, 40, 58],
            'sex': [1, 2, 1],
            'uhours': [40, 0, 45],
            'grade92': [44, 46, 43]
        })
        new_path = tmp_path / 'new_wages.csv'
        new_rows.to_csv(new_path, index=False)

        with open(config_path) as f:
            config = yaml.safe_load(f)
        config['cleaning']['impute_median'] = True
        config['prediction']['data_path'] = str(new_path)
        with open(config_path, 'w') as f:
            yaml.safe_dump(config, f)

        results = main.run_pipeline(str(data_path), str(config_path), phase='predict')

        assert 'grade92' in results['cleaning']['imputed_medians']
        assert 'training' not in results
        predictions = results['prediction']['predictions']
        assert predictions['hhid'].tolist() == [1001, 1002, 1003]
        assert predictions['prediction'].notna().all()

    def test_unknown_phase(self, workspace):
        """Test that unknown phases are rejected."""
        data_path, config_path, _ = workspace
        with pytest.raises(ValueError, match="Unknown phase"):
            main.run_pipeline(str(data_path), str(config_path), phase='deploy')


class TestMain:
    """Tests for the command-line entry point."""

    def test_missing_data_file(self, workspace, monkeypatch):
        """Test exit code 1 when the data file does not exist."""
        _, config_path, _ = workspace
        monkeypatch.setattr(sys, 'argv', ['main.py', '--data', 'nope.csv',
                                          '--config', str(config_path)])
        assert main.main() == 1

    def test_missing_target_config(self, workspace, monkeypatch):
        """Test exit code 1 when the pipeline raises."""
        data_path, config_path, tmp_path = workspace
        broken = tmp_path / 'broken.yaml'
        broken.write_text("cleaning: {}\n")
        monkeypatch.setattr(sys, 'argv', ['main.py', '--data', str(data_path),
                                          '--config', str(broken), '--phase', 'clean'])
        assert main.main() == 1

    def test_success(self, workspace, monkeypatch):
        """Test exit code 0 for a successful run."""
        data_path, config_path, _ = workspace
        monkeypatch.setattr(sys, 'argv', ['main.py', '--data', str(data_path),
                                          '--config', str(config_path), '--phase', 'clean'])
        assert main.main() == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
