"""
Test Suite for Data Loader Module
=================================

Tests for configuration loading, CSV/Excel ingestion and validation.
"""

import pytest
import numpy as np
import pandas as pd

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from model_reports.data_loader import load_config, load_data, validate_data, get_data_summary


class TestLoadConfig:
    """Tests for load_config."""

    def test_load_yaml(self, tmp_path):
        """Test reading a YAML configuration."""
        path = tmp_path / "config.yaml"
        path.write_text("target:\n  column: price\n  task: regression\n")

        config = load_config(str(path))

        assert config['target']['column'] == 'price'

    def test_empty_yaml(self, tmp_path):
        """Test that an empty file gives an empty configuration."""
        path = tmp_path / "empty.yaml"
        path.write_text("")

        assert load_config(str(path)) == {}

    def test_missing_file(self, tmp_path):
        """Test that a missing config raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "nope.yaml"))

    def test_shipped_configs(self):
        """Test that the shipped configurations parse and name a target."""
        config_dir = Path(__file__).parent.parent / "config"
        for name in ("config.yaml", "airbnb.yaml", "firm_exit.yaml"):
            config = load_config(str(config_dir / name))
            assert 'column' in config['target']
            assert config['models']


class TestLoadData:
    """Tests for load_data."""

    @pytest.fixture
    def sample_frame(self):
        """Create a small table."""
        return pd.DataFrame({
            'earnwke': [1200.0, 2500.0, 900.0],
            'uhourse': [40, 45, 30],
            'sex': [1, 2, 2]
        })

    def test_load_csv(self, tmp_path, sample_frame):
        """Test reading a CSV file."""
        path = tmp_path / "data.csv"
        sample_frame.to_csv(path, index=False)

        df = load_data(str(path))

        pd.testing.assert_frame_equal(df, sample_frame)

    def test_load_csv_usecols(self, tmp_path, sample_frame):
        """Test reading a column subset."""
        path = tmp_path / "data.csv"
        sample_frame.to_csv(path, index=False)

        df = load_data(str(path), usecols=['earnwke', 'sex'])

        assert list(df.columns) == ['earnwke', 'sex']

    def test_load_xlsx(self, tmp_path, sample_frame):
        """Test reading an Excel workbook."""
        path = tmp_path / "data.xlsx"
        sample_frame.to_excel(path, index=False, engine='openpyxl')

        df = load_data(str(path))

        assert df.shape == (3, 3)
        assert df['earnwke'].tolist() == [1200.0, 2500.0, 900.0]

    def test_missing_file(self, tmp_path):
        """Test that a missing data file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_data(str(tmp_path / "missing.csv"))

    def test_unsupported_suffix(self, tmp_path):
        """Test that an unknown file type is rejected."""
        path = tmp_path / "data.parquet"
        path.write_bytes(b"")
        with pytest.raises(ValueError, match="Unsupported file type"):
            load_data(str(path))

    def test_expected_columns(self, tmp_path, sample_frame):
        """Test the optional column-count check."""
        path = tmp_path / "data.csv"
        sample_frame.to_csv(path, index=False)
        with pytest.raises(ValueError, match="Expected 6 columns"):
            load_data(str(path), expected_columns=6)


class TestValidateData:
    """Tests for validate_data."""

    def test_valid_data(self):
        """Test that clean data passes."""
        df = pd.DataFrame({'x': [1.0, 2.0, 3.0], 'y': [2.0, 4.0, 5.0]})

        is_valid, report = validate_data(df, target='y')

        assert is_valid
        assert report['issues'] == []

    def test_issues_reported(self):
        """Test detection of missing values, duplicates and constant columns."""
        df = pd.DataFrame({
            'x': [1.0, 1.0, np.nan, 4.0],
            'c': [7, 7, 7, 7],
            'y': [1.0, 1.0, 2.0, 3.0]
        })

        is_valid, report = validate_data(df, target='y', strict=False)

        assert not is_valid
        assert report['missing_by_column'] == {'x': 1}
        assert any('Duplicate' in issue for issue in report['issues'])
        assert any("['c']" in issue for issue in report['issues'])

    def test_missing_target(self):
        """Test that a missing target is reported."""
        df = pd.DataFrame({'x': [1.0, 2.0]})
        is_valid, report = validate_data(df, target='price', strict=False)

        assert not is_valid
        assert "Target column 'price' not found" in report['issues']

    def test_non_numeric_regression_target(self):
        """Test that a string target fails regression validation."""
        df = pd.DataFrame({'x': [1.0, 2.0], 'y': ['a', 'b']})
        is_valid, _ = validate_data(df, target='y', strict=False)
        assert not is_valid

        is_valid, _ = validate_data(df, target='y', task='classification', strict=False)
        assert is_valid

    def test_strict_raises(self):
        """Test that strict validation raises ValueError."""
        df = pd.DataFrame({'x': [1.0, np.nan]})
        with pytest.raises(ValueError, match="Data validation failed"):
            validate_data(df)


class TestDataSummary:
    """Tests for get_data_summary."""

    def test_summary(self):
        """Test shape, missing counts and statistics."""
        df = pd.DataFrame({'x': [1.0, 2.0, np.nan], 'g': ['a', 'b', 'b']})

        summary = get_data_summary(df)

        assert summary['shape'] == (3, 2)
        assert summary['missing'] == {'x': 1}
        assert summary['statistics']['x']['mean'] == 1.5
        assert 'g' not in summary['statistics']


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
