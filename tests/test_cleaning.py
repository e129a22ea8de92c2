"""
Test Suite for Cleaning Module
==============================

Tests for row filters, string parsing, feature engineering and the
near-zero-variance diagnostics.
"""

import pytest
import numpy as np
import pandas as pd

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from model_reports.cleaning import (
    select_columns, rename_columns, filter_rows, to_boolean, parse_money,
    parse_percent, split_amenities, parse_amenities, to_categorical,
    add_ratio_column, add_log_columns, add_polynomial_terms, add_interaction_terms,
    impute_median, near_zero_variance, drop_constant_columns,
    drop_near_zero_variance, clean_pipeline, clean_new_rows
)


@pytest.fixture
def wage_data():
    """Small CPS-like extract."""
    return pd.DataFrame({
        'hhid': [1, 2, 3, 4, 5, 6],
        'earnwke': [1500.0, 0.0, 2000.0, np.nan, 1800.0, 2200.0],
        'uhourse': [40, 40, 0, 40, 36, 44],
        'age': [30, 45, 50, 15, 70, 38],
        'sex': [1, 2, 2, 1, 2, 1],
        'occ2012': [3050, 3050, 3050, 3050, 3050, 10],
        'lfsr94': ['Employed-At Work'] * 6
    })


class TestColumnOperations:
    """Tests for selection and renaming."""

    def test_select_columns(self, wage_data):
        """Test column selection keeps the listed order."""
        out = select_columns(wage_data, ['age', 'hhid'])
        assert list(out.columns) == ['age', 'hhid']

    def test_select_missing_columns(self, wage_data):
        """Test that missing names are listed in the KeyError."""
        with pytest.raises(KeyError, match="class94"):
            select_columns(wage_data, ['age', 'class94'])

    def test_rename_columns(self, wage_data):
        """Test renaming."""
        out = rename_columns(wage_data, {'uhourse': 'uhours'})
        assert 'uhours' in out.columns
        assert 'uhourse' not in out.columns


class TestFilterRows:
    """Tests for filter_rows."""

    def test_nonzero_notna(self, wage_data):
        """Test dropping zero or missing values."""
        out = filter_rows(wage_data, [{'type': 'nonzero_notna', 'columns': ['earnwke', 'uhourse']}])
        assert out['hhid'].tolist() == [1, 5, 6]

    def test_range(self, wage_data):
        """Test inclusive range bounds."""
        out = filter_rows(wage_data, [{'type': 'range', 'column': 'age', 'min': 16, 'max': 64}])
        assert out['hhid'].tolist() == [1, 2, 3, 6]

    def test_range_one_bound(self, wage_data):
        """Test a range with only a lower bound."""
        out = filter_rows(wage_data, [{'type': 'range', 'column': 'age', 'min': 45}])
        assert out['hhid'].tolist() == [2, 3, 5]

    def test_equals_and_isin(self, wage_data):
        """Test equality and membership filters."""
        out = filter_rows(wage_data, [{'type': 'equals', 'column': 'occ2012', 'value': 3050}])
        assert len(out) == 5

        out = filter_rows(wage_data, [{'type': 'isin', 'column': 'hhid', 'values': [2, 4]}])
        assert out['hhid'].tolist() == [2, 4]

    def test_notna(self, wage_data):
        """Test dropping missing values only."""
        out = filter_rows(wage_data, [{'type': 'notna', 'columns': ['earnwke']}])
        assert len(out) == 5

    def test_rules_apply_in_order(self, wage_data):
        """Test the pharmacist sample selection end to end."""
        rules = [
            {'type': 'nonzero_notna', 'columns': ['uhourse', 'earnwke']},
            {'type': 'range', 'column': 'age', 'min': 16, 'max': 64},
            {'type': 'equals', 'column': 'occ2012', 'value': 3050}
        ]
        out = filter_rows(wage_data, rules)
        assert out['hhid'].tolist() == [1]

    def test_unknown_rule(self, wage_data):
        """Test that an unknown rule type is rejected."""
        with pytest.raises(ValueError, match="Unknown filter type"):
            filter_rows(wage_data, [{'type': 'between', 'column': 'age'}])


class TestStringParsing:
    """Tests for boolean, money and percent parsing."""

    def test_to_boolean(self):
        """Test boolean-as-string mapping."""
        result = to_boolean(pd.Series(['t', 'f', 'TRUE', 'no', 'Yes', 'maybe', None]))
        expected = [1.0, 0.0, 1.0, 0.0, 1.0, np.nan, np.nan]
        np.testing.assert_array_equal(result.values, expected)

    def test_to_boolean_numeric(self):
        """Test 1/0 values."""
        assert to_boolean(pd.Series([1, 0])).tolist() == [1.0, 0.0]

    def test_parse_money(self):
        """Test currency strings."""
        result = parse_money(pd.Series(['$1,250.00', '$85.00', '', None]))
        assert result.iloc[0] == 1250.0
        assert result.iloc[1] == 85.0
        assert result.iloc[2:].isna().all()

    def test_parse_percent(self):
        """Test percent strings."""
        result = parse_percent(pd.Series(['95%', '100%', 'N/A']))
        assert result.iloc[0] == 95.0
        assert result.iloc[1] == 100.0
        assert np.isnan(result.iloc[2])


class TestAmenities:
    """Tests for amenity-list parsing."""

    def test_split_brace_list(self):
        """Test Inside-Airbnb brace lists with quoted names."""
        names = split_amenities('{TV,Wifi,"Air conditioning","Washer / Dryer"}')
        assert names == ['tv', 'wifi', 'air_conditioning', 'washer_dryer']

    def test_split_json_list(self):
        """Test JSON arrays and de-duplication."""
        names = split_amenities('["Wifi", "Hot water", "wifi"]')
        assert names == ['wifi', 'hot_water']

    def test_split_empty(self):
        """Test missing and empty values."""
        assert split_amenities(np.nan) == []
        assert split_amenities('{}') == []

    def test_parse_amenities(self):
        """Test dummy columns ordered by frequency."""
        series = pd.Series([
            '{Wifi,Kitchen}',
            '{Wifi}',
            '{Wifi,"Hot tub"}',
            '{Kitchen,Wifi}'
        ], index=[10, 11, 12, 13])

        dummies = parse_amenities(series)

        assert list(dummies.columns) == ['d_wifi', 'd_kitchen', 'd_hot_tub']
        assert list(dummies.index) == [10, 11, 12, 13]
        assert dummies['d_kitchen'].tolist() == [1, 0, 0, 1]

    def test_parse_amenities_filters(self):
        """Test min_frequency and top_n."""
        series = pd.Series(['{A,B,C}', '{A,B}', '{A}', '{A}'])

        assert list(parse_amenities(series, min_frequency=0.5).columns) == ['d_a', 'd_b']
        assert list(parse_amenities(series, top_n=1, prefix='has_').columns) == ['has_a']

    def test_parse_amenities_fixed_columns(self):
        """Test dummies against a vocabulary learned on other rows."""
        series = pd.Series(['{Pool,Wifi}', '{Kitchen}', None])

        dummies = parse_amenities(series, columns=['d_wifi', 'd_tv'])

        assert list(dummies.columns) == ['d_wifi', 'd_tv']
        assert dummies['d_wifi'].tolist() == [1, 0, 0]
        assert dummies['d_tv'].sum() == 0


class TestFeatureEngineering:
    """Tests for derived columns."""

    def test_to_categorical(self):
        """Test factor labels."""
        result = to_categorical(pd.Series([1.0, 2.0, np.nan, 2.5]))
        assert result.iloc[0] == '1'
        assert result.iloc[1] == '2'
        assert pd.isna(result.iloc[2])
        assert result.iloc[3] == '2.5'

    def test_add_ratio_column(self, wage_data):
        """Test ratio column and removal of infinite/missing values."""
        out = add_ratio_column(wage_data, 'earn_per_hour', 'earnwke', 'uhourse')

        # row 3 divides by zero, row 4 has missing earnings
        assert out['hhid'].tolist() == [1, 2, 5, 6]
        assert out.loc[0, 'earn_per_hour'] == 37.5

    def test_add_ratio_column_keeps_rows(self, wage_data):
        """Test that invalid ratios become NaN when rows are kept."""
        out = add_ratio_column(wage_data, 'earn_per_hour', 'earnwke', 'uhourse',
                               drop_invalid=False)

        assert len(out) == len(wage_data)
        assert out['earn_per_hour'].isna().tolist() == [False, False, True, True, False, False]

    def test_add_log_columns(self):
        """Test natural logs with non-positive values as NaN."""
        out = add_log_columns(pd.DataFrame({'price': [np.e, 1.0, 0.0, -2.0]}), ['price'])
        assert out['ln_price'].iloc[0] == pytest.approx(1.0)
        assert out['ln_price'].iloc[1] == 0.0
        assert out['ln_price'].iloc[2:].isna().all()

    def test_polynomial_terms(self):
        """Test polynomial columns."""
        out = add_polynomial_terms(pd.DataFrame({'age': [2.0, 3.0]}), 'age', 3)
        assert out['age_pow2'].tolist() == [4.0, 9.0]
        assert out['age_pow3'].tolist() == [8.0, 27.0]

    def test_polynomial_requires_numeric(self):
        """Test that string columns are rejected."""
        with pytest.raises(TypeError, match="must be numeric"):
            add_polynomial_terms(pd.DataFrame({'sex': ['1', '2']}), 'sex', 2)

    def test_interaction_terms(self):
        """Test interaction columns."""
        df = pd.DataFrame({'a': [1.0, 2.0], 'b': [3.0, 4.0]})
        out = add_interaction_terms(df, [['a', 'b']])
        assert out['a_x_b'].tolist() == [3.0, 8.0]


class TestImputation:
    """Tests for impute_median."""

    def test_impute_with_flags(self):
        """Test median fill and flag columns."""
        df = pd.DataFrame({'x': [1.0, np.nan, 3.0, 10.0], 'y': [1.0, 2.0, 3.0, 4.0]})

        out, medians = impute_median(df)

        assert medians == {'x': 3.0}
        assert out['x'].tolist() == [1.0, 3.0, 3.0, 10.0]
        assert out['flag_miss_x'].tolist() == [0, 1, 0, 0]
        assert 'flag_miss_y' not in out.columns

    def test_impute_without_flags(self):
        """Test imputation without indicator columns."""
        df = pd.DataFrame({'x': [np.nan, 2.0, 4.0]})
        out, _ = impute_median(df, add_flags=False)
        assert list(out.columns) == ['x']
        assert out['x'].iloc[0] == 3.0

    def test_impute_requires_numeric(self):
        """Test that listed string columns are rejected."""
        with pytest.raises(TypeError):
            impute_median(pd.DataFrame({'g': ['a', None]}), columns=['g'])


class TestNearZeroVariance:
    """Tests for the near-zero-variance diagnostics."""

    @pytest.fixture
    def nzv_data(self):
        """Columns with known frequency ratios."""
        n = 100
        return pd.DataFrame({
            'constant': [1] * n,
            'rare': [0] * 97 + [1] * 3,
            'balanced': [0, 1] * 50,
            'continuous': np.arange(n, dtype=float),
            'target': [5.0] * n
        })

    def test_metrics(self, nzv_data):
        """Test frequency ratio and percent unique."""
        metrics = near_zero_variance(nzv_data)

        assert metrics.loc['constant', 'freq_ratio'] == 0.0
        assert metrics.loc['constant', 'zero_var']
        assert metrics.loc['rare', 'freq_ratio'] == pytest.approx(97 / 3)
        assert metrics.loc['rare', 'percent_unique'] == 2.0
        assert metrics.loc['balanced', 'freq_ratio'] == 1.0
        assert metrics.loc['continuous', 'percent_unique'] == 100.0

    def test_flags(self, nzv_data):
        """Test the nzv flag."""
        metrics = near_zero_variance(nzv_data)
        assert metrics.index[metrics['nzv']].tolist() == ['constant', 'rare', 'target']

    def test_custom_cutoffs(self, nzv_data):
        """Test that a looser frequency cutoff keeps the rare column."""
        metrics = near_zero_variance(nzv_data, freq_cut=50)
        assert not metrics.loc['rare', 'nzv']

    def test_missing_values_ignored_in_counts(self):
        """Test that missing values are not counted as a level."""
        metrics = near_zero_variance(pd.DataFrame({'x': [1.0, np.nan, np.nan, np.nan]}))
        assert metrics.loc['x', 'zero_var']
        assert metrics.loc['x', 'percent_unique'] == 25.0

    def test_drop_constant(self, nzv_data):
        """Test dropping constant columns with a protected target."""
        out, dropped = drop_constant_columns(nzv_data, exclude=['target'])
        assert dropped == ['constant']
        assert 'target' in out.columns

    def test_drop_near_zero_variance(self, nzv_data):
        """Test dropping near-zero-variance columns."""
        out, dropped, flagged = drop_near_zero_variance(nzv_data, exclude=['target'])
        assert dropped == ['constant', 'rare']
        assert list(out.columns) == ['balanced', 'continuous', 'target']
        assert 'target' in flagged.index


class TestCleanPipeline:
    """Tests for clean_pipeline."""

    def test_wage_pipeline(self, wage_data):
        """Test the pharmacist sample construction."""
        config = {
            'rename': {'uhourse': 'uhours'},
            'filters': [
                {'type': 'nonzero_notna', 'columns': ['uhours', 'earnwke']},
                {'type': 'range', 'column': 'age', 'min': 16, 'max': 64},
                {'type': 'equals', 'column': 'occ2012', 'value': 3050}
            ],
            'categorical': ['sex'],
            'ratios': [{'name': 'earn_per_hour', 'numerator': 'earnwke', 'denominator': 'uhours'}],
            'drop_columns': ['occ2012', 'lfsr94'],
            'drop_constant': False
        }

        out, report = clean_pipeline(wage_data, config, target='earn_per_hour')

        assert out['hhid'].tolist() == [1]
        assert out['earn_per_hour'].iloc[0] == 37.5
        assert 'occ2012' not in out.columns
        assert report['dropped_columns']['configured'] == ['occ2012', 'lfsr94']
        assert report['input_shape'] == (6, 7)
        assert report['output_shape'] == out.shape
        assert [s['step'] for s in report['steps']][:2] == ['rename', 'filters']
        assert out['sex'].iloc[0] == '1'

    def test_listing_pipeline(self):
        """Test string parsing, amenities, logs and imputation."""
        df = pd.DataFrame({
            'price': ['$100.00', '$1,200.00', '$80.00', None, '$150.00'],
            'host_is_superhost': ['t', 'f', 'f', 't', 't'],
            'host_response_rate': ['90%', '100%', None, '80%', '95%'],
            'accommodates': [2, 4, 3, 2, 5],
            'amenities': ['{Wifi,TV}', '{Wifi}', '{Wifi,Kitchen}', '{TV}', '{Wifi,TV}']
        })
        config = {
            'boolean_columns': ['host_is_superhost'],
            'money_columns': ['price'],
            'percent_columns': ['host_response_rate'],
            'amenities': {'column': 'amenities'},
            'log_columns': ['price'],
            'impute_median': True
        }

        out, report = clean_pipeline(df, config, target='price')

        assert len(out) == 4
        assert out['price'].tolist() == [100.0, 1200.0, 80.0, 150.0]
        assert out['host_is_superhost'].tolist() == [1.0, 0.0, 0.0, 1.0]
        assert 'amenities' not in out.columns
        assert 'd_wifi' in report['amenity_columns']
        assert report['imputed_medians'] == {'host_response_rate': 95.0}
        assert out['flag_miss_host_response_rate'].tolist() == [0, 0, 1, 0]
        assert out['ln_price'].iloc[0] == pytest.approx(np.log(100.0))

    def test_nzv_dropped_but_target_kept(self):
        """Test that the target is never dropped as near-zero variance."""
        df = pd.DataFrame({
            'x': np.arange(100, dtype=float),
            'rare': [0] * 98 + [1] * 2,
            'y': [0] * 97 + [1] * 3
        })
        out, report = clean_pipeline(df, {'drop_near_zero_variance': True}, target='y')

        assert 'rare' not in out.columns
        assert 'y' in out.columns
        assert report['dropped_columns']['near_zero_variance'] == ['rare']
        assert set(report['nzv']) == {'rare', 'y'}

    def test_nzv_reported_without_dropping(self):
        """Test that NZV columns are reported by default but kept."""
        df = pd.DataFrame({'x': np.arange(100, dtype=float), 'rare': [0] * 99 + [1]})
        out, report = clean_pipeline(df, {})

        assert 'rare' in out.columns
        assert 'rare' in report['nzv']

    def test_missing_target(self, wage_data):
        """Test that a missing target column raises KeyError."""
        with pytest.raises(KeyError):
            clean_pipeline(wage_data, {}, target='earn_per_hour')


class TestCleanNewRows:
    """Tests for cleaning rows to score with the training state."""

    @pytest.fixture
    def listing_config(self):
        return {
            'boolean_columns': ['host_is_superhost'],
            'money_columns': ['price'],
            'percent_columns': ['host_response_rate'],
            'amenities': {'column': 'amenities'},
            'log_columns': ['price'],
            'impute_median': True
        }

    @pytest.fixture
    def training_report(self, listing_config):
        df = pd.DataFrame({
            'price': ['$100.00', '$1,200.00', '$80.00', None, '$150.00'],
            'host_is_superhost': ['t', 'f', 'f', 't', 't'],
            'host_response_rate': ['90%', '100%', None, '80%', '95%'],
            'accommodates': [2, 4, 3, 2, 5],
            'amenities': ['{Wifi,TV}', '{Wifi}', '{Wifi,Kitchen}', '{TV}', '{Wifi,TV}']
        })
        _, report = clean_pipeline(df, listing_config, target='price')
        return report

    def test_training_state_applied(self, listing_config, training_report):
        """Test amenity vocabulary, medians and flags come from training."""
        new = pd.DataFrame({
            'host_is_superhost': ['f', 't'],
            'host_response_rate': ['100%', None],
            'accommodates': [3, 6],
            'amenities': ['{Kitchen,Pool}', '{Wifi}']
        })

        out = clean_new_rows(new, listing_config, training_report)

        assert len(out) == 2
        amenity_columns = [col for col in out.columns if col.startswith('d_')]
        assert amenity_columns == training_report['amenity_columns']
        assert 'd_pool' not in out.columns
        assert out['d_kitchen'].tolist() == [1, 0]
        assert out['host_response_rate'].tolist() == [100.0, 95.0]
        assert out['flag_miss_host_response_rate'].tolist() == [0, 1]
        assert 'ln_price' not in out.columns

    def test_flags_for_complete_rows(self, listing_config, training_report):
        """Test that training flag columns exist even without missing values."""
        new = pd.DataFrame({
            'host_is_superhost': ['t'],
            'host_response_rate': ['85%'],
            'accommodates': [2],
            'amenities': ['{TV}']
        })

        out = clean_new_rows(new, listing_config, training_report)

        assert out['flag_miss_host_response_rate'].tolist() == [0]

    def test_no_rows_dropped(self, wage_data):
        """Test that filters and invalid ratios never drop rows to score."""
        config = {
            'filters': [{'type': 'nonzero_notna', 'columns': ['uhourse', 'earnwke']}],
            'categorical': ['sex'],
            'ratios': [{'name': 'earn_per_hour', 'numerator': 'earnwke',
                        'denominator': 'uhourse'}],
            'polynomials': {'age': 2}
        }
        _, report = clean_pipeline(wage_data, config, target='earn_per_hour')

        out = clean_new_rows(wage_data, config, report)

        assert out['hhid'].tolist() == wage_data['hhid'].tolist()
        assert out['earn_per_hour'].isna().sum() == 2
        assert out['age_pow2'].iloc[0] == 900.0
        assert out['sex'].iloc[0] == '1'

    def test_target_inputs_absent(self, wage_data):
        """Test that a ratio is skipped when its inputs are not in the new rows."""
        config = {'ratios': [{'name': 'earn_per_hour', 'numerator': 'earnwke',
                              'denominator': 'uhourse'}]}
        _, report = clean_pipeline(wage_data, config, target='earn_per_hour')

        out = clean_new_rows(wage_data.drop(columns=['earnwke']), config, report)

        assert 'earn_per_hour' not in out.columns
        assert len(out) == len(wage_data)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
