from pathlib import Path
import pytest
from schema import SchemaError
from utils.config_utils import ConfigValidationError, load_config, validate_config, validate_preprocessing
import pandas as pd
import yaml


@pytest.fixture
def dummy_data_path(tmp_path):
    """Creates a dummy data file for config validation and returns its path."""
    data_file = tmp_path / "publications.csv"
    data_file.write_text("year,month,count\n2000,1,10\n")
    return str(data_file)


@pytest.fixture
def valid_config_dict(dummy_data_path):
    """Pytest fixture to provide a minimal valid configuration using a temporary data file."""
    return {
        'dataset': {'path': dummy_data_path},
        'search': {
            'params': {
                'p': {'min': 0, 'max': 3},
                'q': {'min': 0, 'max': 3},
                'P': [0, 1],
                'Q': [0, 1],
            },
        },
    }


def test_config_validation_fills_defaults(valid_config_dict):
    """Optional sections are completed with defaults after validation."""
    validated = validate_config(valid_config_dict)
    assert validated['dataset']['name'] == 'publications'
    assert validated['preprocessing']['differencing']['seasonal_period'] == 12
    assert validated['preprocessing']['power_transform']['lambda_grid'] == {'min': 0.36, 'max': 0.65, 'step': 0.01}
    assert validated['search']['n_jobs'] == 1
    assert validated['search']['params']['P'] == [0, 1]
    assert validated['model'] is None
    assert validated['outliers']['alpha'] == 0.05
    assert validated['diagnostics']['ljung_box_lags'] == 20
    assert validated['diagnostics']['daniell_half_width'] == 8
    assert validated['report']['output_dir'] == 'results'


def test_config_validation_does_not_mutate_input(valid_config_dict):
    validate_config(valid_config_dict)
    assert 'preprocessing' not in valid_config_dict


def test_config_validation_fails_on_missing_dataset(valid_config_dict):
    del valid_config_dict['dataset']
    with pytest.raises(SchemaError, match="Missing key: 'dataset'"):
        validate_config(valid_config_dict)


def test_config_validation_fails_on_missing_file(valid_config_dict, tmp_path):
    valid_config_dict['dataset']['path'] = str(tmp_path / 'nope.csv')
    with pytest.raises(SchemaError, match="Dataset file path does not exist"):
        validate_config(valid_config_dict)


@pytest.mark.parametrize("section, value", [
    ('search', {'params': {'p': {'min': 2, 'max': 1}, 'q': [0], 'P': [0], 'Q': [0]}}),
    ('search', {'params': {'p': [-1], 'q': [0], 'P': [0], 'Q': [0]}}),
    ('search', {'n_jobs': 0}),
    ('search', {'timeout': -5}),
    ('model', {'p': 1, 'q': 0, 'P': 0}),
    ('outliers', {'alpha': 1.5}),
    ('diagnostics', {'daniell_half_width': -1}),
    ('preprocessing', {'differencing': {'seasonal_period': 1}}),
    ('preprocessing', {'power_transform': {'lambda_grid': {'min': 0.7, 'max': 0.3}}}),
    ('report', {'top_candidates': 0}),
])
def test_config_validation_rejects_invalid_values(valid_config_dict, section, value):
    valid_config_dict[section] = value
    with pytest.raises(SchemaError):
        validate_config(valid_config_dict)


def test_config_validation_accepts_selected_model(valid_config_dict):
    valid_config_dict['model'] = {'p': 1, 'q': 1, 'P': 0, 'Q': 1}
    assert validate_config(valid_config_dict)['model'] == {'p': 1, 'q': 1, 'P': 0, 'Q': 1}


def test_config_validation_rejects_model_df_above_lags(valid_config_dict):
    valid_config_dict['diagnostics'] = {'ljung_box_lags': 10, 'model_df': 10}
    with pytest.raises(ValueError, match="model_df"):
        validate_config(valid_config_dict)


def test_validate_preprocessing_checks_span():
    """The differencing span must leave at least one observation."""
    data = pd.Series(range(13), dtype=float)
    with pytest.raises(ValueError, match="Total differencing span"):
        validate_preprocessing({'differencing': {'order': 1, 'seasonal_order': 1, 'seasonal_period': 12}}, data)
    validate_preprocessing({'differencing': {'enabled': False}}, data)


def test_load_config_roundtrip(tmp_path, valid_config_dict):
    config_path = tmp_path / 'config.yaml'
    config_path.write_text(yaml.safe_dump(valid_config_dict))
    config = load_config(str(config_path))
    assert config['search']['params']['p'] == {'min': 0, 'max': 3}


def test_load_config_wraps_schema_errors(tmp_path, valid_config_dict):
    valid_config_dict['search'] = {'maxiter': 'many'}
    config_path = tmp_path / 'config.yaml'
    config_path.write_text(yaml.safe_dump(valid_config_dict))
    with pytest.raises(ConfigValidationError):
        load_config(str(config_path))


def test_load_config_wraps_yaml_errors(tmp_path):
    config_path = tmp_path / 'config.yaml'
    config_path.write_text("dataset: [unclosed\n")
    with pytest.raises(ConfigValidationError):
        load_config(str(config_path))


def test_load_config_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / 'missing.yaml'))


def test_load_config_empty_file(tmp_path):
    config_path = tmp_path / 'config.yaml'
    config_path.write_text("")
    with pytest.raises(ValueError, match="empty"):
        load_config(str(config_path))


def test_shipped_config_is_valid_once_data_exists(dummy_data_path):
    """The repository's config.yaml validates when its dataset file is present."""
    shipped = Path(__file__).resolve().parents[2] / 'config.yaml'
    with open(shipped) as f:
        config = yaml.safe_load(f)
    assert config['dataset']['path'] == 'data/synthetic_publications.csv'

    config['dataset']['path'] = dummy_data_path
    validated = validate_config(config)
    assert validated['search']['params']['p'] == {'min': 0, 'max': 3}
    assert validated['model'] is None


def test_missing_dataset_points_to_generator(valid_config_dict, tmp_path):
    valid_config_dict['dataset']['path'] = str(tmp_path / 'synthetic_publications.csv')
    config_path = tmp_path / 'config.yaml'
    config_path.write_text(yaml.safe_dump(valid_config_dict))
    with pytest.raises(ConfigValidationError, match="generate_synthetic_data.py"):
        load_config(str(config_path))
