import pytest
from utils.hyperopt.params_utils import _validate_param_space


def test_validate_param_space_expands_ranges():
    result = _validate_param_space({"p": {"min": 0, "max": 3}, "Q": [1, 0, 1]})
    assert result == [("p", [0, 1, 2, 3]), ("Q", [0, 1])]


def test_validate_param_space_with_step():
    assert _validate_param_space({"q": {"min": 0, "max": 5, "step": 2}}) == [("q", [0, 2, 4])]


@pytest.mark.parametrize("param_space, error_msg", [
    ({}, "param_space cannot be empty"),
    ({"p": []}, "empty list"),
    ({"p": [-1, 0]}, "non-negative"),
    ({"p": {"max": 2}}, "must include 'min' and 'max'"),
    ({"p": {"min": -1, "max": 2}}, "negative minimum"),
    ({"p": {"min": 3, "max": 2}}, "invalid range"),
    ({"p": {"min": 0, "max": 2, "step": 0}}, "invalid step"),
    ({"p": "0..3"}, "must be list or dict"),
])
def test_validate_param_space_invalid_values(param_space, error_msg):
    with pytest.raises(ValueError, match=error_msg):
        _validate_param_space(param_space)


@pytest.mark.parametrize("param_space", [
    {"p": [0, 1.5]},
    {"p": [True, 1]},
    {"p": {"min": 0.0, "max": 2}},
])
def test_validate_param_space_non_integers(param_space):
    with pytest.raises(TypeError):
        _validate_param_space(param_space)
