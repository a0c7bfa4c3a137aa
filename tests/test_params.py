from __future__ import annotations

import pytest

from lmgraph.optimization.params import (
    ConfigurationError,
    Elimination,
    Factorization,
    LMParams,
    LMVerbosity,
    Verbosity,
)


def test_defaults():
    params = LMParams()

    assert params.factorization is Factorization.LDL
    assert params.elimination is Elimination.MULTIFRONTAL
    assert params.lambda_initial == 1e-5
    assert params.lambda_factor == 10.0
    assert params.lambda_upper_bound == 1e5
    assert params.verbosity is Verbosity.SILENT
    assert params.lm_verbosity is LMVerbosity.SILENT


def test_strings_are_coerced_case_insensitively():
    params = LMParams(
        factorization="qr",
        elimination="Sequential",
        verbosity="error",
        lm_verbosity="TRYLAMBDA",
    )

    assert params.factorization is Factorization.QR
    assert params.elimination is Elimination.SEQUENTIAL
    assert params.verbosity is Verbosity.ERROR
    assert params.lm_verbosity is LMVerbosity.TRYLAMBDA


def test_verbosity_accepts_int_levels():
    assert LMParams(lm_verbosity=5).lm_verbosity is LMVerbosity.DAMPED


@pytest.mark.parametrize(
    "options",
    [
        {"factorization": "SVD"},
        {"factorization": 0},
        {"elimination": "parallel"},
        {"verbosity": "LOUD"},
        {"lambda_initial": 0.0},
        {"lambda_factor": 1.0},
        {"lambda_upper_bound": -1.0},
        {"max_iterations": -1},
        {"relative_error_tol": -1e-3},
    ],
)
def test_invalid_options_are_fatal(options):
    with pytest.raises(ConfigurationError):
        LMParams(**options)


def test_configuration_error_is_a_value_error():
    with pytest.raises(ValueError, match="factorization"):
        LMParams(factorization="cholesky")


def test_from_dict():
    params = LMParams.from_dict({"lambda_initial": 1e-3, "elimination": "sequential"})
    assert params.lambda_initial == 1e-3
    assert params.elimination is Elimination.SEQUENTIAL

    with pytest.raises(ConfigurationError, match="lambdaInitial"):
        LMParams.from_dict({"lambdaInitial": 1e-3})


def test_params_are_frozen():
    params = LMParams()
    with pytest.raises(Exception):
        params.lambda_initial = 1.0
