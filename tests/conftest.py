"""Pytest configuration and shared fixtures."""

import numpy as np
import pandas as pd
import pytest

from posteriorsamples import ModelAdapter, register_adapter, set_row_check
from posteriorsamples._config import ENV_ROW_CHECK


def pytest_addoption(parser):
    """Add custom command line options."""
    parser.addoption(
        "--run-slow",
        action="store_true",
        default=False,
        help="Run slow tests (MCMC fitting)",
    )


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "slow: mark test as slow (MCMC fitting)")


def pytest_collection_modifyitems(config, items):
    """Skip slow tests unless --run-slow is provided."""
    if config.getoption("--run-slow"):
        return

    skip_slow = pytest.mark.skip(reason="need --run-slow option to run")
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip_slow)


class StubModel:
    """A 'fitted model' whose draws are fixed in advance."""

    __module__ = "stubmodels.core"

    def __init__(self, draws, data=None, dpars=None):
        self.draws = draws
        self.data = data
        self.dpars = dpars or {}
        self.calls = []


@register_adapter("stubmodels", "StubModel")
class StubAdapter(ModelAdapter):
    """Adapter returning a StubModel's draws and recording each call."""

    library = "stubmodels"
    native_param_names = {"n": "draws", "re_formula": "re.form"}

    def require(self, method_type):
        return None

    def default_newdata(self):
        return self.model.data

    def dpar_names(self):
        return list(self.model.dpars)

    def predict_raw(self, newdata, *, idata, n=None, re_formula=None, random_seed=None, **kwargs):
        self.model.calls.append(("predict", newdata, kwargs))
        return self.model.draws

    def fitted_raw(
        self,
        newdata,
        *,
        idata,
        n=None,
        re_formula=None,
        random_seed=None,
        scale="response",
        dpar=None,
        **kwargs,
    ):
        self.model.calls.append(("fitted", newdata, kwargs))
        dpars = {out: self.model.dpars[native] for out, native in (dpar or {}).items()}
        return self.model.draws, dpars


@pytest.fixture(autouse=True)
def default_row_check(monkeypatch):
    """Run every test with the default row-coverage policy."""
    monkeypatch.delenv(ENV_ROW_CHECK, raising=False)
    set_row_check("auto")
    yield
    set_row_check("auto")


@pytest.fixture
def newdata():
    """A four-row covariate table."""
    return pd.DataFrame({
        "x": [1.0, 2.0, 3.0, 4.0],
        "group": ["a", "a", "b", "b"],
    })


@pytest.fixture
def stub_draws():
    """Two iterations of draws for four rows."""
    return np.array([
        [10.0, 20.0, 30.0, 40.0],
        [11.0, 21.0, 31.0, 41.0],
    ])


@pytest.fixture
def stub_model(stub_draws, newdata):
    """A StubModel predicting `stub_draws` for `newdata`."""
    return StubModel(stub_draws, data=newdata)
