"""
Posterior Samples - Tidy Posterior Predictions for Bayesian Models.

This package turns posterior predictions of fitted Bayesian regression
models into long-format pandas DataFrames, one row per input row and
posterior draw, joined back onto the data the predictions were made for.
Predictions themselves are computed by Bambi or PyMC.

The main functions are `add_predicted_samples`, for draws from the
posterior predictive distribution, and `add_fitted_samples`, for draws of
the expected value or linear predictor.

Example
-------
>>> import bambi as bmb
>>> import pandas as pd
>>> from posteriorsamples import add_fitted_samples, grouped
>>>
>>> # Fit a model
>>> model = bmb.Model("mpg ~ hp", data=mtcars)
>>> idata = model.fit(draws=500, chains=2)
>>>
>>> # 100 fit lines over a grid of horsepower values
>>> grid = pd.DataFrame({"hp": range(50, 341, 10)})
>>> fits = add_fitted_samples(grid, model, idata=idata, n=100)
>>>
>>> # Summaries per grid row
>>> grouped(fits)["estimate"].mean()
"""

from importlib.metadata import PackageNotFoundError, version

# Version
try:
    __version__ = version("posteriorsamples")
except PackageNotFoundError:
    __version__ = "0.1.0"

# Main functions
from .samples import (
    add_fitted_samples,
    add_predicted_samples,
    fitted_samples,
    predicted_samples,
)

# Model adapters
from .adapters import (
    BambiAdapter,
    ModelAdapter,
    PyMCAdapter,
    get_adapter,
    register_adapter,
    stop_on_non_generic_arg,
)

# Configuration
from ._config import get_row_check, set_row_check

# Errors
from .errors import (
    AmbiguousArgumentError,
    MissingDependencyError,
    RowMismatchError,
    UnsupportedModelError,
)

# Utility functions
from .utils import (
    group_by,
    group_columns,
    grouped,
    reshape_samples,
    stack_draws,
    thin_posterior,
    ungroup,
)

__all__ = [
    # Version
    "__version__",
    # Main functions
    "add_predicted_samples",
    "predicted_samples",
    "add_fitted_samples",
    "fitted_samples",
    # Model adapters
    "ModelAdapter",
    "BambiAdapter",
    "PyMCAdapter",
    "get_adapter",
    "register_adapter",
    "stop_on_non_generic_arg",
    # Configuration
    "get_row_check",
    "set_row_check",
    # Errors
    "UnsupportedModelError",
    "MissingDependencyError",
    "AmbiguousArgumentError",
    "RowMismatchError",
    # Utility functions
    "reshape_samples",
    "stack_draws",
    "thin_posterior",
    "grouped",
    "group_by",
    "group_columns",
    "ungroup",
]
