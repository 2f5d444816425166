"""
Posterior draws of predictions and fits in long format.

``add_predicted_samples`` adds draws from the posterior predictive
distribution of a model to a DataFrame, one row per input row and draw.
``add_fitted_samples`` does the same for draws of the expected value (or,
with ``scale="linear"``, the linear predictor).

``predicted_samples`` and ``fitted_samples`` are the same functions with the
first two arguments swapped, for pipelines that start from the model rather
than the data. The ``add_`` spellings are preferred.
"""

from __future__ import annotations

import logging
import warnings
from typing import TYPE_CHECKING, Any, Iterable, Mapping

import numpy as np
import pandas as pd

from ._config import CHAIN, ITERATION, ROW, get_row_check
from .adapters import FITTED, PREDICTED, ModelAdapter, get_adapter
from .errors import RowMismatchError
from .utils import group_by, reshape_samples, ungroup

if TYPE_CHECKING:
    import arviz as az
    from pandas.api.typing import DataFrameGroupBy

logger = logging.getLogger(__name__)

_SCALES = ("response", "linear")


def add_predicted_samples(
    newdata: pd.DataFrame | DataFrameGroupBy | None,
    model: Any,
    var: str = "pred",
    *,
    idata: az.InferenceData,
    n: int | None = None,
    re_formula: Any = None,
    random_seed: int | None = None,
    **kwargs: Any,
) -> pd.DataFrame:
    """
    Add draws from the posterior predictive distribution to a DataFrame.

    Parameters
    ----------
    newdata : pd.DataFrame, DataFrameGroupBy or None
        Data to generate predictions for. Any grouping is discarded. If None,
        the data the model was built on is used.
    model : bambi.Model or pymc.Model
        A model that can generate predictions.
    var : str, optional
        Name of the output column holding the draws. Default is "pred".
    idata : az.InferenceData
        Posterior draws of the model, as returned by fitting it.
    n : int, optional
        Number of posterior draws per row. If None, all draws are used.
    re_formula : optional
        Group-level effects to include in the prediction. None includes all
        of them; False, or a formula without group terms such as "~0",
        includes none. For Bambi models, new levels of a grouping factor in
        `newdata` need ``sample_new_groups=True`` as well.
    random_seed : int, optional
        Seed for choosing the `n` draws and for the model's sampler.
    **kwargs
        Additional arguments passed to the model's prediction method.

    Returns
    -------
    pd.DataFrame
        The columns of `newdata` plus:
        - .row: position of the input row, from 1
        - .chain: always missing; draws are numbered across chains
        - .iteration: the draw, from 1
        - category: for models whose draws have a category axis
        - var: the draw, always the last column
        The result is grouped (see :func:`posteriorsamples.grouped`) by the
        columns of `newdata` and .row.

    Raises
    ------
    UnsupportedModelError
        If the type of `model` is not supported.
    MissingDependencyError
        If the library the model comes from is not installed.
    AmbiguousArgumentError
        If `kwargs` holds the model library's own name for `n`, `re_formula`
        or another generic argument.

    Examples
    --------
    >>> import bambi as bmb
    >>> model = bmb.Model("mpg ~ hp", data=mtcars)
    >>> idata = model.fit(draws=500, chains=2)
    >>> grid = pd.DataFrame({"hp": np.linspace(50, 340, 101)})
    >>> draws = add_predicted_samples(grid, model, idata=idata, n=100)
    >>> grouped(draws)["pred"].quantile([0.05, 0.95])
    """
    return predicted_samples(
        model,
        newdata,
        var,
        idata=idata,
        n=n,
        re_formula=re_formula,
        random_seed=random_seed,
        **kwargs,
    )


def predicted_samples(
    model: Any,
    newdata: pd.DataFrame | DataFrameGroupBy | None = None,
    var: str = "pred",
    *,
    idata: az.InferenceData,
    n: int | None = None,
    re_formula: Any = None,
    random_seed: int | None = None,
    **kwargs: Any,
) -> pd.DataFrame:
    """
    Draws from the posterior predictive distribution in long format.

    Same as :func:`add_predicted_samples` with the first two arguments
    swapped.
    """
    adapter = get_adapter(model)
    adapter.require(PREDICTED)
    adapter.validate_args(kwargs, PREDICTED)

    data = _resolve_newdata(adapter, newdata)
    draws = adapter.predict_raw(
        data, idata=idata, n=n, re_formula=re_formula, random_seed=random_seed, **kwargs
    )

    category = "category" if np.ndim(draws) == 3 else None
    samples = reshape_samples(draws, var, category="category")
    return _assemble(data, samples, var, category)


def add_fitted_samples(
    newdata: pd.DataFrame | DataFrameGroupBy | None,
    model: Any,
    var: str = "estimate",
    *,
    idata: az.InferenceData,
    n: int | None = None,
    re_formula: Any = None,
    category: str = "category",
    dpar: bool | str | Iterable[str] | Mapping[str, str] = False,
    scale: str = "response",
    random_seed: int | None = None,
    **kwargs: Any,
) -> pd.DataFrame:
    """
    Add draws from the posterior of the expected value to a DataFrame.

    Parameters
    ----------
    newdata : pd.DataFrame, DataFrameGroupBy or None
        Data to compute fits for. Any grouping is discarded. If None, the
        data the model was built on is used.
    model : bambi.Model or pymc.Model
        A model that can generate predictions.
    var : str, optional
        Name of the output column holding the draws. Default is "estimate".
    idata : az.InferenceData
        Posterior draws of the model, as returned by fitting it.
    n : int, optional
        Number of posterior draws per row. If None, all draws are used.
    re_formula : optional
        Group-level effects to include; see :func:`add_predicted_samples`.
    category : str, optional
        For models that return one estimate per category (for example
        categorical or ordinal Bambi models), the name of the column holding
        the category labels. Default is "category".
    dpar : bool, str, list or dict, optional
        Distributional parameters to add as columns. False (default) adds
        none; True adds all of them, each in a column named after it; a name
        or list of names adds those; a dict maps output column names to
        parameter names, e.g. ``{"sigma_hat": "sigma"}``. For PyMC models a
        dict or names of model variables must be given.
    scale : {"response", "linear"}, optional
        "response" returns fits on the scale of the response, "linear" on the
        scale of the linear predictor. Default is "response".
    random_seed : int, optional
        Seed for choosing the `n` draws and for the model's sampler.
    **kwargs
        Additional arguments passed to the model's prediction method.

    Returns
    -------
    pd.DataFrame
        The columns of `newdata` plus .row, .chain, .iteration, the category
        column when the model returns one, any `dpar` columns, and `var` as
        the last column. Grouped by the columns of `newdata`, .row and the
        category column.

    Examples
    --------
    >>> draws = add_fitted_samples(grid, model, idata=idata, n=100)
    >>> draws = add_fitted_samples(grid, model, idata=idata, dpar={"sd": "sigma"})
    """
    return fitted_samples(
        model,
        newdata,
        var,
        idata=idata,
        n=n,
        re_formula=re_formula,
        category=category,
        dpar=dpar,
        scale=scale,
        random_seed=random_seed,
        **kwargs,
    )


def fitted_samples(
    model: Any,
    newdata: pd.DataFrame | DataFrameGroupBy | None = None,
    var: str = "estimate",
    *,
    idata: az.InferenceData,
    n: int | None = None,
    re_formula: Any = None,
    category: str = "category",
    dpar: bool | str | Iterable[str] | Mapping[str, str] = False,
    scale: str = "response",
    random_seed: int | None = None,
    **kwargs: Any,
) -> pd.DataFrame:
    """
    Draws from the posterior of the expected value in long format.

    Same as :func:`add_fitted_samples` with the first two arguments swapped.
    """
    adapter = get_adapter(model)
    adapter.require(FITTED)
    adapter.validate_args(kwargs, FITTED)

    if scale not in _SCALES:
        raise ValueError(f"Unknown scale '{scale}'. Choose from: {list(_SCALES)}")

    data = _resolve_newdata(adapter, newdata)
    dpars = _dpar_mapping(dpar, adapter)
    if var in dpars:
        raise ValueError(f"dpar output column '{var}' clashes with var")

    estimate, dpar_draws = adapter.fitted_raw(
        data,
        idata=idata,
        n=n,
        re_formula=re_formula,
        random_seed=random_seed,
        scale=scale,
        dpar=dpars,
        **kwargs,
    )

    samples = reshape_samples(estimate, var, category=category)
    for name, draws in dpar_draws.items():
        samples = samples.merge(reshape_samples(draws, name), on=[ROW, ITERATION], how="left")

    return _assemble(data, samples, var, category if np.ndim(estimate) == 3 else None)


def _resolve_newdata(
    adapter: ModelAdapter, newdata: pd.DataFrame | DataFrameGroupBy | None
) -> pd.DataFrame:
    if newdata is None:
        newdata = adapter.default_newdata()
    return ungroup(newdata)


def _dpar_mapping(
    dpar: bool | str | Iterable[str] | Mapping[str, str] | None,
    adapter: ModelAdapter,
) -> dict[str, str]:
    """Normalise `dpar` to a mapping of output column name -> parameter name."""
    if dpar is None or dpar is False:
        return {}
    if dpar is True:
        return {name: name for name in adapter.dpar_names()}
    if isinstance(dpar, str):
        return {dpar: dpar}
    if isinstance(dpar, Mapping):
        return dict(dpar)
    return {name: name for name in dpar}


def _assemble(
    newdata: pd.DataFrame,
    samples: pd.DataFrame,
    var: str,
    category: str | None,
) -> pd.DataFrame:
    """Join long-format draws onto the rows of `newdata`."""
    columns = list(newdata.columns)
    added = [ROW, CHAIN] + [column for column in samples.columns if column != ROW]
    clashes = [column for column in added if column in columns]
    if clashes:
        raise ValueError(
            f"newdata already has columns {clashes}; rename or drop them first"
        )

    data = newdata.assign(
        **{
            ROW: np.arange(1, len(newdata) + 1),
            CHAIN: pd.Series(pd.NA, index=newdata.index, dtype="Int64"),
        }
    )

    _check_rows(len(newdata), samples[ROW])

    result = data.merge(samples, on=ROW, how="inner")
    result = result[[column for column in result.columns if column != var] + [var]]

    groups = columns + [ROW]
    if category is not None:
        groups.append(category)
    return group_by(result, groups)


def _check_rows(n_rows: int, rows: pd.Series) -> None:
    """Apply the row-coverage policy to the rows the draws refer to."""
    present = rows.unique()
    missing = np.setdiff1d(np.arange(1, n_rows + 1), present)
    extra = present[(present < 1) | (present > n_rows)]
    if len(missing) == 0 and len(extra) == 0:
        return

    message = (
        f"Posterior draws do not line up with the {n_rows} rows of newdata: "
        f"{len(missing)} rows have no draws and {len(extra)} draw rows match no "
        "row of newdata."
    )

    policy = get_row_check()
    if policy == "raise":
        raise RowMismatchError(message)
    if policy == "warn":
        warnings.warn(f"{message} Unmatched rows are dropped.", UserWarning, stacklevel=4)
    else:
        logger.debug("%s Unmatched rows are dropped.", message)
