"""
Utility functions for reshaping posterior draws.

This module provides helpers for turning the draws returned by a model's
prediction method into long-format DataFrames, for subsampling a posterior,
and for recording grouping on pandas DataFrames.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

import arviz as az
import numpy as np
import pandas as pd
import xarray as xr
from pandas.api.typing import DataFrameGroupBy

from ._config import ITERATION, ROW

logger = logging.getLogger(__name__)

GROUPS_ATTR = "groups"

SAMPLE_DIMS = ("chain", "draw")


def reshape_samples(
    draws: xr.DataArray | np.ndarray | Sequence,
    var: str,
    category: str = "category",
) -> pd.DataFrame:
    """
    Flatten a draws array into a long-format DataFrame.

    Each cell of the array becomes one row labelled with its iteration,
    its row and, for 3-D arrays, its category.

    Parameters
    ----------
    draws : xr.DataArray or array-like
        Draws with shape (iterations, rows) or (iterations, rows, categories).
    var : str
        Name of the value column.
    category : str, optional
        Name of the category column, used only for 3-D input.
        Default is "category".

    Returns
    -------
    pd.DataFrame
        A DataFrame with columns:
        - .row: 1-based position along the rows axis (int64)
        - .iteration: 1-based position along the iterations axis (int64)
        - category (3-D input only): category label (categorical)
        - var: the draw

    Examples
    --------
    >>> import numpy as np
    >>> from posteriorsamples.utils import reshape_samples
    >>> reshape_samples(np.arange(6.0).reshape(2, 3), var="pred")
       .row  .iteration  pred
    0     1           1   0.0
    1     2           1   1.0
    2     3           1   2.0
    3     1           2   3.0
    4     2           2   4.0
    5     3           2   5.0
    """
    array = draws if isinstance(draws, xr.DataArray) else xr.DataArray(np.asarray(draws))

    if array.ndim not in (2, 3):
        raise ValueError(
            "Draws must be a 2-D (iterations x rows) or 3-D "
            f"(iterations x rows x categories) array, got {array.ndim} dimensions"
        )

    reserved = {ROW, ITERATION}
    if var in reserved or (array.ndim == 3 and (category in reserved or category == var)):
        raise ValueError(
            f"Column names '{var}' and '{category}' must differ from each other "
            f"and from {sorted(reserved)}"
        )

    n_iterations, n_rows = array.shape[:2]
    dims = [ITERATION, ROW]
    coords: dict[str, Any] = {
        ITERATION: np.arange(1, n_iterations + 1),
        ROW: np.arange(1, n_rows + 1),
    }

    labels = None
    if array.ndim == 3:
        labels = _category_labels(array)
        dims.append(category)
        coords[category] = labels

    flat = (
        xr.DataArray(array.values, dims=dims, coords=coords)
        .to_dataframe(name=var)
        .reset_index()
    )

    # Labels are positional, whatever the input coords were.
    flat[ROW] = flat[ROW].astype("int64")
    flat[ITERATION] = flat[ITERATION].astype("int64")

    columns = [ROW, ITERATION]
    if labels is not None:
        flat[category] = pd.Categorical(flat[category], categories=labels)
        columns.append(category)
    columns.append(var)

    return flat[columns]


def _category_labels(array: xr.DataArray) -> np.ndarray:
    """Labels for the category axis: its coordinates if usable, else 1..C."""
    dim = array.dims[2]
    if dim in array.coords:
        labels = np.asarray(array.coords[dim].values)
        if pd.Index(labels).is_unique:
            return labels
    return np.arange(1, array.shape[2] + 1)


def stack_draws(array: xr.DataArray, n_rows: int | None = None) -> xr.DataArray:
    """
    Collapse the chain and draw dimensions of a posterior array.

    Parameters
    ----------
    array : xr.DataArray
        Array with dims (chain, draw, obs) or (chain, draw, obs, category).
        The first non-sample dimension is taken as the observation axis.
        An array with only (chain, draw) is broadcast across `n_rows` rows.
    n_rows : int, optional
        Number of rows to broadcast a per-draw scalar to.

    Returns
    -------
    xr.DataArray
        Array with dims (.iteration, .row) or (.iteration, .row, category),
        iterations ordered chain-major. Category coordinates are kept.
    """
    missing = [dim for dim in SAMPLE_DIMS if dim not in array.dims]
    if missing:
        raise ValueError(f"Posterior array is missing dimensions {missing}")

    other = [dim for dim in array.dims if dim not in SAMPLE_DIMS]
    if not other:
        if n_rows is None:
            raise ValueError(
                f"'{array.name}' has no observation dimension and no row count "
                "was given to broadcast it to"
            )
        array = array.expand_dims({ROW: n_rows})
        other = [ROW]

    if len(other) > 2:
        raise ValueError(
            f"'{array.name}' has dimensions {other} besides chain and draw; "
            "at most an observation and a category dimension are supported"
        )

    array = array.transpose(*SAMPLE_DIMS, *other)
    values = array.values.reshape(-1, *array.shape[2:])

    dims = [ITERATION, ROW]
    coords = {}
    if len(other) == 2:
        category_dim = other[1]
        dims.append(category_dim)
        if category_dim in array.coords:
            coords[category_dim] = array.coords[category_dim].values

    return xr.DataArray(values, dims=dims, coords=coords, name=array.name)


def thin_posterior(
    idata: az.InferenceData,
    n: int | None,
    random_seed: int | None = None,
) -> az.InferenceData:
    """
    Subsample posterior draws.

    Parameters
    ----------
    idata : az.InferenceData
        InferenceData with a posterior group.
    n : int or None
        Number of draws to keep. If None, `idata` is returned unchanged.
    random_seed : int, optional
        Seed for choosing the draws.

    Returns
    -------
    az.InferenceData
        A new InferenceData whose posterior holds `n` draws, chosen without
        replacement and kept in their original order, as a single chain.
        Groups without a chain dimension are carried over; groups indexed by
        chain and draw are dropped since they no longer line up.
    """
    if n is None:
        return idata

    posterior = idata.posterior
    n_chains = posterior.sizes["chain"]
    n_draws = posterior.sizes["draw"]
    total = n_chains * n_draws

    if not 1 <= n <= total:
        raise ValueError(
            f"n must be between 1 and the number of posterior draws ({total}), got {n}"
        )

    rng = np.random.default_rng(random_seed)
    keep = np.sort(rng.choice(total, size=n, replace=False))
    chain_idx, draw_idx = np.divmod(keep, n_draws)

    thinned = (
        posterior.isel(
            chain=xr.DataArray(chain_idx, dims="__draw__"),
            draw=xr.DataArray(draw_idx, dims="__draw__"),
        )
        .drop_vars(["chain", "draw"], errors="ignore")
        .rename_dims({"__draw__": "draw"})
        .assign_coords(draw=np.arange(n))
        .expand_dims(chain=[0])
        .transpose(*SAMPLE_DIMS, ...)
    )

    logger.debug("Thinned posterior from %d to %d draws", total, n)

    groups = {
        group: getattr(idata, group)
        for group in idata.groups()
        if group != "posterior" and "chain" not in getattr(idata, group).dims
    }
    return az.InferenceData(posterior=thinned, **groups)


def ungroup(data: pd.DataFrame | DataFrameGroupBy) -> pd.DataFrame:
    """
    Return a copy of `data` with no recorded grouping.

    Parameters
    ----------
    data : pd.DataFrame or DataFrameGroupBy
        A DataFrame, possibly carrying grouping in ``attrs``, or a pandas
        groupby object, whose underlying DataFrame is used.

    Returns
    -------
    pd.DataFrame
    """
    if isinstance(data, DataFrameGroupBy):
        data = data.obj
    if not isinstance(data, pd.DataFrame):
        raise TypeError(
            f"Expected a pandas DataFrame or DataFrameGroupBy, got {type(data).__name__}"
        )

    data = data.copy()
    data.attrs.pop(GROUPS_ATTR, None)
    return data


def group_by(data: pd.DataFrame, columns: Sequence[str]) -> pd.DataFrame:
    """Record `columns` as the grouping of `data` (in place) and return it."""
    data.attrs[GROUPS_ATTR] = list(columns)
    return data


def group_columns(data: pd.DataFrame) -> list[str]:
    """Return the recorded grouping columns still present in `data` (empty if none)."""
    return [column for column in data.attrs.get(GROUPS_ATTR, []) if column in data.columns]


def grouped(data: pd.DataFrame) -> DataFrameGroupBy:
    """
    Group `data` by its recorded grouping.

    Examples
    --------
    >>> draws = add_predicted_samples(newdata, model, idata=idata)
    >>> grouped(draws)["pred"].quantile([0.05, 0.95])
    """
    columns = group_columns(data)
    if not columns:
        raise ValueError("DataFrame has no recorded grouping")
    return data.groupby(columns, sort=False, observed=True, dropna=False)
