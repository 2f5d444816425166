"""
Model adapters for posterior prediction.

Each supported modeling library gets an adapter class that knows how to ask
a fitted model for raw per-draw predictions and how the library names the
arguments that posteriorsamples exposes generically. Adapters are looked up
from the model's class hierarchy by (top-level package, class name), so
finding out that a model is unsupported never imports a modeling library.

Supported models:

- ``bambi.Model``: predictions through ``Model.predict``.
- ``pymc.Model``: predictions through ``pymc.sample_posterior_predictive``
  after swapping the model's ``pm.Data`` containers for the new data.

New model types can be supported by subclassing :class:`ModelAdapter` and
decorating the subclass with :func:`register_adapter`.
"""

from __future__ import annotations

import importlib
import logging
from contextlib import contextmanager
from types import ModuleType
from typing import TYPE_CHECKING, Any, Callable, Iterable, Iterator, Mapping

import numpy as np
import pandas as pd
import xarray as xr

from ._config import ROW
from .errors import AmbiguousArgumentError, MissingDependencyError, UnsupportedModelError
from .utils import stack_draws, thin_posterior

if TYPE_CHECKING:
    import arviz as az
    import pymc as pm

logger = logging.getLogger(__name__)

PREDICTED = "[add_]predicted_samples"
FITTED = "[add_]fitted_samples"

_ADAPTERS: dict[tuple[str, str], type[ModelAdapter]] = {}


def register_adapter(
    package: str, class_name: str
) -> Callable[[type[ModelAdapter]], type[ModelAdapter]]:
    """
    Class decorator registering an adapter for models of a given class.

    Parameters
    ----------
    package : str
        Top-level package the model class is defined in (e.g. "bambi").
    class_name : str
        Name of the model class (e.g. "Model"). Subclasses match too.
    """

    def decorator(adapter_cls: type[ModelAdapter]) -> type[ModelAdapter]:
        _ADAPTERS[(package, class_name)] = adapter_cls
        return adapter_cls

    return decorator


def get_adapter(model: Any) -> ModelAdapter:
    """
    Return the adapter for `model`.

    The model's class and its bases are matched against the registry in
    method resolution order. Models with no registered adapter get an
    :class:`UnsupportedAdapter`, whose every operation raises
    :class:`~posteriorsamples.errors.UnsupportedModelError`.
    """
    for cls in type(model).__mro__:
        key = (cls.__module__.partition(".")[0], cls.__name__)
        adapter_cls = _ADAPTERS.get(key)
        if adapter_cls is not None:
            logger.debug("Using %s for %s", adapter_cls.__name__, type(model).__name__)
            return adapter_cls(model)

    return UnsupportedAdapter(model)


def stop_on_non_generic_arg(
    names: Iterable[str],
    method_type: str,
    native_param_names: Mapping[str, str],
) -> None:
    """
    Reject pass-through arguments that have a generic equivalent.

    Parameters
    ----------
    names : iterable of str
        Names of the keyword arguments the caller passed through.
    method_type : str
        Name of the calling function, used in the error message.
    native_param_names : mapping
        Generic argument name -> the modeling library's name for it.

    Raises
    ------
    AmbiguousArgumentError
        For the first passed name that is a native name.
    """
    generic_for = {native: generic for generic, native in native_param_names.items()}
    for name in names:
        if name in generic_for:
            raise AmbiguousArgumentError(name, generic_for[name], method_type)


class ModelAdapter:
    """
    Base class for model adapters.

    Attributes
    ----------
    library : str
        Import name of the library that fits and predicts from the model.
    native_param_names : dict
        Generic argument name -> the library's name for the same thing.
        Passing a native name through ``**kwargs`` is an error.
    controlled_params : tuple of str
        Native arguments set by the adapter itself. Values passed through
        ``**kwargs`` for them are dropped.
    """

    library: str = ""
    native_param_names: dict[str, str] = {}
    controlled_params: tuple[str, ...] = ()

    def __init__(self, model: Any):
        self.model = model
        self._module: ModuleType | None = None

    @property
    def model_type(self) -> str:
        return f"{self.library}.{type(self.model).__name__}"

    def require(self, method_type: str) -> ModuleType:
        """Import the adapter's library, raising MissingDependencyError if absent."""
        if self._module is None:
            try:
                self._module = importlib.import_module(self.library)
            except ImportError as exc:
                raise MissingDependencyError(self.library, self.model_type, method_type) from exc
        return self._module

    def validate_args(self, names: Iterable[str], method_type: str) -> None:
        stop_on_non_generic_arg(names, method_type, self.native_param_names)

    def default_newdata(self) -> pd.DataFrame:
        """The data the model was built on, used when no newdata is given."""
        raise NotImplementedError

    def dpar_names(self) -> list[str]:
        """Distributional parameters included by ``dpar=True``."""
        raise NotImplementedError

    def predict_raw(
        self,
        newdata: pd.DataFrame,
        *,
        idata: az.InferenceData,
        n: int | None = None,
        re_formula: Any = None,
        random_seed: int | None = None,
        **kwargs: Any,
    ) -> xr.DataArray:
        """
        Draw from the posterior predictive distribution.

        Returns
        -------
        xr.DataArray
            Draws with dims (.iteration, .row) or (.iteration, .row, category).
        """
        raise NotImplementedError

    def fitted_raw(
        self,
        newdata: pd.DataFrame,
        *,
        idata: az.InferenceData,
        n: int | None = None,
        re_formula: Any = None,
        random_seed: int | None = None,
        scale: str = "response",
        dpar: Mapping[str, str] | None = None,
        **kwargs: Any,
    ) -> tuple[xr.DataArray, dict[str, xr.DataArray]]:
        """
        Draw from the posterior of the expected value (or linear predictor).

        Returns
        -------
        tuple
            The fitted draws, shaped like :meth:`predict_raw` output, and a
            dict mapping each output name in `dpar` to (.iteration, .row)
            draws of that distributional parameter.
        """
        raise NotImplementedError

    def _drop_controlled(self, kwargs: dict[str, Any]) -> dict[str, Any]:
        kwargs = dict(kwargs)
        for name in self.controlled_params:
            if name in kwargs:
                logger.debug("Ignoring `%s`, %s sets it itself", name, type(self).__name__)
                del kwargs[name]
        return kwargs


class UnsupportedAdapter(ModelAdapter):
    """Adapter for models with no registered adapter; every operation fails."""

    def _fail(self, method_type: str):
        raise UnsupportedModelError(type(self.model), method_type)

    def require(self, method_type: str) -> ModuleType:
        self._fail(method_type)

    def validate_args(self, names: Iterable[str], method_type: str) -> None:
        self._fail(method_type)

    def default_newdata(self) -> pd.DataFrame:
        self._fail("posteriorsamples")

    def dpar_names(self) -> list[str]:
        self._fail(FITTED)

    def predict_raw(self, newdata, **kwargs):
        self._fail(PREDICTED)

    def fitted_raw(self, newdata, **kwargs):
        self._fail(FITTED)


# =============================================================================
# Bambi
# =============================================================================


@register_adapter("bambi", "Model")
class BambiAdapter(ModelAdapter):
    """
    Adapter for fitted :class:`bambi.Model` objects (Bambi 0.14 or later).

    Predictive draws come from ``model.predict(kind="response")`` and fitted
    draws from ``model.predict(kind="response_params")``. New levels of a
    grouping factor can be marginalised over by passing the native
    ``sample_new_groups=True``.
    """

    library = "bambi"
    native_param_names = {
        "n": "draws",
        "newdata": "data",
        "re_formula": "include_group_specific",
    }
    controlled_params = ("kind", "inplace")

    @property
    def _response_name(self) -> str:
        return self.model.response_component.response.name

    @property
    def _parent(self) -> str:
        return self.model.family.likelihood.parent

    def default_newdata(self) -> pd.DataFrame:
        return self.model.data

    def dpar_names(self) -> list[str]:
        return [param for param in self.model.family.likelihood.params if param != self._parent]

    def predict_raw(
        self,
        newdata: pd.DataFrame,
        *,
        idata: az.InferenceData,
        n: int | None = None,
        re_formula: Any = None,
        random_seed: int | None = None,
        **kwargs: Any,
    ) -> xr.DataArray:
        result = self._predict("response", newdata, idata, n, re_formula, random_seed, kwargs)
        return stack_draws(result.posterior_predictive[self._response_name])

    def fitted_raw(
        self,
        newdata: pd.DataFrame,
        *,
        idata: az.InferenceData,
        n: int | None = None,
        re_formula: Any = None,
        random_seed: int | None = None,
        scale: str = "response",
        dpar: Mapping[str, str] | None = None,
        **kwargs: Any,
    ) -> tuple[xr.DataArray, dict[str, xr.DataArray]]:
        result = self._predict(
            "response_params", newdata, idata, n, re_formula, random_seed, kwargs
        )

        estimate = stack_draws(self._find_param(result.posterior, self._parent))
        if scale == "linear":
            link = self.model.family.link[self._parent]
            if link.link is None:
                raise ValueError(
                    f"The '{link.name}' link of this model has no forward function, "
                    "so fitted values cannot be put on the linear scale"
                )
            estimate = estimate.copy(data=np.asarray(link.link(estimate.values)))

        n_rows = estimate.sizes[ROW]
        dpars = {
            name: stack_draws(self._find_param(result.posterior, native), n_rows=n_rows)
            for name, native in (dpar or {}).items()
        }
        return estimate, dpars

    def _predict(
        self,
        kind: str,
        newdata: pd.DataFrame,
        idata: az.InferenceData,
        n: int | None,
        re_formula: Any,
        random_seed: int | None,
        kwargs: dict[str, Any],
    ) -> az.InferenceData:
        kwargs = self._drop_controlled(kwargs)
        include_group_specific = _include_group_specific(re_formula)
        posterior = thin_posterior(idata, n, random_seed)

        return self.model.predict(
            posterior,
            kind=kind,
            data=newdata,
            inplace=False,
            include_group_specific=include_group_specific,
            random_seed=random_seed,
            **kwargs,
        )

    def _find_param(self, posterior: xr.Dataset, param: str) -> xr.DataArray:
        """Look a response parameter up under the names Bambi versions use."""
        candidates = [param, f"{self._response_name}_{param}"]
        if param == self._parent:
            candidates.append(f"{self._response_name}_mean")

        for name in candidates:
            if name in posterior:
                return posterior[name]

        raise ValueError(
            f"Could not find parameter '{param}' in the predictions; "
            f"available variables: {list(posterior.data_vars)}"
        )


def _include_group_specific(re_formula: Any) -> bool:
    """Translate `re_formula` to Bambi's all-or-nothing group effects switch."""
    if re_formula is None:
        return True
    if re_formula is False:
        return False
    if isinstance(re_formula, str) and "|" not in re_formula:
        return False
    raise ValueError(
        "Bambi models can include all group-level effects (re_formula=None) or "
        "none (re_formula=False, or a formula without group terms such as '~0'); "
        f"got {re_formula!r}"
    )


# =============================================================================
# PyMC
# =============================================================================


@register_adapter("pymc", "Model")
class PyMCAdapter(ModelAdapter):
    """
    Adapter for :class:`pymc.Model` objects.

    New data reaches the model through its ``pm.Data`` containers: every
    column of `newdata` named after a container replaces that container's
    value for the duration of the call. Containers indexed by a resized
    dimension but absent from `newdata` (typically the observed response)
    are filled with zeros, which forward sampling does not read. For
    containers declared without dims, a container whose leading length
    matches the old length of a swapped one counts as resized.

    Predictive draws are taken from the model's observed variable, fitted
    draws from the Deterministic named "mu". Either can be overridden with a
    single-name ``var_names`` pass-through.
    """

    library = "pymc"
    native_param_names = {"n": "draws", "idata": "trace"}
    controlled_params = ("predictions", "extend_inferencedata", "return_inferencedata")

    def default_newdata(self) -> pd.DataFrame:
        columns = {
            var.name: np.asarray(var.get_value())
            for var in self.model.data_vars
            if hasattr(var, "get_value") and np.ndim(var.get_value()) == 1
        }
        if len({len(values) for values in columns.values()}) != 1:
            raise ValueError(
                "Could not build a table from the model's data containers; pass newdata"
            )
        return pd.DataFrame(columns)

    def dpar_names(self) -> list[str]:
        raise ValueError(
            "PyMC models do not declare distributional parameters; pass dpar as a "
            "mapping of output column names to model variable names"
        )

    def predict_raw(
        self,
        newdata: pd.DataFrame,
        *,
        idata: az.InferenceData,
        n: int | None = None,
        re_formula: Any = None,
        random_seed: int | None = None,
        **kwargs: Any,
    ) -> xr.DataArray:
        pm = self.require(PREDICTED)
        _check_no_re_formula(re_formula)
        kwargs = self._drop_controlled(kwargs)
        name = _single_name(kwargs.pop("var_names", None), self._observed_name)

        trace = thin_posterior(idata, n, random_seed)
        predictions = self._sample(pm, newdata, trace, [name], random_seed, kwargs)
        return stack_draws(predictions[name])

    def fitted_raw(
        self,
        newdata: pd.DataFrame,
        *,
        idata: az.InferenceData,
        n: int | None = None,
        re_formula: Any = None,
        random_seed: int | None = None,
        scale: str = "response",
        dpar: Mapping[str, str] | None = None,
        **kwargs: Any,
    ) -> tuple[xr.DataArray, dict[str, xr.DataArray]]:
        pm = self.require(FITTED)
        _check_no_re_formula(re_formula)
        if scale != "response":
            raise ValueError(
                "PyMC models carry no link function; only scale='response' is supported"
            )
        kwargs = self._drop_controlled(kwargs)
        name = _single_name(kwargs.pop("var_names", None), self._fitted_name)

        dpar = dict(dpar or {})
        unknown = [native for native in dpar.values() if native not in self.model.named_vars]
        if unknown:
            raise ValueError(f"Variables {unknown} are not part of the model")

        # Free variables do not depend on the data; read them off the posterior.
        free = {rv.name for rv in self.model.free_RVs}
        var_names = list(dict.fromkeys([name] + [v for v in dpar.values() if v not in free]))

        trace = thin_posterior(idata, n, random_seed)
        predictions = self._sample(pm, newdata, trace, var_names, random_seed, kwargs)

        estimate = stack_draws(predictions[name])
        n_rows = estimate.sizes[ROW]
        dpars = {
            out: stack_draws(
                (trace.posterior if native in free else predictions)[native], n_rows=n_rows
            )
            for out, native in dpar.items()
        }
        return estimate, dpars

    def _sample(
        self,
        pm: ModuleType,
        newdata: pd.DataFrame,
        trace: az.InferenceData,
        var_names: list[str],
        random_seed: int | None,
        kwargs: dict[str, Any],
    ) -> xr.Dataset:
        with _swapped_data(pm, self.model, newdata):
            result = pm.sample_posterior_predictive(
                trace,
                model=self.model,
                var_names=var_names,
                predictions=True,
                random_seed=random_seed,
                **kwargs,
            )
        return result.predictions

    def _observed_name(self) -> str:
        names = [rv.name for rv in self.model.observed_RVs]
        if len(names) != 1:
            raise ValueError(
                f"Model has observed variables {names}; pass var_names=['<name>'] "
                "to choose the one to predict"
            )
        return names[0]

    def _fitted_name(self) -> str:
        deterministics = [var.name for var in self.model.deterministics]
        if "mu" not in deterministics:
            raise ValueError(
                f"Model has no Deterministic named 'mu' (found {deterministics}); "
                "pass var_names=['<name>'] to choose the expected-value variable"
            )
        return "mu"


def _check_no_re_formula(re_formula: Any) -> None:
    if re_formula is not None:
        raise ValueError("PyMC models have no group-level effects formula; re_formula must be None")


def _single_name(var_names: Any, default: Callable[[], str]) -> str:
    if var_names is None:
        return default()
    if isinstance(var_names, str):
        return var_names
    var_names = list(var_names)
    if len(var_names) != 1:
        raise ValueError(f"var_names must name exactly one variable, got {var_names}")
    return var_names[0]


def _leading_dim(model: pm.Model, name: str) -> str | None:
    dims = model.named_vars_to_dims.get(name)
    return dims[0] if dims else None


@contextmanager
def _swapped_data(pm: ModuleType, model: pm.Model, newdata: pd.DataFrame) -> Iterator[None]:
    """Set the model's data containers from `newdata`, restoring them on exit."""
    containers = {var.name: var for var in model.data_vars if hasattr(var, "get_value")}
    swapped = [name for name in containers if name in newdata.columns]
    if not swapped:
        raise ValueError(
            f"None of the newdata columns {list(newdata.columns)} name a data "
            f"container of the model; containers are {sorted(containers)}"
        )

    old_values = {name: containers[name].get_value() for name in containers}
    n_rows = len(newdata)

    new_values: dict[str, np.ndarray] = {}
    new_coords: dict[str, np.ndarray] = {}
    old_coords: dict[str, Any] = {}
    resized: set[str] = set()
    # Old leading lengths of swapped containers declared without dims.
    resized_lengths: set[int] = set()
    for name in swapped:
        new_values[name] = np.asarray(newdata[name].to_numpy(), dtype=old_values[name].dtype)
        dim = _leading_dim(model, name)
        if dim is None:
            if np.ndim(old_values[name]) > 0:
                resized_lengths.add(old_values[name].shape[0])
        elif dim not in resized:
            resized.add(dim)
            if model.coords.get(dim) is not None:
                new_coords[dim] = np.arange(n_rows)
                old_coords[dim] = model.coords[dim]

    # Containers on a resized dimension (or, without dims, of a resized
    # length) that newdata does not supply.
    for name, old in old_values.items():
        if name in new_values or np.ndim(old) == 0 or old.shape[0] == n_rows:
            continue
        dim = _leading_dim(model, name)
        if dim in resized or (dim is None and old.shape[0] in resized_lengths):
            new_values[name] = np.zeros((n_rows, *old.shape[1:]), dtype=old.dtype)

    restore = {name: old_values[name] for name in new_values}

    logger.debug("Swapping data containers %s", sorted(new_values))
    pm.set_data(new_values, model=model, coords=new_coords or None)
    try:
        yield
    finally:
        pm.set_data(restore, model=model, coords=old_coords or None)
