"""
Exceptions raised by posteriorsamples.

Each error subclasses the built-in exception it specialises, so callers can
catch either the specific class or the built-in one.
"""

from __future__ import annotations


class UnsupportedModelError(TypeError):
    """Raised when no adapter is registered for a model's type."""

    def __init__(self, model_type: type, method_type: str):
        self.model_type = model_type
        self.method_type = method_type
        super().__init__(
            f"Models of type '{model_type.__module__}.{model_type.__qualname__}' "
            f"are not currently supported by `{method_type}`"
        )


class MissingDependencyError(ImportError):
    """Raised when the library needed to predict from a model is not installed."""

    def __init__(self, library: str, model_type: str, method_type: str):
        self.library = library
        super().__init__(
            f"The `{library}` package is needed for `{method_type}` to support "
            f"`{model_type}` objects.",
            name=library,
        )


class AmbiguousArgumentError(TypeError):
    """Raised when a native argument name is passed where a generic one exists."""

    def __init__(self, native: str, generic: str, method_type: str):
        self.native = native
        self.generic = generic
        super().__init__(
            f"`{native}` is not supported in `{method_type}`. "
            f"Please use the generic argument `{generic}`. "
            "See the documentation for additional details."
        )


class RowMismatchError(ValueError):
    """Raised when some input rows have no posterior draws."""
