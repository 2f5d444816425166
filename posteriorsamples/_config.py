"""
Configuration for the posteriorsamples package.

Controls what happens when the draws returned by a model do not cover every
row of the data they were requested for.  Before joining, each input row is
checked for at least one draw; the policy decides what a miss means:

``"raise"``
    Raise :class:`~posteriorsamples.errors.RowMismatchError` (default).
``"warn"``
    Emit a ``UserWarning`` and drop the uncovered rows.
``"ignore"``
    Drop the uncovered rows silently.

Resolution order (first match wins):

1. Programmatic override via :func:`set_row_check`.
2. The ``POSTERIORSAMPLES_ROW_CHECK`` environment variable.
3. ``"raise"``.

Examples
--------
Restore the silent inner join from the shell::

    export POSTERIORSAMPLES_ROW_CHECK=ignore

Or programmatically:

>>> import posteriorsamples
>>> posteriorsamples.set_row_check("warn")

Re-enable the default resolution:

>>> posteriorsamples.set_row_check("auto")
"""

from __future__ import annotations

import os

# Output column names shared by the reshaper and the assembler.
ROW = ".row"
CHAIN = ".chain"
ITERATION = ".iteration"

ENV_ROW_CHECK = "POSTERIORSAMPLES_ROW_CHECK"

_ROW_CHECKS = {"raise", "warn", "ignore"}
_VALID_ROW_CHECKS = _ROW_CHECKS | {"auto"}

_DEFAULT_ROW_CHECK = "raise"

# Sentinel indicating "no programmatic override has been set".
_row_check_override: str | None = None


def get_row_check() -> str:
    """
    Return the active row-coverage policy.

    Returns
    -------
    str
        One of "raise", "warn" or "ignore".
    """
    if _row_check_override is not None and _row_check_override != "auto":
        return _row_check_override

    env = os.environ.get(ENV_ROW_CHECK, "").strip().lower()
    if env in _ROW_CHECKS:
        return env

    return _DEFAULT_ROW_CHECK


def set_row_check(name: str) -> None:
    """
    Override the row-coverage policy.

    Parameters
    ----------
    name : str
        One of "raise", "warn", "ignore" or "auto" (case-insensitive).
        "auto" restores the default resolution order.

    Raises
    ------
    ValueError
        If `name` is not a recognised policy.
    """
    global _row_check_override
    normalised = name.strip().lower()
    if normalised not in _VALID_ROW_CHECKS:
        raise ValueError(
            f"Unknown row check '{name}'. Choose from: {sorted(_VALID_ROW_CHECKS)}"
        )
    _row_check_override = normalised
