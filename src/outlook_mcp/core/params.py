"""Encode named script parameters into interpreter argument tokens.

Each present parameter contributes two consecutive tokens: ``-<Name>`` and
the value's text. ``None`` and ``""`` are omitted entirely so the script can
tell "not supplied" apart from "empty".

List values are never expanded here. Callers join them first (see
:func:`join_list`) so the script receives a single delimited string.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import Any

# Delimiter the script splits multi-valued parameters (e.g. Attendees) on.
LIST_DELIMITER = ";"

_PARAM_NAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9]*$")


def join_list(values: Iterable[str] | None) -> str | None:
    """Join *values* with :data:`LIST_DELIMITER`.

    Returns ``None`` for a missing or empty iterable so the parameter is
    dropped by :func:`encode_parameters`.
    """
    if values is None:
        return None
    items = [str(v).strip() for v in values if v is not None and str(v).strip()]
    if not items:
        return None
    return LIST_DELIMITER.join(items)


def _render_value(name: str, value: Any) -> str:
    # bool is checked first: it is an int subclass and str(True) == "True".
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple, set, frozenset, Mapping)):
        raise TypeError(
            f"Parameter {name!r} has a {type(value).__name__} value; "
            f"join list values with {LIST_DELIMITER!r} before encoding"
        )
    return str(value)


def encode_parameters(parameters: Mapping[str, Any] | None) -> list[str]:
    """Return the flat ``-Name value`` token sequence for *parameters*.

    Tokens follow the mapping's iteration order.

    Raises
    ------
    ValueError
        If a parameter name is not a plain alphanumeric identifier.
    TypeError
        If a value is a collection rather than a scalar.
    """
    if not parameters:
        return []

    tokens: list[str] = []
    for name, value in parameters.items():
        if not isinstance(name, str) or not _PARAM_NAME_RE.fullmatch(name):
            raise ValueError(f"Invalid script parameter name: {name!r}")
        if value is None or (isinstance(value, str) and value == ""):
            continue
        tokens.append(f"-{name}")
        tokens.append(_render_value(name, value))
    return tokens
