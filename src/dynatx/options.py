from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from .errors import InvalidOptionsError


def check_unexpected_options(options: Mapping[str, Any], defaults: Mapping[str, Any]) -> None:
    for name, value in options.items():
        if name not in defaults:
            raise InvalidOptionsError(
                name, f"Unexpected option. Valid options are {', '.join(sorted(defaults))}"
            )
        default = defaults[name]
        if value is None or default is None:
            continue
        if isinstance(default, bool) != isinstance(value, bool):
            raise InvalidOptionsError(name, f"Expected {type(default).__name__}")
        if isinstance(default, (int, float)) and not isinstance(default, bool):
            # ints are accepted where the default is a float
            if not isinstance(value, (int, float)) or (isinstance(default, int) and isinstance(value, float)):
                raise InvalidOptionsError(name, f"Expected {type(default).__name__}")
            continue
        if not isinstance(value, type(default)):
            raise InvalidOptionsError(name, f"Expected {type(default).__name__}")


def load_options(options: Mapping[str, Any] | None, defaults: Mapping[str, Any]) -> dict[str, Any]:
    options = options or {}
    check_unexpected_options(options, defaults)
    out = dict(defaults)
    out.update(options)
    return out
