"""
Variable Selectors

Symbolic references to table variables, resolved against the table's
variable list (and its per-variable summary types) at call time:

    everything()                    every variable
    all_continuous()                continuous variables
    all_categorical()               categorical (and dichotomous) variables
    all_dichotomous()               dichotomous variables
    vars("age", "marker")           named variables
    "age" / ["age", "marker"]       named variables
    ~all_continuous()               every variable the selector does not match

Overrides such as ``test=`` are written as an ordered list of
``(selector, value)`` pairs (or a dict). Later pairs win.
"""

from __future__ import annotations

from typing import Any, Callable, Iterable, Mapping

import pandas as pd

from addp.exceptions import ConfigurationError


class Selector:
    """A predicate over (variable, summary_type) pairs."""

    def __init__(self, predicate: Callable[[str, str | None], bool], description: str, names: tuple = ()):
        self._predicate = predicate
        self.description = description
        self.names = names  # explicitly named columns, validated on resolve

    def matches(self, variable: str, summary_type: str | None) -> bool:
        return self._predicate(variable, summary_type)

    def __invert__(self) -> "Selector":
        return Selector(lambda v, t: not self.matches(v, t), f"~{self.description}", self.names)

    def __or__(self, other: "Selector") -> "Selector":
        other = as_selector(other)
        return Selector(
            lambda v, t: self.matches(v, t) or other.matches(v, t),
            f"{self.description} | {other.description}",
            self.names + other.names,
        )

    def __repr__(self) -> str:
        return self.description


def everything() -> Selector:
    return Selector(lambda v, t: True, "everything()")


def all_continuous() -> Selector:
    return Selector(lambda v, t: t == "continuous", "all_continuous()")


def all_categorical(dichotomous: bool = True) -> Selector:
    types = ("categorical", "dichotomous") if dichotomous else ("categorical",)
    return Selector(lambda v, t: t in types, f"all_categorical(dichotomous={dichotomous})")


def all_dichotomous() -> Selector:
    return Selector(lambda v, t: t == "dichotomous", "all_dichotomous()")


def vars(*names: str) -> Selector:
    """Select variables by name."""
    flat = tuple(_flatten_names(names))
    return Selector(lambda v, t: v in flat, f"vars({', '.join(map(repr, flat))})", flat)


def _flatten_names(names: Iterable[Any]) -> Iterable[str]:
    for name in names:
        if isinstance(name, str):
            yield name
        elif isinstance(name, (list, tuple)):
            yield from _flatten_names(name)
        else:
            raise ConfigurationError(f"expected column names, got {type(name).__name__}")


def as_selector(selector: Any, arg_name: str = "include") -> Selector:
    """Coerce a column name, list of names/selectors or Selector into a Selector."""
    if isinstance(selector, Selector):
        return selector
    if isinstance(selector, str):
        if not selector:
            raise ConfigurationError("empty column name", argument=arg_name)
        return vars(selector)
    if isinstance(selector, (list, tuple)):
        if len(selector) == 0:
            raise ConfigurationError("empty selector", argument=arg_name)
        parts = [as_selector(s, arg_name) for s in selector]
        combined = parts[0]
        for part in parts[1:]:
            combined = combined | part
        return combined
    raise ConfigurationError(
        f"cannot interpret {type(selector).__name__} as a variable selector", argument=arg_name
    )


def _summary_types(variables: list[str], meta_data: pd.DataFrame | Mapping | None) -> dict:
    if meta_data is None:
        return {}
    if isinstance(meta_data, pd.DataFrame):
        return dict(zip(meta_data["variable"], meta_data["summary_type"]))
    return dict(meta_data)


def resolve(
    selector: Any,
    variables: list[str],
    meta_data: pd.DataFrame | Mapping | None = None,
    arg_name: str = "include",
) -> list[str]:
    """
    Resolve `selector` to the matching variables, in table order.

    Parameters:
        selector: None (selects nothing), a column name, a list of names/selectors or a Selector.
        variables (list[str]): The table's variables.
        meta_data: Table meta data (or a variable -> summary type mapping) for type predicates.
        arg_name (str): Argument name reported in errors.

    Raises:
        ConfigurationError: If a named column is not one of `variables`, or the selector is malformed.
    """
    if selector is None:
        return []
    selector = as_selector(selector, arg_name)
    unknown = [name for name in selector.names if name not in variables]
    if unknown:
        raise ConfigurationError(
            f"Can't subset columns that don't exist: {', '.join(map(repr, unknown))}",
            argument=arg_name,
        )
    types = _summary_types(variables, meta_data)
    return [v for v in variables if selector.matches(v, types.get(v))]


def _override_pairs(overrides: Any, arg_name: str) -> list[tuple[Any, Any]]:
    if isinstance(overrides, Mapping):
        return list(overrides.items())
    if not isinstance(overrides, (list, tuple)):
        return [(everything(), overrides)]
    pairs = []
    for item in overrides:
        if not isinstance(item, tuple) or len(item) != 2:
            raise ConfigurationError(
                "expected a list of (selector, value) pairs, e.g. [(all_continuous(), 't.test')]",
                argument=arg_name,
            )
        pairs.append(item)
    return pairs


def resolve_overrides(
    overrides: Any,
    variables: list[str],
    meta_data: pd.DataFrame | Mapping | None = None,
    arg_name: str = "test",
) -> dict[str, Any]:
    """
    Resolve per-variable overrides to ``{variable: value}``.

    `overrides` may be None, a single bare value (applied to every variable), a mapping ``{selector: value}`` or an ordered list of ``(selector, value)`` pairs. When several selectors match the same variable the last one wins.
    """
    if overrides is None:
        return {}
    result: dict[str, Any] = {}
    for selector, value in _override_pairs(overrides, arg_name):
        for variable in resolve(selector, variables, meta_data, arg_name):
            result[variable] = value
    return result
