"""Covariate formula terms: ``"x1 + lag(x2, 1:3)"``."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Sequence, Union

from ._errors import ConfigurationError

_LAG_RE = re.compile(
    r"^(?:I\()?\s*lag\(\s*([A-Za-z_.][\w.]*)\s*,\s*(c\([^()]*\)|[^()]+?)\s*\)\s*\)?$"
)
_NAME_RE = re.compile(r"^[A-Za-z_.][\w.]*$")


@dataclass(frozen=True)
class CovariateTerm:
    """One covariate variable, measured at one or more lag offsets.

    ``lags=(0,)`` means the value at the reference period itself;
    ``lags=(1, 2)`` expands into two columns, the values one and two
    periods earlier.
    """

    name: str
    lags: tuple[int, ...] = (0,)

    def __post_init__(self) -> None:
        if not self.name:
            raise ConfigurationError("Covariate term needs a variable name")
        lags = tuple(sorted({int(k) for k in self.lags}))
        if not lags:
            raise ConfigurationError(f"Covariate '{self.name}' has no lag offsets")
        if any(k < 0 for k in lags):
            raise ConfigurationError(
                f"Covariate '{self.name}' has negative lag offsets: {lags}"
            )
        object.__setattr__(self, "lags", lags)

    @property
    def labels(self) -> list[str]:
        """Column labels, e.g. ``["x2_l1", "x2_l2"]`` (``"x2"`` for lag 0)."""
        return [self.name if k == 0 else f"{self.name}_l{k}" for k in self.lags]


CovariateSpec = Union[str, Sequence[Union[str, CovariateTerm, tuple]], None]


def _parse_lags(text: str) -> tuple[int, ...]:
    text = text.strip()
    if text.startswith("c("):
        return tuple(int(p) for p in text[2:].rstrip(")").split(","))
    if ":" in text:
        lo, hi = (int(p) for p in text.split(":", 1))
        step = 1 if hi >= lo else -1
        return tuple(range(lo, hi + step, step))
    return (int(text),)


def parse_covariate_formula(formula: str) -> tuple[CovariateTerm, ...]:
    """Parse a right-hand-side formula into covariate terms.

    Parameters
    ----------
    formula : str
        Terms joined by ``+``. A leading ``~`` is ignored. Each term is a
        variable name or ``lag(name, a:b)`` / ``lag(name, k)`` /
        ``lag(name, c(1, 3))``, optionally wrapped in ``I(...)``.

    Returns
    -------
    tuple[CovariateTerm, ...]
        Terms in formula order; repeated variables have their lags merged.

    Example
    -------
    >>> parse_covariate_formula("~ pop + I(lag(gdp, 1:2))")
    (CovariateTerm(name='pop', lags=(0,)), CovariateTerm(name='gdp', lags=(1, 2)))
    """
    body = formula.strip()
    if body.startswith("~"):
        body = body[1:]

    # Split on '+' that is not inside parentheses
    parts: list[str] = []
    depth = 0
    current = ""
    for ch in body:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        if ch == "+" and depth == 0:
            parts.append(current)
            current = ""
        else:
            current += ch
    parts.append(current)

    terms: list[CovariateTerm] = []
    for raw in parts:
        part = raw.strip()
        if not part:
            continue
        m = _LAG_RE.match(part)
        if m:
            try:
                lags = _parse_lags(m.group(2))
            except ValueError as exc:
                raise ConfigurationError(
                    f"Cannot parse lag offsets in term '{part}'"
                ) from exc
            terms.append(CovariateTerm(m.group(1), lags))
        elif _NAME_RE.match(part):
            terms.append(CovariateTerm(part))
        else:
            raise ConfigurationError(f"Unsupported covariate term: '{part}'")
    return _merge_terms(terms)


def normalize_covariates(covariates: CovariateSpec) -> tuple[CovariateTerm, ...]:
    """Coerce any accepted covariate specification into a tuple of terms."""
    if covariates is None:
        return ()
    if isinstance(covariates, str):
        return parse_covariate_formula(covariates)
    if isinstance(covariates, CovariateTerm):
        return (covariates,)

    terms: list[CovariateTerm] = []
    for item in covariates:
        if isinstance(item, CovariateTerm):
            terms.append(item)
        elif isinstance(item, str):
            terms.extend(parse_covariate_formula(item))
        elif isinstance(item, tuple) and len(item) == 2:
            name, lags = item
            if isinstance(lags, int):
                lags = (lags,)
            terms.append(CovariateTerm(str(name), tuple(lags)))
        else:
            raise ConfigurationError(f"Unsupported covariate specification: {item!r}")
    return _merge_terms(terms)


def _merge_terms(terms: Iterable[CovariateTerm]) -> tuple[CovariateTerm, ...]:
    merged: dict[str, set[int]] = {}
    for term in terms:
        merged.setdefault(term.name, set()).update(term.lags)
    return tuple(CovariateTerm(name, tuple(lags)) for name, lags in merged.items())
