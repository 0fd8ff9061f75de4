"""Templating engine abstraction (Jinja2) used by definition files.

Current goals:
  * Centralize the Jinja environment so filters/globals are consistent.
  * Cache compiled templates and expressions by source text.
  * StrictUndefined: a typo in a definition is an error, not an empty string.
  * Recursive rendering of nested mappings/lists (scenario templates are YAML trees).
"""
from __future__ import annotations

from collections.abc import Callable, Mapping
from functools import lru_cache
from typing import Any

import orjson
from jinja2 import Environment, StrictUndefined, Template

_env = Environment(autoescape=False, undefined=StrictUndefined, keep_trailing_newline=False)


# ---------------------------- Filters & Globals ---------------------------- #

def _f_tojson(value: Any, *, indent: int = 0) -> str:
    # no HTML escaping; rendered values end up in JSON payloads, not pages
    opt = orjson.OPT_INDENT_2 if indent else 0
    return orjson.dumps(value, option=opt).decode("utf-8")


_env.filters["tojson"] = _f_tojson


# ------------------------------ Caching ------------------------------------ #

@lru_cache(maxsize=256)
def _get_template(source: str) -> Template:
    return _env.from_string(source)


@lru_cache(maxsize=256)
def _get_expression(source: str) -> Callable[..., Any]:
    return _env.compile_expression(source, undefined_to_none=False)


# ----------------------------- Render Functions ---------------------------- #

def render_string(source: str, ctx: Mapping[str, Any]) -> str:
    """Render a template string; Jinja errors propagate to the caller."""
    if "{" not in source:
        return source
    return _get_template(source).render(**ctx)


def render_value(value: Any, ctx: Mapping[str, Any]) -> Any:
    """Render every string inside a nested mapping/list structure."""
    if isinstance(value, str):
        return render_string(value, ctx)
    if isinstance(value, Mapping):
        return {k: render_value(v, ctx) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [render_value(v, ctx) for v in value]
    return value


def evaluate_expression(source: str, ctx: Mapping[str, Any]) -> Any:
    """Evaluate a Jinja expression (no braces), e.g. ``assignments.cpu * 2``."""
    return _get_expression(source)(**ctx)


__all__ = ["evaluate_expression", "render_string", "render_value"]
