from __future__ import annotations

import re

_KEY_RE = re.compile(r"^([A-Za-z0-9][-A-Za-z0-9_./]*)?[A-Za-z0-9]$")


def _check_key(key: str) -> str:
    key = key.strip()
    if not _KEY_RE.match(key):
        raise ValueError(f"invalid label key: {key!r}")
    return key


def parse_label_selector(selector: str | None) -> dict[str, str]:
    """Parse ``a=b,c==d,e`` into a mapping (bare keys select on existence, value "")."""
    out: dict[str, str] = {}
    if not selector:
        return out
    for term in selector.split(","):
        term = term.strip()
        if not term:
            continue
        if "!=" in term:
            raise ValueError(f"unsupported selector operator in {term!r}")
        if "==" in term:
            k, v = term.split("==", 1)
        elif "=" in term:
            k, v = term.split("=", 1)
        else:
            k, v = term, ""
        out[_check_key(k)] = v.strip()
    return out


def format_label_selector(labels: dict[str, str]) -> str:
    return ",".join(f"{k}={v}" if v else k for k, v in labels.items())


def args_to_names_and_labels(args: list[str]) -> tuple[list[str], dict[str, str]]:
    """Split ``NAME... KEY=VAL... KEY-...`` arguments; ``KEY-`` maps to "" (remove)."""
    names: list[str] = []
    labels: dict[str, str] = {}
    for arg in args:
        if "=" in arg:
            k, v = arg.split("=", 1)
            labels[_check_key(k)] = v
        elif arg.endswith("-") and len(arg) > 1:
            labels[_check_key(arg[:-1])] = ""
        else:
            names.append(arg)
    return names, labels


__all__ = ["args_to_names_and_labels", "format_label_selector", "parse_label_selector"]
