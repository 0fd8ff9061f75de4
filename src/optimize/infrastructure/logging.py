"""Logging & console helpers.

Features:
    * RichHandler based console logging (color, tracebacks) on stderr
    * Optional JSON logging mode (``LOG_JSON=1``) for machine ingest
    * Helper utilities (`get_console`, `render_panel`) so service layers avoid
        importing rich directly, keeping presentation concerns centralized.
"""

from __future__ import annotations

import json
import logging
import os
import sys

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.text import Text

_INITIALIZED = False
_JSON_MODE = False
_CONSOLE: Console | None = None
_ERR_CONSOLE: Console | None = None

class _JsonHandler(logging.Handler):
    def emit(self, record: logging.LogRecord) -> None:
        try:
            data = {
                "level": record.levelname,
                "name": record.name,
                "message": record.getMessage(),
            }
            if record.exc_info:
                data["exc_info"] = logging.Formatter().formatException(record.exc_info)
            sys.stderr.write(json.dumps(data, ensure_ascii=False) + "\n")
        except Exception:  # pragma: no cover
            self.handleError(record)

def setup_logging(level: str | None = None, json_mode: bool | None = None) -> None:
    global _INITIALIZED, _JSON_MODE
    if _INITIALIZED:
        return
    if json_mode is None:
        json_mode = os.getenv("LOG_JSON", "").lower() in {"1", "true", "yes"}
    _JSON_MODE = json_mode
    lvl_name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    lvl = getattr(logging, lvl_name, logging.INFO)
    handler: logging.Handler
    if _JSON_MODE:
        handler = _JsonHandler()
    else:
        handler = RichHandler(
            console=get_err_console(), rich_tracebacks=True, show_path=False, markup=False
        )
    logging.basicConfig(level=lvl, handlers=[handler], force=True, format="%(message)s", datefmt="%H:%M:%S")
    # urllib3 retry chatter is only interesting when debugging
    logging.getLogger("urllib3").setLevel(max(lvl, logging.WARNING))
    _INITIALIZED = True


def get_console() -> Console:
    """Return the shared stdout Console used for command output."""
    global _CONSOLE
    if _CONSOLE is None:
        _CONSOLE = Console()
    return _CONSOLE

def get_err_console() -> Console:
    global _ERR_CONSOLE
    if _ERR_CONSOLE is None:
        _ERR_CONSOLE = Console(stderr=True)
    return _ERR_CONSOLE

def render_panel(title: str, body: str, *, style: str = "cyan") -> None:
    """Render a status panel on stderr (plain log line in JSON mode)."""
    if _JSON_MODE:
        logging.getLogger("optimize.console").info("%s | %s", title, body)
        return
    get_err_console().print(Panel.fit(body, title=title, border_style=style))

def render_error(message: str) -> None:
    get_err_console().print(Text.assemble(("error: ", "red"), message))

__all__ = [
    "get_console",
    "get_err_console",
    "render_error",
    "render_panel",
    "setup_logging",
]
