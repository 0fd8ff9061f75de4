"""Runtime context & bootstrap utilities."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from optimize.clients.api_client import DEFAULT_ADDRESS, APIClient
from optimize.infrastructure.logging import setup_logging

DEFAULT_CONFIG_PATH = Path("~/.config/optimize/config.yaml")


@dataclass(slots=True)
class RuntimeConfig:
    raw: dict[str, Any]
    path: Path

    def _get(self, key: str, env: str, default: Any) -> Any:
        value = os.getenv(env)
        if value not in (None, ""):
            return value
        return self.raw.get(key, default)

    @property
    def address(self) -> str:
        return str(self._get("address", "OPTIMIZE_ADDRESS", DEFAULT_ADDRESS))

    @property
    def token(self) -> str | None:
        return self._get("token", "OPTIMIZE_TOKEN", None)

    @property
    def poll_interval(self) -> float:
        return float(self._get("poll_interval", "OPTIMIZE_POLL_INTERVAL", 5.0))

    @property
    def poll_jitter(self) -> float:
        return float(self._get("poll_jitter", "OPTIMIZE_POLL_JITTER", 1.0))

    @property
    def batch_size(self) -> int:
        return int(self._get("batch_size", "OPTIMIZE_BATCH_SIZE", 0))

    @property
    def output(self) -> str:
        return str(self._get("output", "OPTIMIZE_OUTPUT", "table"))

    @property
    def timeout(self) -> float:
        return float(self._get("timeout", "OPTIMIZE_TIMEOUT", 30.0))

    @property
    def retries(self) -> int:
        return int(self._get("retries", "OPTIMIZE_RETRIES", 3))


class AppContext:
    _instance: AppContext | None = None

    def __init__(self, config: RuntimeConfig):
        self.config = config
        self._client: APIClient | None = None

    @classmethod
    def init(cls, config: RuntimeConfig) -> AppContext:
        if cls._instance is None:
            cls._instance = cls(config)
        return cls._instance

    @classmethod
    def get(cls) -> AppContext:
        if cls._instance is None:
            raise RuntimeError("AppContext not initialized")
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        cls._instance = None

    def client(self) -> APIClient:
        if self._client is None:
            self._client = APIClient(
                self.config.address,
                token=self.config.token,
                timeout=self.config.timeout,
                retries=self.config.retries,
            )
        return self._client


def load_config(path: Path) -> RuntimeConfig:
    path = path.expanduser()
    if not path.exists():
        return RuntimeConfig(raw={}, path=path)
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):  # pragma: no cover
        raise ValueError("Config root must be a mapping")
    return RuntimeConfig(raw=data, path=path)


def bootstrap(force: bool = False) -> AppContext:
    if not force:
        try:
            return AppContext.get()
        except RuntimeError:
            pass
    else:
        AppContext.reset()
    load_dotenv(override=False)
    setup_logging()
    cfg_path = Path(os.getenv("OPTIMIZE_CONFIG", str(DEFAULT_CONFIG_PATH)))
    config = load_config(cfg_path)
    return AppContext.init(config)
