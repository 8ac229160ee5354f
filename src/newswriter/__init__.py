"""News writer package turning source URLs into markdown news articles."""

from __future__ import annotations

import os
from pathlib import Path


def _load_local_env() -> None:
    """Populate ``os.environ`` with variables from a ``.env`` file in the working directory."""

    env_path = Path.cwd() / ".env"
    if not env_path.is_file():
        return

    for raw_line in env_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        if key.startswith("export "):
            key = key[len("export "):].strip()
        if not key or key in os.environ:
            continue

        os.environ[key] = value.strip().strip("\"'")


_load_local_env()

from .config import Config, ConfigOverrides, Settings  # noqa: E402,F401
from .models import Article, ArticleItem, Plan  # noqa: E402,F401

__all__ = ["Article", "ArticleItem", "Config", "ConfigOverrides", "Plan", "Settings"]
