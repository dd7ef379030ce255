"""ConfigManager: simulator settings from a base TOML file plus an optional profile overlay.

    tradesim_base.toml
    profiles/profile_<name>.toml     (fast, volatile, ...)

Values are read with dot-notation keys, e.g. ``get("circuit_breaker.threshold")``.
"""

from __future__ import annotations

import copy
import logging
import sys
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "tradesim_base.toml"
PROFILE_DIR = "profiles"


def profile_path(base_path: Path, profile: str) -> Path:
    return base_path.parent / PROFILE_DIR / f"profile_{profile}.toml"


def _overlay(base: dict, override: dict) -> dict:
    """Recursive merge; tables merge key by key, scalars and arrays are replaced."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _overlay(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _lookup(tree: dict, dotted_key: str, default: Any = None) -> Any:
    node: Any = tree
    for part in dotted_key.split("."):
        if not isinstance(node, dict) or part not in node:
            return default
        node = node[part]
    return node


class ConfigManager:
    """Process-wide config singleton.

    ``reload()`` re-reads the same files and is refused while
    ``system.settings_locked`` is true in the currently loaded tree.
    """

    _instance: ConfigManager | None = None

    def __new__(cls) -> ConfigManager:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self) -> None:
        if self._initialized:
            return
        self._tree: dict[str, Any] = {}
        self._sources: list[Path] = []
        self._request: tuple[Path, str | None] | None = None
        self._initialized = True

    @classmethod
    def reset(cls) -> None:
        """Drop the singleton (tests)."""
        cls._instance = None

    @property
    def is_loaded(self) -> bool:
        return self._request is not None

    @property
    def sources(self) -> list[Path]:
        """Files that make up the current tree, base first."""
        return list(self._sources)

    def load(self, base_path: str | Path = DEFAULT_CONFIG_PATH, profile: str | None = None) -> None:
        """Read the base file and overlay ``profile`` if its file exists.

        An unknown profile is logged and skipped; a missing base file raises.
        """
        base = Path(base_path)
        layers = [base]
        if profile:
            overlay = profile_path(base, profile)
            if overlay.exists():
                layers.append(overlay)
            else:
                logger.warning("Config profile %r not found at %s; using base only", profile, overlay)

        tree: dict[str, Any] = {}
        for path in layers:
            with open(path, "rb") as f:
                tree = _overlay(tree, tomllib.load(f))

        self._tree = tree
        self._sources = layers
        self._request = (base, profile)
        logger.info("Config loaded from %s", ", ".join(str(p) for p in layers))

    def get(self, dotted_key: str, default: Any = None) -> Any:
        if self._request is None:
            raise RuntimeError("ConfigManager not loaded. Call load() first.")
        return _lookup(self._tree, dotted_key, default)

    def reload(self) -> None:
        if self._request is None:
            raise RuntimeError("ConfigManager not loaded. Call load() first.")
        if self.get("system.settings_locked", False):
            raise RuntimeError("Config reload refused: settings are locked.")
        self.load(*self._request)
