"""
Pricing Config Provider - versioned cache of the pricing document.

The engine only ever sees immutable PricingConfig snapshots. This provider is
where the process-wide state lives: it keeps the current snapshot, offers a
cheap version check for pollers, and swaps the snapshot when an admin edit
changes the document's version.
"""
import json
import logging
import threading
from pathlib import Path
from typing import Optional, Union

from ..errors import ConfigurationError
from .schema import PricingConfig, load_pricing_config

logger = logging.getLogger(__name__)


class PricingConfigProvider:
    """
    File-backed pricing config cache.

    ``current_version()`` is the cheap check: it stats the file and only reads
    it when the file changed since the last look. ``get()`` returns the full
    snapshot, reloading when the version moved.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._config: Optional[PricingConfig] = None
        self._fingerprint: Optional[tuple] = None
        self._peeked_version: Optional[str] = None

    def _stat_fingerprint(self) -> tuple:
        try:
            stat = self.path.stat()
        except FileNotFoundError:
            raise ConfigurationError(f"pricing config not found at {self.path}") from None
        return (stat.st_mtime_ns, stat.st_size)

    def _read_version(self) -> str:
        with open(self.path, 'r', encoding='utf-8') as f:
            try:
                document = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"invalid JSON: {e}", path=str(self.path)) from e
        version = document.get('version') if isinstance(document, dict) else None
        if not version:
            raise ConfigurationError("document has no version", path=str(self.path))
        return str(version)

    def current_version(self) -> str:
        """Version of the document on disk, without validating the whole catalog."""
        with self._lock:
            fingerprint = self._stat_fingerprint()
            if fingerprint != self._fingerprint or self._peeked_version is None:
                self._peeked_version = self._read_version()
                self._fingerprint = fingerprint
            return self._peeked_version

    def get(self) -> PricingConfig:
        """The current snapshot, reloaded if the document's version changed."""
        version = self.current_version()
        with self._lock:
            if self._config is not None and self._config.version == version:
                return self._config

            config = load_pricing_config(self.path)
            previous = self._config.version if self._config is not None else None
            self._config = config
            if previous is None:
                logger.info("Loaded pricing config %s from %s", config.version, self.path)
            else:
                logger.info("Pricing config changed: %s -> %s", previous, config.version)
            return config

    def is_stale(self, version: str) -> bool:
        """True when ``version`` no longer matches the document on disk."""
        return self.current_version() != version

    def invalidate(self):
        """Drop the cached snapshot so the next ``get()`` reads from disk."""
        with self._lock:
            self._config = None
            self._fingerprint = None
            self._peeked_version = None


class StaticConfigProvider:
    """Provider over a single in-memory snapshot that never changes."""

    def __init__(self, config: PricingConfig):
        self._config = config

    def current_version(self) -> str:
        return self._config.version

    def get(self) -> PricingConfig:
        return self._config

    def is_stale(self, version: str) -> bool:
        return version != self._config.version

    def invalidate(self):
        pass
