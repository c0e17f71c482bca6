"""
Centralized settings and path configuration for the quote engine.
"""
import os
from pathlib import Path
from dataclasses import dataclass
from typing import Optional


PACKAGE_DIR = Path(__file__).resolve().parent.parent


def get_project_root() -> Path:
    """Get the project root directory (where pyproject.toml lives)."""
    current = Path(__file__).resolve()
    for parent in current.parents:
        if (parent / 'pyproject.toml').exists():
            return parent
    # Fallback to 3 levels up from this file
    return current.parent.parent.parent.parent


@dataclass
class Settings:
    """Application settings with sensible defaults."""

    project_root: Path

    # Pricing document served by the config provider
    pricing_config_path: Path

    log_level: str = "INFO"

    @classmethod
    def load(cls, project_root: Optional[Path] = None) -> 'Settings':
        """Load settings from the environment and the project structure."""
        root = project_root or get_project_root()

        config_path = os.environ.get('QUOTE_ENGINE_PRICING_CONFIG')
        return cls(
            project_root=root,
            pricing_config_path=Path(config_path) if config_path else PACKAGE_DIR / 'data' / 'pricing_config.json',
            log_level=os.environ.get('QUOTE_ENGINE_LOG_LEVEL', 'INFO').upper(),
        )


# Default settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings
