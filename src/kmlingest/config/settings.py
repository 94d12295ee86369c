"""
Configuration management for the KML ingest pipeline.

Usage:
    from kmlingest.config.settings import Config
    config = Config()
    options = config.run_options(verbose=True)

Environment Variables:
    KML_LENIENT: Tolerate malformed geometries (true|false)
    KML_COLLATE_BY_GEOMETRY: One schema per geometry type (true|false)
    KML_STYLE_CONTEXT_PATH: Prefix for relative icon hrefs in generated SLD
    KML_STYLE_DIR: Directory receiving SLD documents and derived icons
    ASSET_FETCH_TIMEOUT: Timeout in seconds for remote icon downloads
    ASSET_USER_AGENT: User-Agent sent with remote icon downloads
    TEMP_RETENTION_HOURS: Age after which stale temp files are removed
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from ..domain.models import RunOptions

logger = logging.getLogger(__name__)

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass
class ReaderConfig:
    """KML parsing behaviour."""
    lenient: bool = False
    collate_by_geometry: bool = False


@dataclass
class StyleConfig:
    """Style document output configuration."""
    context_path: Optional[str] = None
    style_dir: str = "styles"

    def __post_init__(self):
        """Validate style output configuration."""
        if not self.style_dir:
            raise ValueError("Style directory cannot be empty")
        if self.context_path is not None and not self.context_path.strip():
            self.context_path = None


@dataclass
class AssetConfig:
    """Remote icon fetching configuration."""
    fetch_timeout_s: int = 30
    user_agent: str = "kmlingest"

    def __post_init__(self):
        """Validate asset fetching configuration."""
        if self.fetch_timeout_s < 1:
            raise ValueError("Fetch timeout must be at least 1 second")


@dataclass
class TempConfig:
    """Temporary file management configuration."""
    retention_hours: int = 24

    def __post_init__(self):
        """Validate temp management configuration."""
        if self.retention_hours < 0:
            raise ValueError("Retention hours must be non-negative")


class ConfigurationError(Exception):
    """Raised when configuration is invalid or incomplete."""
    pass


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    value = value.strip().lower()
    if value in TRUE_VALUES:
        return True
    if value in FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {value!r}")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from e


class Config:
    """
    Centralized configuration for the ingest pipeline.

    Environment variables loaded (in order of preference):
    1. Explicit environment file passed to constructor
    2. .env.{ENVIRONMENT} (where ENVIRONMENT=development|production|staging)
    3. .env file in project root
    4. System environment variables

    Example:
        config = Config(env_file=Path("/etc/kmlingest.env"))
        config.style.style_dir
    """

    def __init__(self,
                 environment: Optional[str] = None,
                 env_file: Optional[Path] = None):
        """
        Initialize configuration.

        Args:
            environment: Target environment (development|staging|production)
            env_file: Explicit path to environment file
        """
        self.environment = environment or os.getenv("ENVIRONMENT", "development")
        self.project_root = self._find_project_root()

        self._load_environment_variables(env_file)

        self._load_reader_config()
        self._load_style_config()
        self._load_asset_config()
        self._load_temp_config()

    def _find_project_root(self) -> Path:
        """Find project root directory containing pyproject.toml, .git or a .env file."""
        cwd = Path.cwd()
        for parent in (cwd, *cwd.parents):
            if any((parent / marker).exists() for marker in ['pyproject.toml', '.git', '.env']):
                return parent
        return cwd

    def _load_environment_variables(self, env_file: Optional[Path]) -> None:
        """Load environment variables from appropriate source."""
        loaded_files = []

        if env_file:
            if env_file.exists():
                load_dotenv(env_file)
                loaded_files.append(str(env_file))
                logger.info(f"Loaded configuration from {env_file}")
            else:
                raise ConfigurationError(f"Specified env file not found: {env_file}")

        else:
            env_specific_file = self.project_root / f".env.{self.environment}"
            if env_specific_file.exists():
                load_dotenv(env_specific_file)
                loaded_files.append(str(env_specific_file))
                logger.info(f"Loaded environment-specific config: {env_specific_file}")

            generic_env_file = self.project_root / ".env"
            if generic_env_file.exists():
                load_dotenv(generic_env_file)
                loaded_files.append(str(generic_env_file))
                logger.info(f"Loaded generic config: {generic_env_file}")

        if not loaded_files:
            logger.debug("No .env files found, using system environment variables only")

        self._loaded_env_files = loaded_files
        logger.debug(f"Project root: {self.project_root}")
        logger.debug(f"Environment: {self.environment}")

    def _load_reader_config(self) -> None:
        self.reader = ReaderConfig(
            lenient=_env_flag("KML_LENIENT", False),
            collate_by_geometry=_env_flag("KML_COLLATE_BY_GEOMETRY", False),
        )

    def _load_style_config(self) -> None:
        try:
            self.style = StyleConfig(
                context_path=os.getenv("KML_STYLE_CONTEXT_PATH"),
                style_dir=os.getenv("KML_STYLE_DIR", "styles"),
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid style configuration: {e}") from e

    def _load_asset_config(self) -> None:
        try:
            self.assets = AssetConfig(
                fetch_timeout_s=_env_int("ASSET_FETCH_TIMEOUT", 30),
                user_agent=os.getenv("ASSET_USER_AGENT", "kmlingest"),
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid asset configuration: {e}") from e

    def _load_temp_config(self) -> None:
        try:
            self.temp = TempConfig(retention_hours=_env_int("TEMP_RETENTION_HOURS", 24))
        except ValueError as e:
            raise ConfigurationError(f"Invalid temp management configuration: {e}") from e

    def run_options(self, lenient: Optional[bool] = None, collate: Optional[bool] = None,
                    verbose: bool = False, log_to_file: bool = False) -> RunOptions:
        """Runtime switches, with explicit arguments overriding the environment."""
        return RunOptions(
            lenient=self.reader.lenient if lenient is None else lenient,
            collate=self.reader.collate_by_geometry if collate is None else collate,
            verbose=verbose,
            log_to_file=log_to_file,
        )

    def __repr__(self) -> str:
        return (
            f"Config(environment={self.environment}, "
            f"lenient={self.reader.lenient}, "
            f"style_dir={self.style.style_dir})"
        )
