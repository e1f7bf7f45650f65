"""Settings: defaults, then raiz.toml, then environment (.env included)."""
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from raiz.core.model import ResolutionMode
from raiz.errors import ConfigurationError

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

DEFAULT_CONFIG_FILE = "raiz.toml"

# env var -> settings field
ENV_OVERRIDES = {
    "RAIZ_MODE": "mode",
    "RAIZ_GRADLE_TIMEOUT": "gradle_timeout",
    "RAIZ_PROVIDER_TIMEOUT": "provider_timeout",
    "RAIZ_BATCH_TIMEOUT": "batch_timeout",
    "RAIZ_MAX_WORKERS": "max_workers",
    "RAIZ_PROVIDERS": "providers",
    "RAIZ_MAVEN_REPOSITORY": "maven_repository_url",
    "RAIZ_LOG_FILE": "log_file",
    "RAIZ_LOG_LEVEL": "log_level",
    "NVD_API_KEY": "nvd_api_key",
    "GITHUB_TOKEN": "github_token",
    "OSSINDEX_USER": "ossindex_user",
    "OSSINDEX_TOKEN": "ossindex_token",
}


class Settings(BaseModel):
    mode: ResolutionMode = ResolutionMode.SAFE

    # Sandbox / Gradle full mode
    gradle_timeout: float = Field(default=30.0, gt=0)
    sandbox_output_cap: int = Field(default=4 * 1024 * 1024, gt=0)
    sandbox_grace_period: float = Field(default=5.0, ge=0)

    # Maven resolution
    maven_repository_url: str = "https://repo.maven.apache.org/maven2"
    maven_max_depth: int = Field(default=10, ge=0)
    maven_fetch_concurrency: int = Field(default=16, gt=0)

    # Vulnerability providers
    providers: List[str] = Field(default_factory=lambda: ["osv", "nvd", "ghsa", "maven_central"])
    provider_timeout: float = Field(default=15.0, gt=0)
    provider_failure_threshold: int = Field(default=3, gt=0)
    provider_cooldown: float = Field(default=300.0, ge=0)
    batch_timeout: float = Field(default=300.0, gt=0)
    max_workers: int = Field(default=8, gt=0)

    osv_url: str = "https://api.osv.dev/v1"
    nvd_url: str = "https://services.nvd.nist.gov/rest/json/cves/2.0"
    github_api_url: str = "https://api.github.com"
    ossindex_url: str = "https://ossindex.sonatype.org/api/v3"

    nvd_api_key: str = ""
    github_token: str = ""
    ossindex_user: str = ""
    ossindex_token: str = ""

    # Scoring
    depth_scores: Tuple[int, ...] = (100, 80, 60, 40)
    broad_range_major_span: int = Field(default=5, gt=0)

    log_file: Optional[str] = "debug.log"
    log_level: str = "DEBUG"

    @field_validator("providers", mode="before")
    @classmethod
    def _split_providers(cls, value):
        if isinstance(value, str):
            return [p.strip() for p in value.split(",") if p.strip()]
        return value

    @field_validator("depth_scores")
    @classmethod
    def _check_depth_scores(cls, value):
        if not value:
            raise ValueError("depth_scores needs at least one band")
        if any(not 0 <= s <= 100 for s in value):
            raise ValueError("depth_scores must be within 0..100")
        return value

    @classmethod
    def load(cls, path: Union[str, Path, None] = None, env: Optional[Dict[str, str]] = None) -> "Settings":
        """Build settings from an optional TOML file and the environment."""
        load_dotenv()
        env = os.environ if env is None else env

        data: Dict[str, Any] = {}
        config_path = Path(path) if path else Path(DEFAULT_CONFIG_FILE)
        if config_path.exists():
            data.update(_read_toml(config_path))
        elif path:
            raise ConfigurationError(f"Config file not found: {config_path}")

        for var, field_name in ENV_OVERRIDES.items():
            if env.get(var):
                data[field_name] = env[var]

        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid settings: {e}") from e


def _read_toml(path: Path) -> Dict[str, Any]:
    logging.debug(f"Reading settings from {path}")
    try:
        with open(path, "rb") as f:
            raw = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Malformed config file {path}: {e}") from e

    # Accept either a bare file or a [raiz] table
    return raw.get("raiz", raw)
