"""Configuration loading and validation."""
import os
import re
from pathlib import Path
from typing import List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

SUPPORTED_PROVIDERS = ("cerebras", "groq", "openrouter")
SUPPORTED_SEARCH_PROVIDERS = ("tavily", "brave")

_ENV_PATTERN = r"\$\{([^}]+)\}"
_MISSING = "__MISSING_ENV__"


def _resolve_optional_env(v: Optional[str]) -> Optional[str]:
    """Resolve ${ENV_VAR} references, returning None when any are unset."""
    if v is None:
        return v

    def replacer(match):
        value = os.getenv(match.group(1))
        return _MISSING if value is None else value

    result = re.sub(_ENV_PATTERN, replacer, v)
    if _MISSING in result or not result.strip():
        return None
    return result


def _resolve_required_env(v: str, field: str) -> str:
    """Resolve ${ENV_VAR} references, raising when any are unset."""

    def replacer(match):
        env_var = match.group(1)
        value = os.getenv(env_var)
        if value is None:
            raise ValueError(
                f"Environment variable '{env_var}' is not set. "
                f"Required for {field} configuration."
            )
        return value

    return re.sub(_ENV_PATTERN, replacer, v)


class ProviderConfig(BaseModel):
    """Configuration for one OpenAI-compatible model provider."""

    base_url: Optional[str] = Field(
        None, description="Override for the provider's API base URL"
    )
    api_key: Optional[str] = Field(
        None, description="API key, usually a ${ENV_VAR} reference"
    )
    model: Optional[str] = Field(
        None, description="Model id; the provider default is used when omitted"
    )
    headers: Optional[dict[str, str]] = None
    timeout: int = Field(60, ge=1, le=600)
    max_retries: int = Field(
        1,
        ge=1,
        le=5,
        description="HTTP-level attempts per call (transient 5xx/429/network only)",
    )

    @field_validator("api_key")
    @classmethod
    def resolve_api_key(cls, v: Optional[str]) -> Optional[str]:
        """Missing env vars leave the provider without credentials."""
        return _resolve_optional_env(v)

    @field_validator("base_url")
    @classmethod
    def resolve_base_url(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return _resolve_required_env(v, "base_url")


class SearchConfig(BaseModel):
    """Web search provider settings."""

    primary: str = Field("tavily", description="Search provider tried first")
    fallback: Optional[str] = Field(
        "brave", description="Search provider tried when the primary fails"
    )
    tavily_api_key: Optional[str] = None
    brave_api_key: Optional[str] = None
    timeout: float = Field(12.0, gt=0, le=120)
    results_per_query: int = Field(6, ge=1, le=20)

    @field_validator("tavily_api_key", "brave_api_key")
    @classmethod
    def resolve_keys(cls, v: Optional[str]) -> Optional[str]:
        return _resolve_optional_env(v)

    @field_validator("primary", "fallback")
    @classmethod
    def validate_provider(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip().lower()
        if v not in SUPPORTED_SEARCH_PROVIDERS:
            raise ValueError(
                f"Unknown search provider '{v}'. "
                f"Supported: {', '.join(SUPPORTED_SEARCH_PROVIDERS)}"
            )
        return v


class FetchConfig(BaseModel):
    """Page fetch settings."""

    timeout: float = Field(15.0, gt=0, le=120)
    max_chars: int = Field(20_000, ge=1_000, le=200_000)
    use_reader: bool = Field(
        True, description="Try the Jina reader before fetching pages directly"
    )


class WorkflowConfig(BaseModel):
    """Limits for one research pass and for provider fallback."""

    max_queries: int = Field(6, ge=1, le=10)
    top_results: int = Field(8, ge=1, le=20)
    fetch_top: int = Field(4, ge=0, le=10)
    max_fetches: int = Field(6, ge=0, le=12)
    max_user_urls: int = Field(4, ge=0, le=10)
    evidence_max_chars: int = Field(30_000, ge=2_000, le=200_000)
    memory_matches: int = Field(3, ge=1, le=10)
    attempts_per_provider: int = Field(2, ge=1, le=5)
    backoff_min: float = Field(0.25, ge=0)
    backoff_max: float = Field(0.6, ge=0)


class StorageConfig(BaseModel):
    """SQLite storage configuration."""

    db_path: str = Field("claritycheck.db", description="Path to SQLite database")

    @field_validator("db_path")
    @classmethod
    def resolve_db_path(cls, v: str) -> str:
        """
        Resolve db_path to an absolute path relative to the project root.

        ${ENV_VAR} references are expanded first. ":memory:" is kept as is.

        Examples:
            "claritycheck.db" → "/path/to/project/claritycheck.db"
            "/tmp/foo.db" → "/tmp/foo.db" (unchanged)
            "${DATA_DIR}/cc.db" → "/var/data/cc.db" (if DATA_DIR=/var/data)

        Raises:
            ValueError: If an environment variable is referenced but not set
        """
        resolved = _resolve_required_env(v, "db_path")
        if resolved == ":memory:":
            return resolved

        path = Path(resolved)
        if not path.is_absolute():
            # project_root/models/config.py
            project_root = Path(__file__).parent.parent
            path = (project_root / path).resolve()
        return str(path)


class Config(BaseModel):
    """Root configuration model."""

    version: str = "1.0"
    active_provider: str = Field(
        "cerebras", description="Provider tried first for every model call"
    )
    provider_order: List[str] = Field(
        default_factory=lambda: list(SUPPORTED_PROVIDERS),
        description="Order in which the remaining providers are tried",
    )
    providers: dict[str, ProviderConfig] = Field(default_factory=dict)
    search: SearchConfig = Field(default_factory=SearchConfig)
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    workflow: WorkflowConfig = Field(default_factory=WorkflowConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    @field_validator("provider_order")
    @classmethod
    def normalize_order(cls, v: List[str]) -> List[str]:
        """Drop unknown or repeated names and append any missing providers."""
        order: List[str] = []
        for name in v:
            name = name.strip().lower()
            if name in SUPPORTED_PROVIDERS and name not in order:
                order.append(name)
        for name in SUPPORTED_PROVIDERS:
            if name not in order:
                order.append(name)
        return order

    @field_validator("providers")
    @classmethod
    def validate_providers(
        cls, v: dict[str, ProviderConfig]
    ) -> dict[str, ProviderConfig]:
        unknown = [name for name in v if name not in SUPPORTED_PROVIDERS]
        if unknown:
            raise ValueError(
                f"Unknown provider(s): {', '.join(unknown)}. "
                f"Supported: {', '.join(SUPPORTED_PROVIDERS)}"
            )
        return v

    def model_post_init(self, __context):
        """Fall back to the first ordered provider for an unknown active one."""
        active = self.active_provider.strip().lower()
        if active not in SUPPORTED_PROVIDERS:
            active = self.provider_order[0]
        self.active_provider = active

    def provider(self, name: str) -> ProviderConfig:
        """Return the provider's config, or an empty one if not configured."""
        return self.providers.get(name) or ProviderConfig()


def load_config(path: str = "config.yaml") -> Config:
    """
    Load configuration from YAML file.

    Args:
        path: Path to config file (default: config.yaml)

    Returns:
        Validated Config object

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValidationError: If config is invalid
    """
    # Load environment variables from .env file (if it exists)
    load_dotenv()

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, "r") as f:
        data = yaml.safe_load(f) or {}

    return Config(**data)
