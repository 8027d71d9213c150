"""Configuration loader with type-safe dataclasses."""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .fetcher import DEFAULT_TIMEOUT, DEFAULT_USER_AGENT, resolve_url


class ConfigError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


# Bumping the cache name is the only upgrade path: activation purges every
# store with a different name.
DEFAULT_CACHE_NAME = "hub-cache-v1"

DEFAULT_FALLBACK = "./offline.html"

# Page shell, secondary pages, offline page, stylesheet, scripts, app manifest.
DEFAULT_MANIFEST = (
    "./",
    "./index.html",
    "./services.html",
    "./detail.html",
    "./about.html",
    "./contact.html",
    "./offline.html",
    "./css/style.css",
    "./js/app.js",
    "./js/api.js",
    "./js/install.js",
    "./manifest.json",
)


def _get_default_db_path() -> str:
    """Get the default cache database path using XDG-compliant directory.

    Returns ~/.local/share/hubcache/cache.db which is the standard
    location for user-specific data files on Linux/macOS.
    """
    home = Path.home()
    return str(home / ".local" / "share" / "hubcache" / "cache.db")


# Default cache database path (XDG-compliant user data directory)
DEFAULT_DB_PATH = _get_default_db_path()


@dataclass(frozen=True)
class CacheConfig:
    """Configuration for the cache storage."""

    name: str = DEFAULT_CACHE_NAME  # version tag of the active store
    path: str = DEFAULT_DB_PATH

    def __post_init__(self) -> None:
        if not self.name:
            raise ConfigError("Cache name cannot be empty")
        if not self.path:
            raise ConfigError("Cache path cannot be empty")


@dataclass(frozen=True)
class FetchConfig:
    """Configuration for network fetches."""

    timeout: int = DEFAULT_TIMEOUT
    user_agent: str = DEFAULT_USER_AGENT

    def __post_init__(self) -> None:
        if self.timeout < 1:
            raise ConfigError(f"Fetch timeout must be at least 1 second (got {self.timeout})")
        if not self.user_agent:
            raise ConfigError("User-Agent cannot be empty")


@dataclass(frozen=True)
class ProxyConfig:
    """Configuration for the local proxy server."""

    host: str = "127.0.0.1"
    port: int = 8080
    allow_private: bool = False  # allow forward-proxy targets on private networks

    def __post_init__(self) -> None:
        if self.port < 1 or self.port > 65535:
            raise ConfigError(f"Proxy port must be between 1 and 65535, got {self.port}")


@dataclass(frozen=True)
class Config:
    """Main configuration container."""

    origin: str
    manifest: list[str] = field(default_factory=lambda: list(DEFAULT_MANIFEST))
    fallback: str = DEFAULT_FALLBACK
    cache: CacheConfig = field(default_factory=CacheConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    proxy: ProxyConfig = field(default_factory=ProxyConfig)

    def __post_init__(self) -> None:
        if not self.origin:
            raise ConfigError("Origin cannot be empty")
        if not self.origin.startswith(("http://", "https://")):
            raise ConfigError(f"Origin must start with http:// or https://, got '{self.origin}'")
        if not self.manifest:
            raise ConfigError("Manifest must list at least one resource")
        if any(not isinstance(path, str) or not path for path in self.manifest):
            raise ConfigError("Manifest entries must be non-empty strings")
        if not self.fallback:
            raise ConfigError("Fallback path cannot be empty")
        # The offline page is only servable if install caches it
        resolved = {resolve_url(self.origin, path) for path in self.manifest}
        if resolve_url(self.origin, self.fallback) not in resolved:
            raise ConfigError(f"Fallback '{self.fallback}' must be listed in the manifest")


def _parse_cache_config(data: dict | None) -> CacheConfig:
    """Parse cache configuration section."""
    if data is None:
        return CacheConfig()
    if not isinstance(data, dict):
        raise ConfigError("'cache' section must be a dictionary")

    return CacheConfig(
        name=str(data.get("name", DEFAULT_CACHE_NAME)),
        path=str(data.get("path", DEFAULT_DB_PATH)),
    )


def _parse_fetch_config(data: dict | None) -> FetchConfig:
    """Parse fetch configuration section."""
    if data is None:
        return FetchConfig()
    if not isinstance(data, dict):
        raise ConfigError("'fetch' section must be a dictionary")

    return FetchConfig(
        timeout=int(data.get("timeout", DEFAULT_TIMEOUT)),
        user_agent=str(data.get("user_agent", DEFAULT_USER_AGENT)),
    )


def _parse_proxy_config(data: dict | None) -> ProxyConfig:
    """Parse proxy configuration section."""
    if data is None:
        return ProxyConfig()
    if not isinstance(data, dict):
        raise ConfigError("'proxy' section must be a dictionary")

    return ProxyConfig(
        host=str(data.get("host", "127.0.0.1")),
        port=int(data.get("port", 8080)),
        allow_private=bool(data.get("allow_private", False)),
    )


def _parse_manifest(data: list | None) -> list[str]:
    if data is None:
        return list(DEFAULT_MANIFEST)
    if not isinstance(data, list):
        raise ConfigError("'manifest' must be a list")
    return [str(path) for path in data]


def _apply_env_overrides(config_data: dict) -> dict:
    """Apply environment variable overrides to configuration.

    Supported overrides:
    - HUBCACHE_ORIGIN: Override origin
    - HUBCACHE_CACHE_NAME: Override cache.name
    - HUBCACHE_CACHE_PATH: Override cache.path
    - HUBCACHE_PROXY_HOST: Override proxy.host
    - HUBCACHE_PROXY_PORT: Override proxy.port
    """
    if config_data.get("cache") is None:
        config_data["cache"] = {}
    if config_data.get("proxy") is None:
        config_data["proxy"] = {}
    if not isinstance(config_data["cache"], dict):
        raise ConfigError("'cache' section must be a dictionary")
    if not isinstance(config_data["proxy"], dict):
        raise ConfigError("'proxy' section must be a dictionary")

    origin = os.environ.get("HUBCACHE_ORIGIN")
    if origin is not None:
        config_data["origin"] = origin

    cache_name = os.environ.get("HUBCACHE_CACHE_NAME")
    if cache_name is not None:
        config_data["cache"]["name"] = cache_name

    cache_path = os.environ.get("HUBCACHE_CACHE_PATH")
    if cache_path is not None:
        config_data["cache"]["path"] = cache_path

    proxy_host = os.environ.get("HUBCACHE_PROXY_HOST")
    if proxy_host is not None:
        config_data["proxy"]["host"] = proxy_host

    proxy_port = os.environ.get("HUBCACHE_PROXY_PORT")
    if proxy_port is not None:
        try:
            config_data["proxy"]["port"] = int(proxy_port)
        except ValueError:
            raise ConfigError(f"HUBCACHE_PROXY_PORT must be an integer, got '{proxy_port}'")

    return config_data


def load_config(config_path: str) -> Config:
    """Load and validate configuration from a YAML file.

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        Validated Config object.

    Raises:
        ConfigError: If the file cannot be read or configuration is invalid.
    """
    path = Path(config_path)

    if not path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML configuration: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read configuration file: {e}")

    if data is None:
        raise ConfigError("Configuration file is empty")

    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a YAML dictionary")

    data = _apply_env_overrides(data)

    origin = data.get("origin")
    if origin is None:
        raise ConfigError("Configuration must contain an 'origin'")

    try:
        return Config(
            origin=str(origin),
            manifest=_parse_manifest(data.get("manifest")),
            fallback=str(data.get("fallback", DEFAULT_FALLBACK)),
            cache=_parse_cache_config(data.get("cache")),
            fetch=_parse_fetch_config(data.get("fetch")),
            proxy=_parse_proxy_config(data.get("proxy")),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid configuration value: {e}")
