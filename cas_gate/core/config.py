"""
Configuration management for cas-gate.
"""

import os
import logging
from typing import Optional, Dict, Any, List
from pydantic import ValidationError
from pydantic_settings import BaseSettings
from cas_gate.adapters.logout import LogoutStore, LogoutStoreKind
from cas_gate.adapters.sessions import SessionStore
from cas_gate.adapters.impl.memory_logout import InMemoryLogoutStore
from cas_gate.adapters.impl.memory_sessions import InMemorySessionStore
from cas_gate.adapters.impl.redis_logout import RedisLogoutStore, create_redis_client
from cas_gate.adapters.impl.redis_sessions import RedisSessionStore
from cas_gate.core.exceptions import ConfigurationError
from cas_gate.models.schemas import GateConfig

logger = logging.getLogger(__name__)

SESSION_STORES = ("memory", "redis")


class Settings(BaseSettings):
    """Application settings loaded from environment and config files."""

    # CAS server
    login_url: Optional[str] = None
    validate_url: Optional[str] = None
    server_url_prefix: Optional[str] = None

    # Service identity
    service_url: Optional[str] = None
    server_name: Optional[str] = None

    # Authentication policy
    renew: bool = False
    gateway: bool = False
    authorized_proxies: str = ""  # whitespace-delimited
    proxy_callback_url: Optional[str] = None
    logout_callback_url: Optional[str] = None

    # Request wrapping
    wrap_request: bool = False
    remote_user_attribute: Optional[str] = None
    url_pattern_exclude: str = ""  # whitespace-delimited regexes

    # Storage
    logout_store: str = "local"  # local, clustered
    session_store: str = "memory"  # memory, redis
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_cluster: bool = False
    redis_key_prefix: str = "cas-gate:"
    logout_ticket_ttl_seconds: int = 86400
    session_duration_seconds: int = 7200
    session_cookie_name: str = "cas_gate_session"

    validator_timeout_seconds: float = 10.0

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8080

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json, text

    # Observability
    enable_metrics: bool = True
    enable_tracing: bool = False

    # Config file path
    config_file: Optional[str] = None

    class Config:
        env_prefix = "CAS_GATE_"
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


def split_list(value: Optional[str]) -> List[str]:
    """Split a whitespace-delimited setting into its items."""
    if not value:
        return []
    return value.split()


def create_gate_config(settings: Settings) -> GateConfig:
    """
    Create GateConfig from Settings.

    ``server_url_prefix`` fills in whichever of ``login_url`` and
    ``validate_url`` is not set explicitly.

    Args:
        settings: Application settings

    Returns:
        GateConfig instance

    Raises:
        ConfigurationError: If the settings describe an invalid gate
    """
    login_url = settings.login_url
    validate_url = settings.validate_url
    if settings.server_url_prefix:
        prefix = settings.server_url_prefix.rstrip("/")
        login_url = login_url or f"{prefix}/login"
        validate_url = validate_url or f"{prefix}/serviceValidate"

    if not validate_url:
        raise ConfigurationError(
            "validate_url (or server_url_prefix) must be set to validate tickets"
        )

    if settings.logout_store not in {kind.value for kind in LogoutStoreKind}:
        raise ConfigurationError(f"Unsupported logout store: {settings.logout_store}")
    if settings.session_store not in SESSION_STORES:
        raise ConfigurationError(f"Unsupported session store: {settings.session_store}")

    try:
        return GateConfig(
            login_url=login_url,
            validate_url=validate_url,
            service_url=settings.service_url,
            server_name=settings.server_name,
            renew=settings.renew,
            gateway=settings.gateway,
            proxy_callback_url=settings.proxy_callback_url,
            logout_callback_url=settings.logout_callback_url,
            authorized_proxies=split_list(settings.authorized_proxies),
            url_pattern_exclude=split_list(settings.url_pattern_exclude),
            wrap_request=settings.wrap_request,
            remote_user_attribute=settings.remote_user_attribute
        )
    except ValidationError as e:
        messages = "; ".join(error["msg"] for error in e.errors())
        raise ConfigurationError(f"Invalid gate configuration: {messages}") from e


def create_logout_store(settings: Settings) -> LogoutStore:
    """
    Build the logout store selected by ``logout_store``.

    A local store is only correct when a single process serves the
    application; use ``clustered`` behind a load balancer.
    """
    try:
        kind = LogoutStoreKind(settings.logout_store)
    except ValueError:
        raise ConfigurationError(f"Unsupported logout store: {settings.logout_store}")

    if kind is LogoutStoreKind.LOCAL:
        return InMemoryLogoutStore()

    client = create_redis_client(
        settings.redis_host, settings.redis_port,
        db=settings.redis_db, cluster=settings.redis_cluster
    )
    return RedisLogoutStore(
        client,
        key_prefix=f"{settings.redis_key_prefix}logout:",
        ttl_seconds=settings.logout_ticket_ttl_seconds
    )


def create_session_store(settings: Settings) -> SessionStore:
    """Build the session store selected by ``session_store``."""
    if settings.session_store == "memory":
        return InMemorySessionStore(duration=settings.session_duration_seconds)
    if settings.session_store == "redis":
        client = create_redis_client(
            settings.redis_host, settings.redis_port,
            db=settings.redis_db, cluster=settings.redis_cluster
        )
        return RedisSessionStore(
            client,
            key_prefix=f"{settings.redis_key_prefix}session:",
            duration=settings.session_duration_seconds
        )
    raise ConfigurationError(f"Unsupported session store: {settings.session_store}")


def load_config_from_file(config_path: str) -> Dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to config file

    Returns:
        Configuration dictionary
    """
    import yaml

    if not os.path.exists(config_path):
        return {}

    try:
        with open(config_path, 'r') as f:
            return yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Failed to load config file {config_path}: {e}")
        return {}


def get_config_file_paths() -> List[str]:
    """Get list of potential config file paths in order of preference."""
    return [
        os.environ.get("CAS_GATE_CONFIG_FILE", ""),
        "/etc/cas-gate/config.yaml",
        os.path.expanduser("~/.config/cas-gate/config.yaml"),
        "./config.yaml"
    ]


def _flatten(config_data: Dict[str, Any]) -> Dict[str, Any]:
    """Map the nested YAML layout onto flat Settings fields."""
    flat_config: Dict[str, Any] = {}

    # cas: {login_url, validate_url, server_url_prefix}
    for key, value in (config_data.get("cas") or {}).items():
        flat_config[key] = value

    # server: {host, port}
    server_config = config_data.get("server") or {}
    for key in ("host", "port"):
        if key in server_config:
            flat_config[key] = server_config[key]

    # redis: {host, port, db, cluster, key_prefix}
    redis_config = config_data.get("redis") or {}
    for key in ("host", "port", "db", "cluster", "key_prefix"):
        if key in redis_config:
            flat_config[f"redis_{key}"] = redis_config[key]

    # Lists may be given as YAML sequences
    for key in ("authorized_proxies", "url_pattern_exclude"):
        if isinstance(config_data.get(key), list):
            flat_config[key] = " ".join(config_data[key])

    for key, value in config_data.items():
        if key in Settings.model_fields and key not in flat_config:
            flat_config[key] = value

    return flat_config


def load_merged_config(config_file: Optional[str] = None) -> Settings:
    """
    Load configuration from multiple sources with precedence:
    1. CLI flags (handled by caller)
    2. Environment variables
    3. Configuration files
    4. Defaults
    """
    settings = Settings()

    paths = [config_file] if config_file else get_config_file_paths()
    config_data: Dict[str, Any] = {}
    for config_path in paths:
        if config_path and os.path.exists(config_path):
            config_data = load_config_from_file(config_path)
            break

    if config_data:
        flat_config = _flatten(config_data)
        # Environment variables win over the file
        env_keys = {
            name for name in Settings.model_fields
            if f"CAS_GATE_{name.upper()}" in os.environ
        }
        for name in env_keys:
            flat_config.pop(name, None)
        flat_config.update({name: getattr(settings, name) for name in env_keys})
        settings = Settings(**flat_config)

    return settings
