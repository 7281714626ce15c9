"""
Confluence MCP Configuration
----------------------------
Centralized configuration for the gateway, registry and stdio host.
Loaded once from environment variables at startup and passed explicitly
into every component that needs it.
"""

import os
import logging
from enum import Enum
from typing import NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger("ConfluenceMCP.Config")

DEFAULT_DEPLOYMENT_TYPE = "cloud"
DEFAULT_HTTP_TIMEOUT_SEC = 30.0
DEFAULT_TOOL_CALL_TIMEOUT_SEC = 110.0
DEFAULT_LOG_LEVEL = "info"
SUPPORTED_LOG_LEVELS = ("debug", "info", "warning", "error", "critical")


class DeploymentMode(str, Enum):
    """Which Confluence variant governs auth scheme and API paths."""

    CLOUD = "cloud"
    SELF_HOSTED = "datacenter"


def normalize_deployment_type(raw: Optional[str]) -> str:
    value = (raw or "").strip().lower()
    return value or DEFAULT_DEPLOYMENT_TYPE


def deployment_mode_for(deployment_type: str) -> DeploymentMode:
    # Anything other than "cloud" behaves as a self-hosted (Server/Data Center) instance.
    if normalize_deployment_type(deployment_type) == DeploymentMode.CLOUD.value:
        return DeploymentMode.CLOUD
    return DeploymentMode.SELF_HOSTED


def _parse_positive_float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
        if value <= 0:
            raise ValueError
        return value
    except ValueError:
        logger.warning(
            "Invalid %s value '%s'; expected positive float. Using %s.",
            name,
            raw,
            default,
        )
        return default


def _parse_non_negative_int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw.strip())
        if value < 0:
            raise ValueError
        return value
    except ValueError:
        logger.warning(
            "Invalid %s value '%s'; expected non-negative integer. Using %s.",
            name,
            raw,
            default,
        )
        return default


def _parse_bool_env(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    normalized = raw.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    logger.warning("Invalid %s value '%s'; expected boolean. Using %s.", name, raw, default)
    return default


def _normalize_log_level(raw: Optional[str]) -> str:
    value = (raw or "").strip().lower()
    if not value:
        return DEFAULT_LOG_LEVEL
    if value not in SUPPORTED_LOG_LEVELS:
        logger.warning(
            "Invalid CONFLUENCE_MCP_LOG_LEVEL '%s'; expected one of %s. Using '%s'.",
            raw,
            ", ".join(SUPPORTED_LOG_LEVELS),
            DEFAULT_LOG_LEVEL,
        )
        return DEFAULT_LOG_LEVEL
    return value


class ConnectionConfig(BaseModel):
    """Confluence instance location and credentials."""
    model_config = ConfigDict(frozen=True)

    base_url: str = ""
    deployment_type: str = DEFAULT_DEPLOYMENT_TYPE
    email: str = ""
    api_token: str = Field(default="", repr=False)

    @property
    def mode(self) -> DeploymentMode:
        return deployment_mode_for(self.deployment_type)

    @property
    def is_cloud(self) -> bool:
        return self.mode is DeploymentMode.CLOUD


class HttpConfig(BaseModel):
    """Outbound HTTP transport settings."""
    model_config = ConfigDict(frozen=True)

    timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SEC
    verify_ssl: bool = True


class ServerConfig(BaseModel):
    """Stdio host settings."""
    model_config = ConfigDict(frozen=True)

    name: str = "confluence-mcp"
    version: str = "1.0.0"
    log_level: str = DEFAULT_LOG_LEVEL
    tool_call_timeout_seconds: float = DEFAULT_TOOL_CALL_TIMEOUT_SEC
    tool_response_max_chars: int = 0


class ConfluenceConfig(BaseModel):
    """Root configuration object."""
    model_config = ConfigDict(frozen=True)

    connection: ConnectionConfig = Field(default_factory=ConnectionConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    @classmethod
    def from_env(cls) -> "ConfluenceConfig":
        """
        Load configuration from environment variables.

        - CONFLUENCE_BASE_URL: Instance URL (e.g. https://acme.atlassian.net)
        - CONFLUENCE_DEPLOYMENT_TYPE: "cloud" (default) or "datacenter"
        - CONFLUENCE_EMAIL: Account email, Cloud only
        - CONFLUENCE_API_TOKEN: API token (Cloud) or personal access token
        - CONFLUENCE_HTTP_TIMEOUT_SEC: Per-request transport timeout
        - CONFLUENCE_VERIFY_SSL: Verify TLS certificates
        - CONFLUENCE_MCP_LOG_LEVEL: Logging level for the stdio host
        - CONFLUENCE_MCP_TOOL_CALL_TIMEOUT_SEC: Upper bound for one tool call
        - CONFLUENCE_MCP_TOOL_RESPONSE_MAX_CHARS: Truncate tool text (0 = unlimited)
        """
        from confluence_mcp.version import __version__

        raw_type = os.environ.get("CONFLUENCE_DEPLOYMENT_TYPE")
        deployment_type = normalize_deployment_type(raw_type)
        if deployment_type not in {m.value for m in DeploymentMode}:
            logger.warning(
                "Unknown CONFLUENCE_DEPLOYMENT_TYPE '%s'; treating it as a self-hosted instance.",
                raw_type,
            )

        return cls(
            connection=ConnectionConfig(
                base_url=os.environ.get("CONFLUENCE_BASE_URL", ""),
                deployment_type=deployment_type,
                email=os.environ.get("CONFLUENCE_EMAIL", ""),
                api_token=os.environ.get("CONFLUENCE_API_TOKEN", ""),
            ),
            http=HttpConfig(
                timeout_seconds=_parse_positive_float_env(
                    "CONFLUENCE_HTTP_TIMEOUT_SEC", DEFAULT_HTTP_TIMEOUT_SEC
                ),
                verify_ssl=_parse_bool_env("CONFLUENCE_VERIFY_SSL", True),
            ),
            server=ServerConfig(
                version=__version__,
                log_level=_normalize_log_level(os.environ.get("CONFLUENCE_MCP_LOG_LEVEL")),
                tool_call_timeout_seconds=_parse_positive_float_env(
                    "CONFLUENCE_MCP_TOOL_CALL_TIMEOUT_SEC", DEFAULT_TOOL_CALL_TIMEOUT_SEC
                ),
                tool_response_max_chars=_parse_non_negative_int_env(
                    "CONFLUENCE_MCP_TOOL_RESPONSE_MAX_CHARS", 0
                ),
            ),
        )


class DeploymentProfile(BaseModel):
    """A validated, immutable view of the connection settings."""
    model_config = ConfigDict(frozen=True)

    base_url: str
    mode: DeploymentMode
    email: Optional[str] = None
    secret: str = Field(repr=False)

    @property
    def is_cloud(self) -> bool:
        return self.mode is DeploymentMode.CLOUD


class ProfileResolution(NamedTuple):
    profile: Optional[DeploymentProfile]
    ok: bool
    error: Optional[str]


def _blank(value: Optional[str]) -> bool:
    return value is None or value.strip() == ""


def resolve_profile(config: ConfluenceConfig) -> ProfileResolution:
    """
    Validate the connection settings and derive a deployment profile.

    Checks run in a fixed order and the first failure wins:
    base URL, then API token, then (Cloud only) email.
    """
    conn = config.connection
    if _blank(conn.base_url):
        return ProfileResolution(None, False, "Confluence base URL not set (CONFLUENCE_BASE_URL)")
    if _blank(conn.api_token):
        return ProfileResolution(None, False, "Confluence API token not set (CONFLUENCE_API_TOKEN)")

    mode = conn.mode
    if mode is DeploymentMode.CLOUD and _blank(conn.email):
        return ProfileResolution(
            None, False, "Confluence email required for Cloud deployment (CONFLUENCE_EMAIL)"
        )

    profile = DeploymentProfile(
        base_url=conn.base_url.strip(),
        mode=mode,
        email=conn.email.strip() if mode is DeploymentMode.CLOUD else None,
        secret=conn.api_token.strip(),
    )
    return ProfileResolution(profile, True, None)
