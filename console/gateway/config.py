"""
Configuration for the cvdb HTTP gateway.

Uses pydantic-settings for environment variable loading. Storage, platform
and logging settings belong to the server and are read by
ServerConfig.from_env().
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Gateway configuration loaded from environment."""

    # Bind address
    host: str = Field(default="0.0.0.0", description="Gateway bind host")
    port: int = Field(default=8080, description="Gateway bind port")

    # CORS settings
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins",
    )

    # Identity headers
    principal_header: str = Field(
        default="X-Principal-ID", description="Header carrying the authenticated principal"
    )
    session_header: str = Field(
        default="X-Session-ID", description="Header carrying the anonymous session"
    )

    model_config = {"env_prefix": "CVDB_GATEWAY_"}
