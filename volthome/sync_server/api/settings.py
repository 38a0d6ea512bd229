"""
Configuration for the VoltHome sync HTTP API.

Uses pydantic-settings for environment variable loading.
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class ApiSettings(BaseSettings):
    """HTTP surface configuration loaded from environment."""

    host: str = Field(default="0.0.0.0", description="API bind host")
    port: int = Field(default=8080, description="API bind port")

    # CORS settings
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins",
    )

    # Set by the upstream authentication component
    user_header: str = Field(default="X-User-ID", description="Header carrying the user id")

    # Pagination defaults
    default_page_size: int = Field(default=100, description="Default projects per page")

    model_config = {"env_prefix": "VOLTHOME_API_"}
