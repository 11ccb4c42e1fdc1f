"""
Runtime configuration for the Road Defect Reporting backend using Pydantic Settings.
Values come from the process environment, optionally seeded from a .env file.
"""

import os
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "https://localhost:3000",
    "https://127.0.0.1:3000",
]

DEFAULT_WARDS_GEOJSON_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "data", "wards.geojson")


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Database
    database_url: Optional[str] = None

    # Observability
    log_level: str = "INFO"
    expose_error_detail: bool = True

    # CORS: comma separated origins added to the localhost defaults
    extra_cors_origins: str = Field("", validation_alias="CORS_ORIGINS")

    # Auth
    jwt_secret: Optional[str] = None
    jwt_algorithm: str = "HS256"

    # External APIs - Overpass
    overpass_api_url: str = "https://overpass-api.de/api/interpreter"
    road_lookup_radius_m: int = 50

    # Ward boundaries
    wards_geojson_path: str = DEFAULT_WARDS_GEOJSON_PATH

    port: int = 8000

    @field_validator("log_level", mode="before")
    @classmethod
    def upper_log_level(cls, v):
        return v.strip().upper() if isinstance(v, str) else v

    @property
    def cors_origins(self) -> List[str]:
        extra = [o.strip() for o in self.extra_cors_origins.split(",") if o.strip()]
        return DEFAULT_CORS_ORIGINS + extra


settings = Settings()
