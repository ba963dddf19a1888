"""
SDK configuration.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_BASE_URL = "https://ingest.mostlygoodmetrics.com"


class MGMConfiguration(BaseModel):
    """Configuration consumed by AsyncMostlyGoodMetrics.configure().

    Out-of-range values raise pydantic.ValidationError at construction.
    """

    model_config = ConfigDict(frozen=True)

    api_key: str = Field(min_length=1)
    base_url: str = DEFAULT_BASE_URL
    environment: str = "production"
    app_version: Optional[str] = None
    app_build_number: Optional[str] = None
    max_batch_size: int = Field(default=100, ge=1, le=1000)
    flush_interval: int = Field(default=30, ge=1)
    max_stored_events: int = Field(default=10000, ge=100)
    enable_debug_logging: bool = False
    track_app_lifecycle_events: bool = True

    def copy_with(self, **changes: Any) -> "MGMConfiguration":
        """Return a re-validated copy with the given fields replaced."""
        return MGMConfiguration.model_validate({**self.model_dump(), **changes})
