"""
Configuration management for slidestream.

Values come from environment variables prefixed with ``SLIDESTREAM_`` or
from a local ``.env`` file.
"""

from typing import List, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .streaming.record_parser import RecordSchema, min_lookahead_size


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SLIDESTREAM_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Upstream agent service
    UPSTREAM_URL: str = Field(
        default="http://localhost:3001/api/stream-with-user",
        description="Streaming endpoint of the slide agent"
    )
    STREAM_TIMEOUT: float = Field(default=30.0, description="Timeout for the first chunk in seconds")
    CHUNK_TIMEOUT: float = Field(default=15.0, description="Timeout between chunks in seconds")
    MAX_DURATION: float = Field(default=300.0, description="Maximum total stream duration in seconds")

    # Parsing
    LOOKAHEAD_SIZE: int = Field(default=32, description="Rolling window used for marker matching")
    LEAD_IN_MARKERS: List[str] = Field(
        default_factory=list,
        description="Extra regular expressions recognised as the start of the JSON document"
    )
    STRICT_GRAMMAR: bool = Field(default=False, description="Raise on grammar violations instead of skipping")

    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO", description="Root log level")

    @field_validator("LOOKAHEAD_SIZE")
    @classmethod
    def lookahead_large_enough(cls, v: int) -> int:
        minimum = min_lookahead_size(RecordSchema())
        if v < minimum:
            raise ValueError(f"LOOKAHEAD_SIZE must be at least {minimum} characters")
        return v


def get_settings() -> Settings:
    return Settings()
