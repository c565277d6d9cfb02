"""
Runtime configuration.

Values come from environment variables prefixed with SUBMISSION_VALIDATOR_
(for example SUBMISSION_VALIDATOR_CHUNK_SIZE=500) or a local .env file.
"""
import os
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = os.path.dirname(os.path.abspath(__file__))


class ValidatorSettings(BaseSettings):
    """Settings for ingestion, evaluation and the HTTP surface"""

    model_config = SettingsConfigDict(
        env_prefix="SUBMISSION_VALIDATOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    chunk_size: int = Field(default=1000, description="Rows held in memory per chunk")
    vertical_lookahead: int = Field(default=50, description="Rows probed below a vertical table header")
    matrix_lookahead: int = Field(default=100, description="Maximum label rows in a matrix table")
    upload_dir: str = Field(
        default=os.path.join(BASE_DIR, "uploads"),
        description="Directory that 'uploads/' prefixed paths resolve against",
    )
    log_dir: str = Field(default=os.path.join(BASE_DIR, "logs"), description="Directory for log files")
    log_level: str = Field(default="INFO", description="Root log level")

    @field_validator("chunk_size", "vertical_lookahead", "matrix_lookahead")
    @classmethod
    def must_be_positive(cls, v):
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v):
        return str(v).upper()


@lru_cache()
def get_settings() -> ValidatorSettings:
    return ValidatorSettings()
