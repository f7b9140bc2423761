"""
Configuration loader for the silhouette ranking service.

Environment variables are centralized here to keep the rest of the code
focused on shape math and to make operational tuning clear. Core functions
never read settings directly: the orchestrator resolves them once and hands
an immutable parameter object to every worker.
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


BACKEND_CHOICES = {"opencv", "numpy"}
EXECUTOR_CHOICES = {"process", "thread"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SILHOUETTE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Image backend + edge map
    backend: str = Field("opencv")
    blur_kernel_size: int = Field(5)
    canny_low_threshold: float = Field(50.0)
    canny_high_threshold: float = Field(150.0)
    mask_threshold: int = Field(128)
    max_long_edge: int = Field(512)

    # Descriptors
    num_harmonics: int = Field(10)

    # Worker pool
    max_workers: Optional[int] = Field(None)
    executor: str = Field("process")

    log_level: str = Field("INFO")

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        v = v.lower()
        if v not in BACKEND_CHOICES:
            raise ValueError("SILHOUETTE_BACKEND must be one of opencv|numpy")
        return v

    @field_validator("executor")
    @classmethod
    def validate_executor(cls, v: str) -> str:
        v = v.lower()
        if v not in EXECUTOR_CHOICES:
            raise ValueError("SILHOUETTE_EXECUTOR must be one of process|thread")
        return v

    @field_validator("blur_kernel_size")
    @classmethod
    def validate_blur_kernel(cls, v: int) -> int:
        # GaussianBlur only accepts odd, positive kernel sizes.
        if v < 1 or v % 2 == 0:
            raise ValueError("SILHOUETTE_BLUR_KERNEL_SIZE must be a positive odd integer")
        return v

    @field_validator("num_harmonics")
    @classmethod
    def validate_harmonics(cls, v: int) -> int:
        if v < 1:
            raise ValueError("SILHOUETTE_NUM_HARMONICS must be >= 1")
        return v

    @field_validator("mask_threshold")
    @classmethod
    def validate_mask_threshold(cls, v: int) -> int:
        if not 0 <= v <= 255:
            raise ValueError("SILHOUETTE_MASK_THRESHOLD must be within 0..255")
        return v

    @field_validator("max_long_edge")
    @classmethod
    def validate_max_long_edge(cls, v: int) -> int:
        if v < 0:
            raise ValueError("SILHOUETTE_MAX_LONG_EDGE must be >= 0 (0 disables resizing)")
        return v

    @field_validator("max_workers")
    @classmethod
    def validate_max_workers(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 1:
            raise ValueError("SILHOUETTE_MAX_WORKERS must be >= 1 when set")
        return v

    @model_validator(mode="after")
    def validate_canny_band(self) -> "Settings":
        if self.canny_high_threshold <= self.canny_low_threshold:
            raise ValueError("canny_high_threshold must exceed canny_low_threshold")
        return self


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings to avoid reparsing env on every call."""
    return Settings()


@dataclass(frozen=True)
class ScoringParams:
    """
    Immutable snapshot of the settings a worker needs.

    Built once per ranking request and shipped to every worker task, so no
    core function has to consult the process-wide settings cache.
    """

    backend: str = "opencv"
    num_harmonics: int = 10
    blur_kernel_size: int = 5
    canny_low_threshold: float = 50.0
    canny_high_threshold: float = 150.0
    mask_threshold: int = 128
    max_long_edge: int = 512

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "ScoringParams":
        settings = settings or get_settings()
        return cls(
            backend=settings.backend,
            num_harmonics=settings.num_harmonics,
            blur_kernel_size=settings.blur_kernel_size,
            canny_low_threshold=settings.canny_low_threshold,
            canny_high_threshold=settings.canny_high_threshold,
            mask_threshold=settings.mask_threshold,
            max_long_edge=settings.max_long_edge,
        )
