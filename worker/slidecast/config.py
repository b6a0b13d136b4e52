"""
Pipeline Configuration

Settings class using pydantic-settings for environment variable loading.
Centralizes every timing, chunking, retry and timeout constant used by the
render and publish pipeline so components never re-declare them.
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Literal, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

KIB = 1024
MIB = 1024 * 1024

# Resumable upload servers require non-final chunks in multiples of this size
PLATFORM_CHUNK_GRANULARITY = 256 * KIB

# S3-compatible stores reject non-final parts below 5 MiB
MIN_PART_SIZE = 5 * MIB


# ============================================================================
# Encoding Profiles
# ============================================================================


@dataclass(frozen=True)
class EncodingProfile:
    """
    Encoder settings for the final composed video.

    Codec names are the ffmpeg encoder names; the *_label fields are what
    ffprobe reports for the produced streams and what gets persisted.
    """

    name: str
    container: str
    extension: str
    mime_type: str
    video_encoder: str
    audio_encoder: str
    video_codec_label: str
    audio_codec_label: str
    video_bitrate: str
    audio_bitrate: str
    crf: int
    preset: str = "medium"


ENCODING_PROFILES: Dict[str, EncodingProfile] = {
    "h264": EncodingProfile(
        name="h264",
        container="mp4",
        extension="mp4",
        mime_type="video/mp4",
        video_encoder="libx264",
        audio_encoder="aac",
        video_codec_label="h264",
        audio_codec_label="aac",
        video_bitrate="4M",
        audio_bitrate="128k",
        crf=23,
        preset="veryfast",
    ),
    "vp9": EncodingProfile(
        name="vp9",
        container="webm",
        extension="webm",
        mime_type="video/webm",
        video_encoder="libvpx-vp9",
        audio_encoder="libopus",
        video_codec_label="vp9",
        audio_codec_label="opus",
        video_bitrate="4M",
        audio_bitrate="128k",
        crf=30,
        preset="good",
    ),
}


RESOLUTIONS = {
    "portrait": (1080, 1920),
    "landscape": (1920, 1080),
}


class PipelineSettings(BaseSettings):
    """
    Pipeline settings loaded from environment variables.

    All settings can be overridden via SLIDECAST_-prefixed environment
    variables, e.g. SLIDECAST_TRANSITION_DURATION_SEC=0.5.
    """

    model_config = SettingsConfigDict(
        env_prefix="SLIDECAST_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Timeline
    transition_duration_sec: float = Field(
        default=1.0,
        gt=0,
        description="Cross-fade duration, also padded onto every slide",
    )
    fps: int = Field(default=25, gt=0, le=120, description="Output frame rate")
    max_zoom: float = Field(default=1.2, description="Zoom reached by the end of a slide")

    # Composition
    render_backend: Literal["ffmpeg", "scene"] = Field(
        default="ffmpeg",
        description="Render engine used to execute composition plans",
    )
    encoding_profile: Literal["h264", "vp9"] = Field(
        default="h264",
        description="Output codec/container profile",
    )
    overlay_locale: Literal["ja", "en"] = Field(
        default="ja",
        description="Locale of the burned-in date badge",
    )
    overlay_font_file: str = Field(
        default="/usr/share/fonts/opentype/noto/NotoSansCJK-Bold.ttc",
        description="Font used by the date badge",
    )
    overlay_font_size: int = Field(default=36, gt=0)
    scene_entry_point: str = Field(
        default="/opt/scene-template/src/index.ts",
        description="Entry point of the declarative scene project inside the sandbox",
    )
    scene_composition_id: str = Field(default="DynamicVideo")

    # Sandbox
    sandbox_create_attempts: int = Field(default=3, ge=1)
    sandbox_retry_base_delay_sec: float = Field(default=2.0, ge=0)
    sandbox_retry_backoff_factor: float = Field(default=2.0, ge=1.0)
    sandbox_lifetime_sec: int = Field(
        default=600,
        gt=0,
        description="Wall-clock ceiling for one sandbox session",
    )
    sandbox_memory_limit_mb: Optional[int] = Field(
        default=None,
        description="Address space ceiling for commands run in a local sandbox",
    )
    sandbox_cpu_limit_sec: Optional[int] = Field(default=None)
    sandbox_root: Optional[str] = Field(
        default=None,
        description="Parent directory for local sandbox workspaces",
    )
    render_timeout_sec: int = Field(default=300, gt=0)
    probe_timeout_sec: int = Field(default=60, gt=0)
    asset_fetch_timeout_sec: int = Field(default=60, gt=0)
    asset_fetch_attempts: int = Field(default=3, ge=1)
    asset_fetch_retry_base_delay_sec: float = Field(default=1.0, ge=0)
    asset_fetch_concurrency: int = Field(default=4, ge=1)
    duration_tolerance_sec: float = Field(
        default=1.5,
        ge=0,
        description="Allowed gap between probed and nominal duration",
    )

    # Artifact extraction
    extract_read_size: int = Field(default=4 * MIB, gt=0)
    extract_encoding: Literal["binary", "base64"] = Field(
        default="binary",
        description="Transfer encoding used to read the artifact out of the sandbox",
    )

    # Storage transport
    storage_backend: Literal["s3", "local"] = Field(default="local")
    storage_part_size: int = Field(default=15 * MIB)
    storage_part_attempts: int = Field(default=3, ge=1)
    storage_part_retry_base_delay_sec: float = Field(default=1.0, ge=0)
    storage_local_root: str = Field(default="/data/objects")
    storage_bucket: str = Field(default="slidecast-assets")
    storage_endpoint_url: Optional[str] = Field(default=None)
    storage_region: str = Field(default="auto")
    storage_access_key_id: Optional[str] = Field(default=None)
    storage_secret_access_key: Optional[str] = Field(default=None)
    storage_public_base_url: Optional[str] = Field(default=None)
    storage_timeout_sec: int = Field(default=120, gt=0)

    # Platform transport
    platform_upload_url: str = Field(
        default="https://www.googleapis.com/upload/youtube/v3/videos",
    )
    platform_api_url: str = Field(default="https://www.googleapis.com/youtube/v3")
    platform_access_token: Optional[str] = Field(default=None)
    platform_chunk_size: int = Field(default=8 * MIB)
    platform_chunk_timeout_sec: float = Field(default=120.0, gt=0)
    platform_chunk_attempts: int = Field(default=3, ge=1)
    platform_chunk_retry_base_delay_sec: float = Field(default=1.0, ge=0)
    platform_category_id: str = Field(default="25")
    platform_language: str = Field(default="ja")
    platform_tags: str = Field(
        default="日本,ニュース,Japan,News",
        description="Comma-separated default tags",
    )
    processing_poll_interval_sec: float = Field(default=5.0, gt=0)
    processing_max_wait_sec: float = Field(default=30 * 60, gt=0)

    # Job timeouts
    render_job_timeout_sec: int = Field(default=3600, gt=0)
    publish_job_timeout_sec: int = Field(default=3600, gt=0)

    @field_validator("max_zoom")
    @classmethod
    def _zoom_not_below_identity(cls, value: float) -> float:
        if value < 1.0:
            raise ValueError("max_zoom must be >= 1.0")
        return value

    @field_validator("platform_chunk_size")
    @classmethod
    def _chunk_size_granularity(cls, value: int) -> int:
        if value <= 0 or value % PLATFORM_CHUNK_GRANULARITY != 0:
            raise ValueError(
                f"platform_chunk_size must be a positive multiple of {PLATFORM_CHUNK_GRANULARITY}"
            )
        return value

    @field_validator("storage_part_size")
    @classmethod
    def _part_size_floor(cls, value: int) -> int:
        if value < MIN_PART_SIZE:
            raise ValueError(f"storage_part_size must be at least {MIN_PART_SIZE} bytes")
        return value

    @model_validator(mode="after")
    def _render_fits_sandbox(self) -> "PipelineSettings":
        if self.render_timeout_sec > self.sandbox_lifetime_sec:
            raise ValueError("render_timeout_sec cannot exceed sandbox_lifetime_sec")
        return self

    @property
    def profile(self) -> EncodingProfile:
        """Encoding profile selected by encoding_profile."""
        return ENCODING_PROFILES[self.encoding_profile]

    @property
    def tags_list(self) -> list[str]:
        """Parse default tags from comma-separated string to list."""
        return [tag.strip() for tag in self.platform_tags.split(",") if tag.strip()]



def setting_default(name: str):
    """
    Declared default of a PipelineSettings field.

    Components that can be built without a settings object take their
    keyword defaults from here.
    """
    return PipelineSettings.model_fields[name].default

@lru_cache()
def get_settings() -> PipelineSettings:
    """
    Get cached pipeline settings instance.

    Components accept an explicit settings argument; this is only the
    default used by the RQ tasks and the CLI.

    Returns:
        PipelineSettings: Pipeline settings instance
    """
    return PipelineSettings()
