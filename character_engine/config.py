"""
Configuration for the Character Engine service.

This module defines the runtime options for the conversational pipeline:
provider endpoints and models, audio segmentation thresholds, text generation
parameters and the HTTP server binding.
"""

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .core.errors import ConfigurationError


DEFAULT_VOICE_ID = "Dennis"
DEFAULT_LLM_MODEL_NAME = "meta-llama/Llama-3.1-70b-Instruct"
DEFAULT_PROVIDER = "inworld"


class TextGenerationSettings(BaseSettings):
    """Sampling parameters passed to the text generator."""

    model_config = SettingsConfigDict(env_prefix="TEXT_GENERATION_", extra="ignore")

    max_new_tokens: int = Field(default=500, ge=1, description="Maximum tokens to generate")
    max_prompt_length: int = Field(default=1000, ge=1, description="Maximum prompt length")
    repetition_penalty: float = Field(default=1.0, ge=0.0)
    top_p: float = Field(default=0.5, ge=0.0, le=1.0)
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    frequency_penalty: float = Field(default=0.0)
    presence_penalty: float = Field(default=0.0)
    stop_sequences: List[str] = Field(default_factory=lambda: ["\n"])


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service configuration
    service_name: str = Field(default="character-engine")
    host: str = Field(default="0.0.0.0", description="Host to bind to")
    port: int = Field(default=4000, ge=1, le=65535, description="Port to listen on")
    log_level: str = Field(default="info", description="Logging level")
    log_format: str = Field(default="json", description="Log format: json or pretty")

    # Provider access
    api_key: str = Field(..., min_length=1, description="API key for the generation services")
    api_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL of the OpenAI-compatible generation services",
    )
    request_timeout: float = Field(default=60.0, gt=0)

    # Models
    llm_model_name: str = Field(default=DEFAULT_LLM_MODEL_NAME)
    llm_provider: str = Field(default=DEFAULT_PROVIDER)
    voice_id: str = Field(default=DEFAULT_VOICE_ID)
    tts_model_name: str = Field(default="tts-1")
    stt_model_name: str = Field(default="whisper-1")

    # Audio segmentation
    sample_rate: int = Field(default=16000, ge=8000, le=48000)
    pause_duration_threshold_ms: float = Field(
        default=1000.0,
        gt=0,
        description="Silence after speech that finalizes an utterance",
    )
    frame_per_buffer: int = Field(
        default=1024,
        ge=0,
        description="Audio messages shorter than this many samples are ignored",
    )
    vad_energy_threshold_db: float = Field(default=-35.0, le=0)
    vad_energy_smoothing: float = Field(default=0.5, ge=0.0, lt=1.0)

    # Dialog
    prompt_template_path: Optional[Path] = Field(
        default=None,
        description="File overriding the built-in dialog prompt template",
    )
    text_generation: TextGenerationSettings = Field(default_factory=TextGenerationSettings)

    # Behaviour
    interaction_end_after_error: bool = Field(
        default=True,
        description="Send INTERACTION_END after an ERROR event",
    )
    graph_visualization_enabled: bool = Field(
        default=False,
        description="Write the pipeline graphs as Graphviz DOT at startup",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"debug", "info", "warning", "error", "critical"}
        if v.lower() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.lower()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        if v.lower() not in {"json", "pretty"}:
            raise ValueError(f"Invalid log format: {v}")
        return v.lower()

    @field_validator("prompt_template_path")
    @classmethod
    def validate_prompt_template_path(cls, v: Optional[Path]) -> Optional[Path]:
        if v is not None and not v.is_file():
            raise ValueError(f"Prompt template not found: {v}")
        return v


def load_settings(**overrides) -> Settings:
    """Build settings from the environment, raising ConfigurationError when invalid."""
    try:
        return Settings(**overrides)
    except ValidationError as e:
        fields = [".".join(str(part) for part in err["loc"]) for err in e.errors()]
        raise ConfigurationError(
            f"Invalid configuration: {', '.join(fields)}",
            details={"errors": e.errors(include_url=False, include_context=False)},
        ) from e


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return load_settings()
