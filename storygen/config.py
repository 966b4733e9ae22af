"""Configuration management with YAML and environment variable support."""

from pathlib import Path
from typing import ClassVar, Optional

import yaml
from pydantic import BaseModel, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

EDUCATIONAL_STYLE = (
    "Educational style, clear and engaging visuals, professional lighting, "
    "warm colors, 16:9 composition, informative and approachable, suitable for students"
)


class YamlConfigSettingsSource(PydanticBaseSettingsSource):
    """Custom settings source that loads configuration from YAML file."""

    def get_field_value(self, field, field_name: str):
        # Not used with prepare method
        pass

    def prepare_field_value(self, field_name: str, field, value, value_is_complex: bool):
        return value

    def __call__(self):
        yaml_path = Path("config.yaml")
        if not yaml_path.exists():
            return {}

        with open(yaml_path) as f:
            data = yaml.safe_load(f) or {}

        return data


class GoogleCloudConfig(BaseModel):
    """Google Cloud configuration.

    project_id is only required once the Vertex collaborators are built.
    """

    project_id: str = ""
    location: str = "us-central1"
    credentials_file: Optional[Path] = None


class ModelsConfig(BaseModel):
    """AI model identifiers."""

    text_gen: str = "gemini-2.5-flash"
    image_gen: str = "gemini-2.5-flash-image"
    video_gen: str = "veo-3.1-generate-preview"


class PipelineConfig(BaseModel):
    """Pipeline execution parameters."""

    scene_count: int = 3
    visual_style: str = EDUCATIONAL_STYLE
    planner_max_attempts: int = 2
    planner_retry_delay: float = 0.4
    image_gen_delay: float = 0.0
    video_poll_interval: float = 10.0
    video_poll_max: int = 60
    video_resolution: str = "1080p"
    video_aspect_ratio: str = "16:9"
    generate_audio: bool = True
    keep_work_files: bool = False


class StorageConfig(BaseModel):
    """Storage and database configuration."""

    database_url: str = "sqlite+aiosqlite:///storygen.db"
    data_dir: Path = Path("data")
    public_base_url: str = "http://localhost:6060"

    @field_validator("data_dir", mode="before")
    @classmethod
    def convert_data_dir_to_path(cls, v):
        """Convert string to Path object."""
        if isinstance(v, str):
            return Path(v)
        return v


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = "0.0.0.0"
    port: int = 6060


class Settings(BaseSettings):
    """Main application settings with YAML and environment variable support.

    Configuration sources (in priority order):
    1. Environment variables (prefix: STORYGEN_, delimiter: __)
    2. .env file
    3. YAML file (config.yaml)
    4. Field defaults
    """

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_nested_delimiter="__",
        env_prefix="STORYGEN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    google_cloud: GoogleCloudConfig = GoogleCloudConfig()
    models: ModelsConfig = ModelsConfig()
    pipeline: PipelineConfig = PipelineConfig()
    storage: StorageConfig = StorageConfig()
    server: ServerConfig = ServerConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ):
        """Customize settings sources to include YAML configuration.

        Priority order (highest to lowest):
        1. Init settings (explicit keyword arguments, used by tests)
        2. Environment variables
        3. .env file
        4. YAML file
        """
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
        )


# Singleton instance
settings = Settings()
