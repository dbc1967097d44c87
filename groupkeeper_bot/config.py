from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ABUSIVE_TERMS = [
    "fuck",
    "shit",
    "asshole",
    "bitch",
    "dick",
    "pussy",
    "cunt",
    "whore",
    "slut",
    "bastard",
]

DEFAULT_EXPLICIT_TERMS = [
    "slut", "whore", "bitch", "fuck", "sex", "porn", "xxx", "nude", "naked",
    "ass", "tits", "boobs", "cock", "dick", "pussy", "cunt", "vagina", "penis",
    "anal", "cum", "jizz", "hooker", "escort", "stripper", "hoe", "thot",
]


class ModerationPolicySettings(BaseModel):
    ban_threshold: int = Field(default=3, ge=1, description="Violations that trigger removal.")
    warning_cooldown_seconds: float = Field(default=60.0, ge=0)


class PipelineSettings(BaseModel):
    omni_model: str = "omni-moderation-latest"
    vision_model: str = "gpt-4o"
    stage_timeout_seconds: float = Field(default=20.0, gt=0)
    payload_scan_enabled: bool = False
    payload_min_term_length: int = Field(default=5, ge=1)
    ocr_scan_enabled: bool = True
    explicit_terms: list[str] = Field(default_factory=lambda: list(DEFAULT_EXPLICIT_TERMS))


class MediaSettings(BaseModel):
    max_dimension: int = Field(default=512, ge=16)
    jpeg_quality: int = Field(default=80, ge=1, le=95)
    ffmpeg_binary: str = "ffmpeg"
    primary_frame_offset: str = "00:00:01"
    fallback_frame_offset: str = "00:00:00.5"
    frame_timeout_seconds: float = Field(default=30.0, gt=0)
    temp_dir: Optional[str] = None


class AlertSettings(BaseModel):
    tick_seconds: float = Field(default=60.0, gt=0)


class TermSettings(BaseModel):
    global_terms_path: str = "abusive_terms.json"
    default_terms: list[str] = Field(default_factory=lambda: list(DEFAULT_ABUSIVE_TERMS))


class OpenAISettings(BaseModel):
    api_key: str
    base_url: str = "https://api.openai.com/v1"
    timeout_seconds: float = 15.0


class StorageSettings(BaseModel):
    sqlite_path: str = "groupkeeper.db"


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Logging level: DEBUG, INFO, WARNING, ERROR")
    use_json: bool = Field(default=False, description="Use JSON format instead of colored output")


class BotSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="GROUPKEEPER_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    telegram_token: str = Field(..., description="Telegram bot token.")
    operator_user_id: Optional[int] = Field(
        default=None,
        description="Bot operator account; exempt from moderation and allowed to edit global terms.",
    )
    welcome_new_members: bool = Field(default=True, description="Greet people who join a moderated group.")
    openai: OpenAISettings
    moderation: ModerationPolicySettings = ModerationPolicySettings()
    pipeline: PipelineSettings = PipelineSettings()
    media: MediaSettings = MediaSettings()
    alerts: AlertSettings = AlertSettings()
    terms: TermSettings = TermSettings()
    storage: StorageSettings = StorageSettings()
    logging: LoggingSettings = LoggingSettings()
