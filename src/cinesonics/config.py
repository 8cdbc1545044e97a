from pydantic import BaseModel, Field
import os
from typing import Any, Dict, List
from dotenv import load_dotenv


load_dotenv(override=False)


class Settings(BaseModel):
    pollinations_api_key: str = Field(default_factory=lambda: os.environ.get("POLLINATIONS_API_KEY", ""))
    host: str = Field(default_factory=lambda: os.environ.get("CINESONICS_HOST", "0.0.0.0"))
    port: int = Field(default_factory=lambda: int(os.environ.get("PORT", "3000")))
    text_api_base: str = Field(default_factory=lambda: os.environ.get("CINESONICS_TEXT_API_BASE", "https://gen.pollinations.ai/v1"))
    image_api_base: str = Field(default_factory=lambda: os.environ.get("CINESONICS_IMAGE_API_BASE", "https://gen.pollinations.ai/image"))
    text_model: str = Field(default_factory=lambda: os.environ.get("CINESONICS_TEXT_MODEL", "qwen-safety"))
    image_model: str = Field(default_factory=lambda: os.environ.get("CINESONICS_IMAGE_MODEL", "flux"))
    image_size: int = Field(default_factory=lambda: int(os.environ.get("CINESONICS_IMAGE_SIZE", "768")))
    temperature: float = Field(default_factory=lambda: float(os.environ.get("CINESONICS_TEMPERATURE", "0.9")))
    global_limit: int = Field(default_factory=lambda: int(os.environ.get("CINESONICS_GLOBAL_LIMIT", "11")))
    user_limit: int = Field(default_factory=lambda: int(os.environ.get("CINESONICS_USER_LIMIT", "2")))
    max_vibe_chars: int = Field(default_factory=lambda: int(os.environ.get("CINESONICS_MAX_VIBE_CHARS", "600")))
    cover_ttl_seconds: float = Field(default_factory=lambda: float(os.environ.get("CINESONICS_COVER_TTL", "300")))
    sweep_interval_seconds: float = Field(default_factory=lambda: float(os.environ.get("CINESONICS_SWEEP_INTERVAL", "60")))
    upstream_timeout: float = Field(default_factory=lambda: float(os.environ.get("CINESONICS_UPSTREAM_TIMEOUT", "600")))
    upstream_retries: int = Field(default_factory=lambda: int(os.environ.get("CINESONICS_UPSTREAM_RETRIES", "3")))
    cors_origins: str = Field(default_factory=lambda: os.environ.get("CINESONICS_CORS_ORIGINS", "*"))

    def origins(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    def redacted(self) -> Dict[str, Any]:
        s = self.model_dump()
        if s.get("pollinations_api_key"):
            s["pollinations_api_key"] = "***redacted***"
        return s


settings = Settings()
