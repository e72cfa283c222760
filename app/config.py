from pydantic_settings import BaseSettings, NoDecode
from pydantic import Field, field_validator
from typing import Annotated, List, Optional

class Settings(BaseSettings):
    # Basic environment settings
    ENVIRONMENT: str = Field("development", env="ENVIRONMENT")
    HOST: str = Field("0.0.0.0", env="HOST")
    PORT: int = Field(8000, env="PORT")

    # CORS settings: Allowed origins should be provided as a comma-separated list in the env var.
    ALLOWED_ORIGINS: Annotated[List[str], NoDecode] = Field(default=["http://localhost", "http://127.0.0.1"], env="ALLOWED_ORIGINS")

    # Logging configuration
    LOG_LEVEL: str = Field("INFO", env="LOG_LEVEL")
    LOG_FILE_PATH: str = Field("logs/app.log", env="LOG_FILE_PATH")

    # Vision provider. VISION_BASE_URL can point at any OpenAI-compatible endpoint,
    # e.g. https://generativelanguage.googleapis.com/v1beta/openai/ for Gemini.
    OPENAI_API_KEY: Optional[str] = Field(None, env="OPENAI_API_KEY")
    VISION_MODEL: str = Field("gpt-4o", env="VISION_MODEL")
    VISION_BASE_URL: Optional[str] = Field(None, env="VISION_BASE_URL")
    VISION_TIMEOUT_SECONDS: float = Field(60.0, env="VISION_TIMEOUT_SECONDS")

    # Agent loop settings
    PROVIDER_RETRY_BUDGET: int = Field(3, env="PROVIDER_RETRY_BUDGET")
    RETRY_BACKOFF_SECONDS: float = Field(1.0, env="RETRY_BACKOFF_SECONDS")
    HISTORY_MAX_EXCHANGES: int = Field(10, env="HISTORY_MAX_EXCHANGES")
    JOB_TIMEOUT_SECONDS: int = Field(1800, env="JOB_TIMEOUT_SECONDS")
    BROWSER_HEADLESS: bool = Field(True, env="BROWSER_HEADLESS")

    # Job registry
    JOB_TTL_SECONDS: int = Field(6 * 3600, env="JOB_TTL_SECONDS")
    JOB_STORE_MAXSIZE: int = Field(500, env="JOB_STORE_MAXSIZE")

    # Scheduled jobs
    DATABASE_URL: str = Field("sqlite+aiosqlite:///./funnel_swiper.db", env="DATABASE_URL")
    AGENT_API_URL: str = Field("http://localhost:8000", env="AGENT_API_URL")
    CRON_SECRET: str = Field("", env="CRON_SECRET")

    @field_validator("ALLOWED_ORIGINS", mode="before")
    def assemble_allowed_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

# Create a single instance of the settings that can be imported anywhere in the project.
settings = Settings()
