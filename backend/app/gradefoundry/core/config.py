from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="GF_", env_file=".env", extra="ignore")

    ENV: str = Field(default="dev")
    DB_URL: str = Field(default="sqlite:///./gradefoundry.db")
    LOG_LEVEL: str = Field(default="INFO")
    LOG_DIR: str = Field(default="logs")
    # 每次运行的临时目录根（默认使用系统临时目录）
    WORK_DIR: str | None = Field(default=None)

    # Generative text (OpenAI-compatible chat completions)
    LLM_BASE_URL: str = Field(default="https://api.openai.com/v1")
    LLM_API_KEY: str | None = Field(default=None)
    LLM_MODEL: str = Field(default="gpt-4o")
    LLM_TEMPERATURE: float = Field(default=0.3)
    LLM_TIMEOUT_S: float = Field(default=120.0)
    LLM_MAX_RETRIES: int = Field(default=3)

    # Optional override of docker/podman detection
    CONTAINER_RUNTIME: str | None = Field(default=None)

settings = Settings()
