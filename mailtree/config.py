import json
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load env values for components that read os.environ directly (e.g., the LLM provider SDKs).
_project_root = Path(__file__).resolve().parents[1]
load_dotenv(_project_root / ".env", override=False)


def _coerce_json(value: str):
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


class Settings(BaseSettings):
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Edit-commit pipeline: quiet period before pending UI edits are folded into canonical state.
    EDIT_DEBOUNCE_SECONDS: float = Field(default=0.5, ge=0.0)
    EDITOR_HISTORY_LIMIT: int = Field(default=100, ge=1)

    AI_PROVIDER_MODEL: str = "gemini-2.5-flash"
    AI_REFINE_TIMEOUT_SECONDS: float = Field(default=60.0, gt=0.0)
    AI_REFINE_TEMPERATURE: float = 0.7
    AI_REFINE_MAX_TOKENS: int = 1000

    RENDER_VIEWPORT_WIDTH: int = 600
    RENDER_DEFAULT_LANG: str = "en"

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        if isinstance(value, str):
            return value.strip().upper() or "INFO"
        return value

    model_config = SettingsConfigDict(env_file=".env", env_json_loads=_coerce_json, extra="ignore")


settings = Settings()
