from typing import Annotated, Any
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import computed_field, AnyUrl, BeforeValidator


def parse_cors(v: Any) -> list[str] | str:
    if isinstance(v, str) and not v.startswith("["):
        return [i.strip() for i in v.split(",")]
    elif isinstance(v, list | str):
        return v
    raise ValueError(v)


class Settings(BaseSettings):
    APP_NAME: str = "Draftdesk"
    API_PREFIX: str = "/api"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str

    # OpenAI
    OPENAI_API_KEY: str
    OPENAI_MODEL: str = "gpt-4o-mini"
    GENERATION_TEMPERATURE: float = 0.7
    GENERATION_MAX_TOKENS: int = 1000

    # Fact-check pass (second LLM call after each generation)
    DRAFT_VALIDATION_ENABLED: bool = True
    VALIDATION_TEMPERATURE: float = 0.1
    VALIDATION_MAX_TOKENS: int = 300

    # Regeneration quota
    MAX_FREE_REGENERATIONS: int = 3
    REGENERATION_COOLDOWN_HOURS: int = 24

    # Persona used in prompts and confidence scoring
    AGENT_NAME: str = "Alex"
    AGENT_COMPANY: str = "Tandem"

    # Resend transactional email
    RESEND_API_KEY: str
    RESEND_API_URL: str = "https://api.resend.com"
    EMAIL_FROM: str = "Alex from Tandem <onboarding@resend.dev>"
    AGENT_EMAIL: str = "agent@tandem.space"
    # When set, every outbound email is delivered here instead of the seeker
    EMAIL_TEST_RECIPIENT: str | None = None
    SEND_MAX_ATTEMPTS: int = 3
    SEND_BACKOFF_BASE_SECONDS: float = 1.0

    # Demo reviewer recorded on approve/reject/archive when no header is sent
    DEFAULT_REVIEWER: str = "Jenny"

    FRONTEND_HOST: str = "http://localhost:3000"
    BACKEND_CORS_ORIGINS: Annotated[list[AnyUrl] | str, BeforeValidator(parse_cors)] = [
        "http://localhost:8000"
    ]

    @computed_field  # type: ignore[prop-decorator]
    @property
    def ALL_CORS_ORIGINS(self) -> list[str]:
        return [str(origin).rstrip("/") for origin in self.BACKEND_CORS_ORIGINS] + [
            self.FRONTEND_HOST
        ]

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
