from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_name: str = "PhysioVerify Workbench"
    env: str = "dev"
    api_prefix: str = "/api"
    log_level: str = "INFO"

    database_url: str = "sqlite:///./physioverify.db"
    seed_demo_data: bool = True

    jwt_secret: str = "CHANGE_ME"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24 * 30

    frontend_origin: str = "http://localhost:3000"

    # Inline edit badges: how long "saved" / "failed" stay visible before the field settles.
    field_success_grace_seconds: float = 0.5
    field_error_grace_seconds: float = 2.0

    # Review policy (deployment-specific).
    max_main_tags: int = 3
    min_review_notes_length: int = 10
    min_reject_notes_length: int = 10
    readiness_disabled_rules: list[str] = []
    readiness_severity_overrides: dict[str, str] = {}


settings = Settings()
