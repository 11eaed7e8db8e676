from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "sqlite:///./rct_allocator.db"

    # Logging
    LOG_LEVEL: str = "INFO"

    # Application
    APP_TITLE: str = "RCT allocator"
    APP_VERSION: str = "0.1.0"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


config_settings = Settings()
