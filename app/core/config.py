from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite+aiosqlite:///./countries.db"
    SQL_ECHO: bool = False

    # Remote countries API (restcountries v2 compatible)
    COUNTRIES_API_URL: str = "https://restcountries.com/v2"
    HTTP_TIMEOUT_SECONDS: float = 30.0

    # Minimum duration of a network refresh, so the UI never flashes
    REFRESH_FLOOR_SECONDS: float = 0.5

    LOG_LEVEL: str = "INFO"

    # This tells Pydantic to read from the .env file
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Create a single instance of the settings to use everywhere
settings = Settings()
