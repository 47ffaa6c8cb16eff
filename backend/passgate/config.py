from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str
    REDIS_URL: str = "redis://localhost:6379/0"
    RP_ID: str = "localhost"
    RP_NAME: str = "Passgate"
    ORIGIN: str = "http://localhost:8080"
    ALLOWED_ORIGINS: str = "http://localhost:8080"
    SESSION_SECRET: str
    RATE_LIMIT: int = 10
    RATE_LIMIT_WINDOW: int = 60
    ADMISSION_ENABLED: bool = True
    TRUSTED_PROXY_HEADER: str = ""
    LOG_LEVEL: str = "INFO"
    ENV: str = "dev"

    @property
    def allowed_origins_list(self) -> List[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]

settings = Settings()
