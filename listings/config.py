from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    DATABASE_URL: str
    JWT_SECRET: str
    REDIS_URL: str | None = None

    ACCESS_TOKEN_DAYS: int = 7
    PASSWORD_RESET_MINUTES: int = 15
    # Returns the reset token in the API response; only for environments without SMS delivery.
    EXPOSE_RESET_TOKEN: bool = False
    CORS_ORIGINS: str = "*"

    R2_ENDPOINT: str = ""
    R2_ACCESS_KEY_ID: str = ""
    R2_SECRET_ACCESS_KEY: str = ""
    R2_BUCKET: str = ""
    R2_PUBLIC_BASE_URL: str = ""
    R2_KEY_PREFIX: str = "listings"

    DEFAULT_AVATAR_URL: str = "/icons/profile.gif"
    DEFAULT_PROPERTY_IMAGE: str = "/icons/bg-1.webp"

    IMAGE_BACKUP_DIR: str = "backups/images"
    IMAGE_SOURCE_DIRS: str = "public/icons,public/uploads"
    MAX_IMAGE_BACKUPS: int = 5

    OWNER_VIEW_COOLDOWN_MINUTES: int = 60
    EXCESSIVE_VIEW_THRESHOLD: int = 5
    VIEW_HISTORY_LIMIT: int = 500
    QUALITY_RECALC_MINUTES: int = 30
    HEALTH_CACHE_SECONDS: int = 300
    REPORT_CACHE_SECONDS: int = 3600
    AUTO_CREATE_TABLES: bool = False
    SCHEDULER_ENABLED: bool = True

    class Config:
        env_file = ".env"

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()] or ["*"]

    @property
    def image_source_dirs(self) -> list[str]:
        return [d.strip() for d in self.IMAGE_SOURCE_DIRS.split(",") if d.strip()]

settings = Settings()
