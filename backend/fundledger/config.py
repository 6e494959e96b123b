from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "postgresql+asyncpg://fund_admin:fund_secret@db:5432/fundledger"
    JWT_SECRET: str = "fundledger-jwt-secret-change-in-production"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRY_MINUTES: int = 480
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]
    AUDIT_STORAGE_PATH: str = "./audit_storage"
    AUDIT_READ_RETENTION_DAYS: int = 90
    AUDIT_SYSTEM_RETENTION_DAYS: int = 30

    class Config:
        env_file = ".env"


settings = Settings()
