from typing import List, cast
from pydantic import AnyHttpUrl, computed_field
from pydantic_core import MultiHostUrl
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Application
    PROJECT_NAME: str = "PT Payroll"
    VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"
    APP_ENV: str = "development"

    # Security
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    GYM_TIMEZONE: str = "Asia/Singapore"

    # Validation
    BACKEND_CORS_ORIGINS: List[AnyHttpUrl] = []

    # Payroll rules
    CPF_RATE: float = 0.17
    DEFAULT_SESSION_PRICE: float = 90.0
    PT_COMMISSION_RATIO: float = 0.5
    DEFAULT_CLASS_RATE: float = 50.0
    DEFAULT_CLASS_DURATION_MINUTES: int = 60
    EDIT_COMMISSION_TABLE: dict[str, float] = {
        "solo_package": 40.0,
        "solo_single": 50.0,
        "buddy": 60.0,
        "house_call": 70.0,
    }

    # Payslip automation
    PAYSLIP_AUTO_ENABLED: bool = False
    PAYSLIP_AUTO_DAY: int = 1
    PAYSLIP_AUTO_HOUR_LOCAL: int = 6
    PAYSLIP_AUTO_MINUTE_LOCAL: int = 0

    # Database
    DATABASE_URL: str | None = None
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_DB: str = "ptpay"

    @computed_field
    @property
    def SQLALCHEMY_DATABASE_URI(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return str(cast(MultiHostUrl, MultiHostUrl.build(
            scheme="postgresql+asyncpg",
            username=self.POSTGRES_USER,
            password=self.POSTGRES_PASSWORD,
            host=self.POSTGRES_HOST,
            port=self.POSTGRES_PORT,
            path=self.POSTGRES_DB,
        )))

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

settings = Settings()  # type: ignore
