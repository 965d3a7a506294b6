from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    ENV: str = "dev"                # "dev" / "staging" / "prod"
    SERVICE_NAME: str = "checkout-core"

    class Config:
        env_file = ".env"
        extra="ignore"

admin_config = Settings()
