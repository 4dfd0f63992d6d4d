from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Must be set in .env
    DATABASE_URL: str
    GATEWAY_SECRET: str  # shared with the identity gateway in front of the service

    APP_NAME: str = "Marketchat"
    LOG_LEVEL: str = "INFO"
    DB_ECHO: bool = False
    CORS_ORIGINS: list[str] = []

    MESSAGE_PAGE_SIZE: int = 50
    CONVERSATION_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 200
    MAX_TEXT_LENGTH: int = 4000
    PREVIEW_LENGTH: int = 200
    SUBSCRIPTION_QUEUE_SIZE: int = 256

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()
