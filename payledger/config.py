"""
Service settings, read from the environment or a .env file.

Environment variables win over .env, which wins over the defaults below.

    from payledger.config import settings
    settings.MAX_WITHDRAWAL_AMOUNT
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central configuration for the ledger service.

    Required fields (no defaults) MUST be set in .env or environment:
      - SECRET_KEY: Verifies JWTs issued by the user/session system
      - PAYMENT_METHOD_ENCRYPTION_KEY: Fernet key for payout tokens at rest
      - WEBHOOK_SECRET: Shared secret the payment gateway signs webhooks with
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # --- Application ---
    APP_NAME: str = "Payment Ledger"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # --- Database ---
    # SQLite for local development; use a postgresql+asyncpg URL in production
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/ledger.db"

    # --- Authentication ---
    # Tokens are minted by the marketplace's user system; we only verify them.
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # --- Payment method encryption ---
    # Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
    PAYMENT_METHOD_ENCRYPTION_KEY: str

    # --- Payment gateway ---
    WEBHOOK_SECRET: str
    PAYOUT_GATEWAY_URL: str | None = None
    BOOKING_SERVICE_URL: str | None = None
    GATEWAY_TIMEOUT_SECONDS: float = 10.0

    # --- Withdrawal limits (minor units) ---
    MAX_WITHDRAWAL_AMOUNT: int = 1_000_000
    MAX_DAILY_WITHDRAWAL: int = 5_000_000

    # --- Concurrency ---
    # Attempts per operation when a concurrent writer touched the same balance
    BALANCE_UPDATE_MAX_RETRIES: int = 5

    # --- CORS ---
    ALLOWED_ORIGINS: list[str] = ["http://localhost:3000"]


# Import this instance everywhere instead of creating new Settings()
settings = Settings()
