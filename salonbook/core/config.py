from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    PROJECT_NAME: str = "Salon Scheduling Core"

    # Server
    PORT: int = 8000
    ENVIRONMENT: str = "development"

    # Supabase
    SUPABASE_URL: str = ""
    SUPABASE_KEY: str = ""

    # Tables / remote functions
    SALONS_TABLE: str = "salons"
    SERVICES_TABLE: str = "services"
    CLIENTS_TABLE: str = "clients"
    APPOINTMENTS_TABLE: str = "appointments"
    TRANSACTIONS_TABLE: str = "financial_transactions"
    FINANCIAL_POSTING_FUNCTION: str = "process-appointment-completion"

    # Scheduling rules
    TIMEZONE: str = "America/Sao_Paulo"
    SLOT_INTERVAL_MINUTES: int = 30
    BOOKING_LEAD_TIME_MINUTES: int = 60

    # Financial posting: "function" (remote edge function) or "direct" (table writes)
    FINANCIAL_POSTING_MODE: str = "function"
    # 1 = no automatic retry, failures are left to the caller
    FINANCIAL_SYNC_MAX_ATTEMPTS: int = 1
    FINANCIAL_SYNC_RETRY_DELAY_SECONDS: float = 0.5

    # Logging
    LOG_LEVEL: str = "INFO"
    ERROR_LOG_PATH: str = "logs/errors.log"

    class Config:
        env_file = ".env"
        case_sensitive = True

settings = Settings()
