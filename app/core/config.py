from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    JWT_SECRET_KEY: str = "dev-secret-key-change-in-production"
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Credenciales de acceso al escáner
    OTP_TTL_SECONDS: int = 600
    OTP_LENGTH: int = 6
    GATE_AUTHORIZATION_TTL_MINUTES: int = 720  # 12 horas para OTP / password / staff
    GATE_VENDOR_PASSWORD: str = ""
    GATE_ADMIN_PASSWORD: str = ""
    GATE_ADMIN_EMAIL: str = ""

    # Terminal de escaneo
    TICKET_CODE_PREFIX: str = "TKT-"
    SCAN_COOLDOWN_SECONDS: float = 8.0
    RESULT_DISMISS_TIMEOUT_SECONDS: float = 10.0
    COUNTDOWN_INTERVAL_SECONDS: float = 1.0

    # Resend Configuration
    RESEND_API_KEY: str = ""
    RESEND_FROM_EMAIL: str = "otp@example.local"

    # Twilio (SMS)
    TWILIO_ACCOUNT_SID: str = ""
    TWILIO_AUTH_TOKEN: str = ""
    TWILIO_PHONE_NUMBER: str = ""

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignorar campos extra en .env que no están en el modelo

settings = Settings()
