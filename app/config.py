"""
Runtime configuration.

Values come from the environment (a local .env file is loaded first), so the
same image runs in development, tests and production.
"""
import os

from dotenv import load_dotenv

load_dotenv()


def _int(name: str, default: int) -> int:
    return int(os.getenv(name, default))


class Settings:
    def __init__(self):
        self.app_env = os.getenv("APP_ENV", "production")
        self.log_level = os.getenv("LOG_LEVEL", "INFO")
        self.database_url = os.getenv("DATABASE_URL", "sqlite:///./authorization.db")

        # QR windows (seconds)
        self.qr1_expiry_seconds = _int("QR1_EXPIRY_SECONDS", 15 * 60)
        self.qr2_expiry_seconds = _int("QR2_EXPIRY_SECONDS", 10 * 60)
        self.qr_image_size = _int("QR_IMAGE_SIZE", 300)

        # OTP policy
        self.otp_expiry_seconds = _int("OTP_EXPIRY_SECONDS", 5 * 60)
        self.otp_max_attempts = _int("OTP_MAX_ATTEMPTS", 3)

        # SMS over AWS SNS; missing credentials disable delivery
        self.aws_region = os.getenv("AWS_REGION", "ap-south-1")
        self.aws_access_key_id = os.getenv("AWS_ACCESS_KEY_ID")
        self.aws_secret_access_key = os.getenv("AWS_SECRET_ACCESS_KEY")
        self.sms_sender_id = os.getenv("AWS_SNS_SENDER_ID", "AuthoSec")
        self.sms_template = os.getenv("SMS_TEMPLATE_TYPE", "default")

        self.company_name = os.getenv("COMPANY_NAME", "AuthoSec")
        self.support_email = os.getenv("SUPPORT_EMAIL", "support@authosec.com")

        self.webhook_secret = os.getenv("IDENTITY_WEBHOOK_SECRET", "")

    @property
    def sms_enabled(self) -> bool:
        return bool(self.aws_access_key_id and self.aws_secret_access_key)

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"


settings = Settings()
