"""
CodeBridge Configuration
Environment-driven settings for database, auth and integrations
"""

import os
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Runtime settings read from the environment"""

    def __init__(self):
        # Database
        self.MONGO_URL = os.getenv("MONGO_URL", "mongodb://localhost:27017")
        self.MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "codebridge_db")

        # Auth
        self.JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "")
        self.JWT_ALGORITHM = "HS256"
        self.JWT_EXPIRE_DAYS = int(os.getenv("JWT_EXPIRE_DAYS", "30"))

        # HTTP
        self.CORS_ORIGINS = self._parse_list(os.getenv("CORS_ORIGINS", "*"))
        self.CLIENT_URL = os.getenv("CLIENT_URL", "http://localhost:5173")
        self.VERSION = os.getenv("VERSION", "1.0.0")
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

        # Zoom (Server-to-Server OAuth)
        self.ZOOM_ACCOUNT_ID = os.getenv("ZOOM_ACCOUNT_ID")
        self.ZOOM_CLIENT_ID = os.getenv("ZOOM_CLIENT_ID")
        self.ZOOM_CLIENT_SECRET = os.getenv("ZOOM_CLIENT_SECRET")
        self.ZOOM_WEBHOOK_SECRET = os.getenv("ZOOM_WEBHOOK_SECRET")

        # Gemini
        self.GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
        self.GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash-lite")

        # Razorpay
        self.RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID")
        self.RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET")
        self.RAZORPAY_WEBHOOK_SECRET = os.getenv("RAZORPAY_WEBHOOK_SECRET")

        # SMTP (email is off while SMTP_HOST is unset)
        self.SMTP_HOST = os.getenv("SMTP_HOST")
        self.SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
        self.SMTP_USERNAME = os.getenv("SMTP_USERNAME")
        self.SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
        self.EMAIL_FROM = os.getenv("EMAIL_FROM", "noreply@codebridge.dev")
        self.EMAIL_FROM_NAME = os.getenv("EMAIL_FROM_NAME", "CodeBridge")

    @staticmethod
    def _parse_list(value: str) -> List[str]:
        """Parse comma-separated values into a list"""
        return [item.strip() for item in value.split(",") if item.strip()]

    @staticmethod
    def require(key: str, value: Optional[str]) -> str:
        """Return a mandatory setting or fail loudly"""
        if not value:
            raise RuntimeError(f"Missing required environment variable: {key}")
        return value

    @property
    def jwt_secret(self) -> str:
        return self.require("JWT_SECRET_KEY", self.JWT_SECRET_KEY)


settings = Settings()
