"""
Application configuration
All values come from environment variables; Firebase credentials are
only mandatory when APP_ENV=production.
"""

import os
from typing import List, Optional


class Settings:
    """Validated configuration read once at import time"""

    def __init__(self):
        self.APP_ENV = os.getenv("APP_ENV", "development").lower()
        self.MONGODB_URI = os.getenv("MONGODB_URI", "mongodb://localhost:27017")
        self.MONGODB_DB = os.getenv("MONGODB_DB", "vidya_test_series")
        self.FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")
        self.CORS_ORIGINS = self._parse_origins(os.getenv("CORS_ORIGINS", ""))
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self.PORT = int(os.getenv("PORT", "8000"))
        self.DEFAULT_PASSING_SCORE = int(os.getenv("DEFAULT_PASSING_SCORE", "60"))

        self.FIREBASE_PROJECT_ID = os.getenv("FIREBASE_PROJECT_ID")
        self.FIREBASE_CLIENT_EMAIL = os.getenv("FIREBASE_CLIENT_EMAIL")
        private_key = os.getenv("FIREBASE_PRIVATE_KEY")
        self.FIREBASE_PRIVATE_KEY = private_key.replace("\\n", "\n") if private_key else None
        self.FIREBASE_CREDENTIALS_FILE = os.getenv("FIREBASE_CREDENTIALS_FILE")

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"

    @property
    def allowed_origins(self) -> List[str]:
        origins = [self.FRONTEND_URL] + self.CORS_ORIGINS
        if not self.is_production:
            origins += ["http://localhost:3000", "http://localhost:5173"]
        # keep order, drop duplicates
        return list(dict.fromkeys(o for o in origins if o))

    def firebase_service_account(self) -> Optional[dict]:
        """Service account dict built from env vars, or None if incomplete"""
        if not (self.FIREBASE_PROJECT_ID and self.FIREBASE_CLIENT_EMAIL and self.FIREBASE_PRIVATE_KEY):
            return None
        return {
            "type": "service_account",
            "project_id": self.FIREBASE_PROJECT_ID,
            "private_key": self.FIREBASE_PRIVATE_KEY,
            "client_email": self.FIREBASE_CLIENT_EMAIL,
            "token_uri": "https://oauth2.googleapis.com/token",
        }

    @staticmethod
    def _parse_origins(value: str) -> List[str]:
        return [origin.strip() for origin in value.split(",") if origin.strip()]


settings = Settings()
