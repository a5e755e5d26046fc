import os
from functools import lru_cache
from pathlib import Path
from typing import List

from dotenv import load_dotenv

load_dotenv()

DEFAULT_VERIFICATION_HASH_KEY = "dev-verification-key-change-me"
DEFAULT_WARRANTY_TERMS = "Garantia legal de 90 dias sobre os servicos prestados."
DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
]


def _as_bool(value: str | None) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes", "on"}


def _split_csv(value: str | None) -> List[str]:
    return [part.strip() for part in (value or "").split(",") if part.strip()]


class Settings:
    def __init__(self) -> None:
        base_dir = Path(__file__).resolve().parent.parent.parent
        self.APP_NAME: str = os.getenv("APP_NAME", "Assistec API")
        self.ENV: str = os.getenv("ENV", "development")
        self.SQLALCHEMY_DATABASE_URI: str = os.getenv(
            "SQLALCHEMY_DATABASE_URI",
            f"sqlite:///{(base_dir / 'assistec.db').as_posix()}",
        )
        self.BACKEND_CORS_ORIGINS: List[str] = (
            _split_csv(os.getenv("BACKEND_CORS_ORIGINS")) or DEFAULT_CORS_ORIGINS
        )

        # auth
        self.SECRET_KEY: str = os.getenv("SECRET_KEY", "dev-secret-change-me")
        self.ALGORITHM: str = os.getenv("ALGORITHM", "HS256")
        self.ACCESS_TOKEN_EXPIRE_HOURS: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_HOURS", "8"))

        # approvals and receipts
        self.VERIFICATION_HASH_KEY: str = os.getenv("VERIFICATION_HASH_KEY", DEFAULT_VERIFICATION_HASH_KEY)
        self.PUBLIC_APP_BASE_URL: str = os.getenv("PUBLIC_APP_BASE_URL", "http://localhost:5173").rstrip("/")
        self.RECEIPT_LOGO_URL: str | None = os.getenv("RECEIPT_LOGO_URL")
        self.DEFAULT_WARRANTY_TERMS: str = os.getenv("DEFAULT_WARRANTY_TERMS", DEFAULT_WARRANTY_TERMS)

        # evidence; the storage client itself reads GCS_BUCKET, LOCAL_STORAGE and LOCAL_STORAGE_DIR
        self.GCS_BUCKET: str | None = os.getenv("GCS_BUCKET")
        self.MAX_EVIDENCE_BYTES: int = int(os.getenv("MAX_EVIDENCE_BYTES", str(10 * 1024 * 1024)))
        self.ENFORCE_EVIDENCE_REQUIREMENTS: bool = _as_bool(os.getenv("ENFORCE_EVIDENCE_REQUIREMENTS"))


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
