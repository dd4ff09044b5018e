import os
from typing import List


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except Exception:
        return default


class Settings:
    def _split_csv(self, raw: str, *, default: List[str]) -> List[str]:
        parts = [p.strip() for p in (raw or "").split(",")]
        return [p for p in parts if p] or default

    def __init__(self) -> None:
        self.env = os.getenv('APP_ENV', 'local')
        self.db_url = os.getenv('DATABASE_URL', 'postgresql://localhost/artclub_pos')
        self.cors_origins = self._split_csv(
            os.getenv("CORS_ORIGINS", "").strip(),
            default=["http://localhost:3000", "http://127.0.0.1:3000"],
        )
        self.api_version = os.getenv("APP_VERSION", "0.1.0").strip() or "0.1.0"

        # Seller settings are stored per deployment environment (one row per env).
        self.pos_settings_environment = (os.getenv("POS_SETTINGS_ENV") or "").strip() or self.env

        # Invoice obligations (German small-amount invoice rules). Amounts are gross cents.
        self.invoice_b2b_threshold_cents = _env_int("POS_INVOICE_B2B_THRESHOLD_CENTS", 20_000)
        self.invoice_b2c_threshold_cents = _env_int("POS_INVOICE_B2C_THRESHOLD_CENTS", 100_000)

        self.pdf_max_line_chars = _env_int("POS_PDF_MAX_LINE_CHARS", 94)
        self.tse_signature_max_chars = _env_int("POS_TSE_SIGNATURE_MAX_CHARS", 180)

settings = Settings()
