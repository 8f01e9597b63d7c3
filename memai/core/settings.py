from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    app_env: str
    db_path: str
    llm_provider: str
    summary_model: str
    digest_model: str
    object_store: str
    gcs_bucket: str
    local_object_dir: str
    digest_timezone: str
    bus_max_delivery_attempts: int
    bus_redelivery_delay: float

    @staticmethod
    def from_env() -> "Settings":
        def _i(name: str, default: str) -> int:
            return int(os.getenv(name, default).strip())

        def _f(name: str, default: str) -> float:
            return float(os.getenv(name, default).strip())

        return Settings(
            app_env=os.getenv("APP_ENV", "dev").strip(),
            db_path=os.getenv("DB_PATH", "/app/_local/data/memai.db").strip(),
            llm_provider=os.getenv("LLM_PROVIDER", "openai").strip(),
            summary_model=os.getenv("SUMMARY_MODEL", "gpt-4.1-mini").strip(),
            digest_model=os.getenv("DIGEST_MODEL", "gpt-4.1").strip(),
            object_store=os.getenv("OBJECT_STORE", "local").strip(),
            gcs_bucket=os.getenv("GCS_BUCKET", "memai-audio-files").strip(),
            local_object_dir=os.getenv("LOCAL_OBJECT_DIR", "/app/_local/objects").strip(),
            digest_timezone=os.getenv("DIGEST_TIMEZONE", "UTC").strip(),
            bus_max_delivery_attempts=_i("BUS_MAX_DELIVERY_ATTEMPTS", "3"),
            bus_redelivery_delay=_f("BUS_REDELIVERY_DELAY", "5"),
        )
