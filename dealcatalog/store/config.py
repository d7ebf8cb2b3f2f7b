from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
load_dotenv(Path(__file__).resolve().parent.parent.parent / ".env")


@dataclass(frozen=True)
class StoreConfig:
    url: str = os.getenv("SUPABASE_URL", "")
    service_role_key: str = os.getenv("SUPABASE_SERVICE_ROLE", "")
    schema: str = "public"
    query_timeout_ms: int = int(os.getenv("STORE_QUERY_TIMEOUT_MS", "8000"))
    controller_timeout_ms: int = int(os.getenv("STORE_CONTROLLER_TIMEOUT_MS", "20000"))
    max_workers: int = int(os.getenv("STORE_MAX_WORKERS", "16"))


DEFAULT_STORE_CONFIG = StoreConfig()
