from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
load_dotenv(Path(__file__).resolve().parent.parent.parent / ".env")


@dataclass(frozen=True)
class AuthConfig:
    admin_role: str = os.getenv("ADMIN_ROLE", "Admin")
    # When set, bearer tokens are signature-checked (HS256); otherwise they are
    # only decoded and verification is left to the issuer's gateway.
    jwt_secret: str = os.getenv("SUPABASE_JWT_SECRET", "")
    users_table: str = "Users"
    subject_column: str = "supabase_uid"


DEFAULT_AUTH_CONFIG = AuthConfig()
