import os
from dataclasses import dataclass
from typing import List

from dotenv import load_dotenv


load_dotenv()


@dataclass(frozen=True)
class Config:
    """Application configuration loaded from environment variables.

    Provides validated access to the Supabase-backed entity platform and the
    few knobs the admin API exposes.
    """

    SUPABASE_URL: str = os.getenv("SUPABASE_URL", "")
    SUPABASE_SERVICE_KEY: str = os.getenv("SUPABASE_SERVICE_KEY", "")
    ENTITY_TABLE: str = os.getenv("ENTITY_TABLE", "entities")
    SUPABASE_TRANSITION_RPC: str = os.getenv("SUPABASE_TRANSITION_RPC", "apply_entity_transition")
    SUPABASE_PAGE_SIZE: int = int(os.getenv("SUPABASE_PAGE_SIZE", "1000"))
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "production")

    DASHBOARD_CACHE_TTL_SECONDS: float = float(os.getenv("DASHBOARD_CACHE_TTL_SECONDS", "300"))
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @staticmethod
    def allowed_origins(extra_origins: List[str] | None = None) -> List[str]:
        merged = [o.strip() for o in os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:3000").split(",") if o.strip()]
        if extra_origins:
            merged.extend(extra_origins)
        # Deduplicate while preserving order
        seen = set()
        result: List[str] = []
        for origin in merged:
            if origin not in seen:
                seen.add(origin)
                result.append(origin)
        return result

    @classmethod
    def is_development(cls) -> bool:
        return cls.ENVIRONMENT.strip().lower() == "development"

    @classmethod
    def validate(cls) -> None:
        if not cls.SUPABASE_URL:
            raise ValueError("SUPABASE_URL environment variable is required")
        if not cls.SUPABASE_SERVICE_KEY:
            raise ValueError("SUPABASE_SERVICE_KEY environment variable is required")
