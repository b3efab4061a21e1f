import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

# Load .env file from the working directory, then from the project root
load_dotenv()
load_dotenv(dotenv_path=Path(__file__).parent.parent / ".env")


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Settings(BaseModel):
    app_name: str = "Governed AI SDK"
    default_provider: str = os.getenv("GOVERNED_AI_DEFAULT_PROVIDER", "console")
    fallback_provider: Optional[str] = os.getenv("GOVERNED_AI_FALLBACK_PROVIDER") or None

    anthropic_api_key: str = os.getenv("ANTHROPIC_API_KEY", "")
    anthropic_base_url: Optional[str] = os.getenv("ANTHROPIC_BASE_URL") or None
    anthropic_timeout: float = float(os.getenv("ANTHROPIC_TIMEOUT", "60"))
    openai_api_key: str = os.getenv("OPENAI_API_KEY", "")
    openai_base_url: Optional[str] = os.getenv("OPENAI_BASE_URL") or None
    openai_timeout: float = float(os.getenv("OPENAI_TIMEOUT", "60"))
    max_retries: int = int(os.getenv("GOVERNED_AI_MAX_RETRIES", "3"))
    retry_base_delay: float = float(os.getenv("GOVERNED_AI_RETRY_BASE_DELAY", "1.0"))  # seconds

    # minor currency units per day, 0 = no limit
    budget_user_daily_limit: int = int(os.getenv("BUDGET_USER_DAILY_LIMIT", "0"))
    budget_org_daily_limit: int = int(os.getenv("BUDGET_ORG_DAILY_LIMIT", "0"))
    budget_global_daily_limit: int = int(os.getenv("BUDGET_GLOBAL_DAILY_LIMIT", "0"))

    policy_gate_enabled: bool = _flag("GOVERNED_AI_POLICY_GATE", "true")
    hard_block: bool = _flag("GOVERNED_AI_HARD_BLOCK", "false")
    jurisdictions_path: Optional[str] = os.getenv("JURISDICTIONS_PATH") or None

    run_store_backend: str = os.getenv("RUN_STORE_BACKEND", "memory")  # memory|redis
    redis_url: Optional[str] = os.getenv("REDIS_URL")
    encryption_key_env: str = os.getenv("ENCRYPTION_KEY_ENV", "GOVERNED_AI_ENCRYPTION_KEY")  # env var name holding the run store secret
    audit_path: str = os.getenv("AUDIT_PATH", "")  # empty disables the JSONL trail


settings = Settings()
