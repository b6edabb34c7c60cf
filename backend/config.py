import json
from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./weighbridge.db"
    storage_dir: str = "./storage"
    cors_origins: str = "*"
    undo_window_seconds: float = 8.0
    deletion_sweep_interval: float = 2.0

    sms_proxy_base: str = ""
    proxy_key: str = ""
    sendsms_api_key: Optional[str] = None
    sms_from: str = "NICKTC"
    sms_max_retries: int = 3
    sms_timeout_seconds: float = 20.0

    log_level: str = "INFO"
    log_dir: Optional[str] = None

    @property
    def cors_origins_list(self) -> List[str]:
        origins = (self.cors_origins or "").strip()
        if not origins:
            return []
        if origins.startswith("["):
            try:
                parsed = json.loads(origins)
            except json.JSONDecodeError:
                parsed = None
            if isinstance(parsed, list):
                return [str(item).strip() for item in parsed if str(item).strip()]
        return [x.strip() for x in origins.split(",") if x.strip()]

    @property
    def sms_proxy_url(self) -> str:
        base = self.sms_proxy_base.strip().rstrip("/")
        if base.endswith("/send-sms"):
            base = base[: -len("/send-sms")]
        return f"{base}/send-sms" if base else ""

    class Config:
        env_prefix = ""
        case_sensitive = False


settings = Settings()
