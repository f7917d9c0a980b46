import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


def _truthy(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # Catalog API settings
    api_url: str = os.getenv("CATALOG_API_URL", "http://127.0.0.1:5000/api")
    http_timeout: float = float(os.getenv("CATALOG_HTTP_TIMEOUT", "10"))
    connect_timeout: float = float(os.getenv("CATALOG_CONNECT_TIMEOUT", "5"))

    # Admin credential storage
    credential_file: str = os.getenv(
        "CATALOG_CREDENTIAL_FILE",
        str(Path.home() / ".library-catalog" / "credentials.json"),
    )

    # Health dashboard polling (seconds, 0 disables)
    health_poll_interval: float = float(os.getenv("CATALOG_HEALTH_POLL_INTERVAL", "60"))

    # CLI settings
    log_level: str = os.getenv("CATALOG_LOG_LEVEL", "WARNING")
    default_user_id: Optional[str] = os.getenv("CATALOG_USER_ID")

    # Development server settings
    admin_health_secret: Optional[str] = os.getenv("ADMIN_HEALTH_SECRET")
    mock_host: str = os.getenv("CATALOG_MOCK_HOST", "127.0.0.1")
    mock_port: int = int(os.getenv("CATALOG_MOCK_PORT", "5000"))
    mock_reload: bool = _truthy(os.getenv("CATALOG_MOCK_RELOAD", "False"))


settings = Settings()
