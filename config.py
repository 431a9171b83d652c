import os
from dataclasses import dataclass, field
from typing import List, Optional
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def _env_list(name: str, default: str = "") -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    public_base_url: Optional[str] = os.getenv("PUBLIC_BASE_URL")
    cors_origins: List[str] = field(default_factory=lambda: _env_list("CORS_ORIGINS", "*"))

    # Document store
    db_file: str = os.getenv("LIBRARY_DB_FILE", "library.db")

    # Admin credentials and sessions
    admin_password: str = os.getenv("ADMIN_PASSWORD", "library-admin")
    admin_password_hash: Optional[str] = os.getenv("ADMIN_PASSWORD_HASH")
    admin_user_ids: List[str] = field(default_factory=lambda: _env_list("ADMIN_USER_IDS"))
    session_ttl_minutes: int = int(os.getenv("SESSION_TTL_MINUTES", "480"))
    password_hash_iterations: int = int(os.getenv("PASSWORD_HASH_ITERATIONS", "240000"))

    # Uploads
    upload_dir: str = os.getenv("UPLOAD_DIR", "uploads")
    max_upload_size: int = int(os.getenv("MAX_UPLOAD_SIZE", "10485760"))  # 10MB
    allowed_image_extensions: list = field(default_factory=lambda: [".jpg", ".jpeg", ".png", ".gif", ".webp"])

    # Client side
    api_base_url: str = os.getenv("LIBRARY_API_URL", "http://localhost:8000/api")
    request_timeout: float = float(os.getenv("REQUEST_TIMEOUT", "5"))
    poll_interval: float = float(os.getenv("POLL_INTERVAL", "5"))
    local_store_dir: str = os.getenv("LIBRARY_LOCAL_DIR", ".library-local")
    local_key_prefix: str = os.getenv("LIBRARY_LOCAL_PREFIX", "library_")

    # Application
    app_name: str = os.getenv("APP_NAME", "Library Circulation Manager")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    debug: bool = _env_flag("DEBUG")

    @property
    def base_url(self) -> str:
        """Public URL used when building links to uploaded files."""
        if self.public_base_url:
            return self.public_base_url.rstrip("/")
        return f"http://{self.api_host}:{self.api_port}"


settings = Settings()
