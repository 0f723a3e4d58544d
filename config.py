"""Configuration management using Pydantic settings"""

import platform
import os
from pathlib import Path
from pydantic_settings import BaseSettings
from typing import Optional


def get_default_storage_path() -> str:
    """
    Get OS-specific default storage path for Pocket Protector.

    Returns:
        - macOS: ~/Library/Application Support/PocketProtector
        - Linux: ~/.local/share/pocket-protector
        - Windows: %APPDATA%/PocketProtector
    """
    system = platform.system()
    home = Path.home()

    if system == "Darwin":  # macOS
        return str(home / "Library" / "Application Support" / "PocketProtector")
    elif system == "Windows":
        appdata = os.environ.get("APPDATA")
        if appdata:
            return str(Path(appdata) / "PocketProtector")
        return str(home / "AppData" / "Roaming" / "PocketProtector")
    else:  # Linux and others
        # Follow XDG Base Directory specification
        xdg_data = os.environ.get("XDG_DATA_HOME")
        if xdg_data:
            return str(Path(xdg_data) / "pocket-protector")
        return str(home / ".local" / "share" / "pocket-protector")


class Settings(BaseSettings):
    """Application settings"""

    # Per-user subscription records live under STORAGE_DIR/<user_id>/
    STORAGE_DIR: str = get_default_storage_path()

    # Subscription lifecycle
    PREMIUM_PERIOD_DAYS: int = 30
    # False: cancelling ends premium immediately (endDate = now).
    # True: the paid-through endDate is kept and premium lasts until then.
    CANCEL_AT_PERIOD_END: bool = False

    # Payment provider backend
    PAYMENTS_API_BASE_URL: str = "https://api.pocketprotector.app"
    PAYMENTS_API_KEY: Optional[str] = None
    UPGRADE_TIMEOUT_SECONDS: float = 15.0

    # HTTP API
    API_HOST: str = "localhost"
    API_PORT: int = 8000

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True

    def create_directories(self):
        """Create the storage directory if it does not exist"""
        Path(self.STORAGE_DIR).mkdir(parents=True, exist_ok=True)


settings = Settings()
