# coderoom/core/config.py
import os
from typing import List, Literal

from dotenv import load_dotenv


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """
    Setup environment variables.
        - PUB_SUB_SERVICE the broadcast bus to use: "local" or "redis"
        - EXECUTION_ENGINE_URL the Piston-compatible execute endpoint
        - DEFAULT_CODE / DEFAULT_LANGUAGE placeholders for freshly created rooms
        - CHAT_HISTORY_LIMIT newest messages kept per room (0 keeps everything)
        - HEARTBEAT_INTERVAL / HEARTBEAT_TIMEOUT liveness probing, in seconds

    Values are read when the instance is created, so tests can patch the
    environment and build their own Settings().
    """

    # Load environment variables from the .env file
    load_dotenv()

    def __init__(self) -> None:
        self.PUB_SUB_SERVICE: Literal["local", "redis"] = os.getenv("PUB_SUB_SERVICE", "local")

        self.REDIS_HOST: str = os.getenv("REDIS_HOST", "localhost")
        self.REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
        self.REDIS_ACCESS_KEY: str = os.getenv("REDIS_ACCESS_KEY", "")
        self.REDIS_SSL: bool = _as_bool(os.getenv("REDIS_SSL", "false"))

        self.EXECUTION_ENGINE_URL: str = os.getenv(
            "EXECUTION_ENGINE_URL", "https://emkc.org/api/v2/piston/execute"
        )
        self.EXECUTION_TIMEOUT: float = float(os.getenv("EXECUTION_TIMEOUT", "15"))

        self.DEFAULT_CODE: str = os.getenv("DEFAULT_CODE", "// start code here")
        self.DEFAULT_LANGUAGE: str = os.getenv("DEFAULT_LANGUAGE", "javascript")
        self.CHAT_HISTORY_LIMIT: int = int(os.getenv("CHAT_HISTORY_LIMIT", "0"))

        self.HEARTBEAT_INTERVAL: float = float(os.getenv("HEARTBEAT_INTERVAL", "20"))
        self.HEARTBEAT_TIMEOUT: float = float(os.getenv("HEARTBEAT_TIMEOUT", "60"))

        self.CORS_ORIGINS: List[str] = [
            origin.strip()
            for origin in os.getenv("CORS_ORIGINS", "*").split(",")
            if origin.strip()
        ]

    @property
    def redis_url(self) -> str:
        scheme = "rediss" if self.REDIS_SSL else "redis"
        return f"{scheme}://:{self.REDIS_ACCESS_KEY}@{self.REDIS_HOST}:{self.REDIS_PORT}"


settings = Settings()
