import logging
import os
from functools import lru_cache

from pydantic import BaseModel, Field


def _env(name: str, default: str) -> str:
    return os.getenv(f"TRICKLE_{name}", default)


def _env_float(name: str, default: float) -> float:
    return float(_env(name, str(default)))


def _env_int(name: str, default: int) -> int:
    return int(_env(name, str(default)))


class Settings(BaseModel):
    """Runtime configuration shared by the relay and the controller.

    Every field falls back to a ``TRICKLE_*`` environment variable.
    """

    # Relay
    upstream_base_url: str = Field(
        default_factory=lambda: _env("UPSTREAM_URL", "https://api.openai.com")
    )
    upstream_api_key: str | None = Field(
        default_factory=lambda: os.getenv("TRICKLE_UPSTREAM_API_KEY")
    )
    api_key_header: str = Field(
        default_factory=lambda: _env("API_KEY_HEADER", "Authorization")
    )
    api_key_prefix: str = Field(
        default_factory=lambda: _env("API_KEY_PREFIX", "Bearer ")
    )
    route_prefix: str = Field(
        default_factory=lambda: _env("ROUTE_PREFIX", "/api/relay")
    )
    connect_timeout: float = Field(
        default_factory=lambda: _env_float("CONNECT_TIMEOUT", 10.0)
    )
    heartbeat_interval: float = Field(
        default_factory=lambda: _env_float("HEARTBEAT_INTERVAL", 5.0)
    )
    heartbeat_max_beats: int = Field(
        default_factory=lambda: _env_int("HEARTBEAT_MAX_BEATS", 60)
    )
    heartbeat_text: str = Field(
        default_factory=lambda: _env("HEARTBEAT_TEXT", "Thinking...")
    )

    # Controller
    request_timeout: float = Field(
        default_factory=lambda: _env_float("REQUEST_TIMEOUT", 60.0)
    )
    thinking_request_timeout: float = Field(
        default_factory=lambda: _env_float("THINKING_REQUEST_TIMEOUT", 300.0)
    )
    thinking_model_prefixes: tuple[str, ...] = ("o1", "o3", "o4", "dall-e")
    thinking_model_markers: tuple[str, ...] = ("deepseek-r", "-thinking", "reasoner")
    reveal_interval: float = Field(
        default_factory=lambda: _env_float("REVEAL_INTERVAL", 1 / 60)
    )
    max_tool_rounds: int = Field(
        default_factory=lambda: _env_int("MAX_TOOL_ROUNDS", 10)
    )

    debug: bool = Field(
        default_factory=lambda: _env("DEBUG", "false").lower() == "true"
    )

    def timeout_for_model(self, model: str) -> float:
        """Reasoning models get a longer allowance before the first byte."""
        name = model.lower()
        if name.startswith(self.thinking_model_prefixes) or any(
            marker in name for marker in self.thinking_model_markers
        ):
            return self.thinking_request_timeout
        return self.request_timeout


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format='%(asctime)s:%(name)s:%(levelname)s:%(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )
