"""Server and client settings.

Both models can be loaded from a JSON file, e.g. ``socketit serve --config
server.json``; any field left out keeps its default.  Intervals are seconds.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, TypeVar

from pydantic import BaseModel, Field, field_validator

DEFAULT_PORT = 8080


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = Field(default=DEFAULT_PORT, ge=0, le=65535)
    path: str = "/"
    tls: bool = False
    cert: Optional[Path] = None
    key: Optional[Path] = None
    ca: Optional[Path] = None
    compression: bool = True  # permessage-deflate

    @field_validator("path")
    @classmethod
    def _leading_slash(cls, value: str) -> str:
        return value if value.startswith("/") else f"/{value}"


class ClientConfig(BaseModel):
    auto_reconnect: bool = True
    reconnect_interval: float = Field(default=5.0, gt=0)
    ping_interval: float = Field(default=10.0, ge=0)  # 0 disables pings
    request_timeout: float = Field(default=5.0, gt=0)
    verify_certificates: bool = True
    ca: Optional[Path] = None
    compression: bool = True
    open_timeout: float = Field(default=10.0, gt=0)


ConfigT = TypeVar("ConfigT", ServerConfig, ClientConfig)


def load_config(model: type[ConfigT], path: Path | None = None) -> ConfigT:
    """Read *model* from a JSON file; a missing or unset path yields defaults."""
    if path is None or not path.exists():
        return model()
    return model.model_validate_json(path.read_text(encoding="utf-8"))
