from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..metrics import DEFAULT_LATENCY_BUCKETS_MS, validate_buckets
from ..models import Identity
from ..whois import DEFAULT_SOCKET_PATH


class ServerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    host: str = "0.0.0.0"
    port: int = Field(8080, ge=1, le=65535)
    dev: bool = False
    ui_dir: Optional[str] = None


class PeerProfileConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    login_name: str = ""
    display_name: str = ""
    tags: List[str] = Field(default_factory=list)

    def to_identity(self) -> Identity:
        return Identity(
            login_name=self.login_name,
            display_name=self.display_name,
            is_tagged=len(self.tags) > 0,
        )


class WhoIsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    backend: Literal["local", "static"] = "local"
    socket_path: str = DEFAULT_SOCKET_PATH
    timeout_sec: float = Field(5.0, gt=0.0)
    peers: Dict[str, PeerProfileConfig] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_backend(self) -> "WhoIsConfig":
        if self.backend == "local" and not self.socket_path:
            raise ValueError("whois.socket_path is required when whois.backend='local'")
        if self.backend == "local" and self.peers:
            raise ValueError("whois.peers is only used when whois.backend='static'")
        return self


class MetricsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    latency_buckets_ms: List[float] = Field(default_factory=lambda: list(DEFAULT_LATENCY_BUCKETS_MS))

    @field_validator("latency_buckets_ms")
    @classmethod
    def _monotonic_buckets(cls, value: List[float]) -> List[float]:
        return list(validate_buckets(value))


class ServiceConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    server: ServerConfig = Field(default_factory=ServerConfig)
    whois: WhoIsConfig = Field(default_factory=WhoIsConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
