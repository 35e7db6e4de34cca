"""Pydantic schema for ~/.message-simulator/simulator.yaml

Default values here MUST match the canonical constants in conventions.py.
conventions.py holds the names the store relies on (storage keys, schema
version); this schema holds the knobs a user may turn.
"""

from typing import Literal

from pydantic import BaseModel, Field


class StorageConfig(BaseModel):
    """Where the thread payload and the last-active pointer live.

    backend "file" keeps one file per key under ``directory`` (defaults to
    <home>/storage); "memory" keeps nothing across runs.
    """

    backend: Literal["file", "memory"] = "file"
    directory: str = ""
    # Source of truth: conventions.DEFAULT_QUOTA_BYTES
    quota_bytes: int = Field(default=5 * 1024 * 1024, gt=0)


class PersistenceConfig(BaseModel):
    # Source of truth: conventions.FRAME_DELAY_MS
    save_delay_ms: int = Field(default=16, ge=0)


class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = Field(default=8420, ge=1, le=65535)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: bool = True


class SimulatorConfig(BaseModel):
    storage: StorageConfig = Field(default_factory=StorageConfig)
    persistence: PersistenceConfig = Field(default_factory=PersistenceConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
