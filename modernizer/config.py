"""
Explicit configuration for the orchestration layer.

Values come from keyword arguments or from MODERNIZER_* environment variables.
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Mapping, Optional

from pydantic import BaseModel, Field

from .rules import ATELIER_API_VERSION, DEFAULT_COMPILE_FLAGS

_TRUE = {"1", "true", "yes", "on"}


class ServerConnection(BaseModel):
    active: bool = False
    host: str = "localhost"
    port: int = 52773
    https: bool = False
    namespace: str = "USER"
    username: Optional[str] = None
    password: Optional[str] = None
    path_prefix: str = ""

    @property
    def base_url(self) -> str:
        scheme = "https" if self.https else "http"
        prefix = self.path_prefix.strip("/")
        root = f"{scheme}://{self.host}:{self.port}"
        if prefix:
            root = f"{root}/{prefix}"
        return f"{root}/api/atelier/v{ATELIER_API_VERSION}/{self.namespace}"


class Settings(BaseModel):
    conn: ServerConnection = Field(default_factory=ServerConnection)
    compile_flags: str = DEFAULT_COMPILE_FLAGS
    timeout: float = 30.0

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ

        conn = {}
        for field, key in (
            ("host", "MODERNIZER_HOST"),
            ("port", "MODERNIZER_PORT"),
            ("namespace", "MODERNIZER_NAMESPACE"),
            ("username", "MODERNIZER_USERNAME"),
            ("password", "MODERNIZER_PASSWORD"),
            ("path_prefix", "MODERNIZER_PATH_PREFIX"),
        ):
            if key in env:
                conn[field] = env[key]
        for field, key in (("active", "MODERNIZER_ACTIVE"), ("https", "MODERNIZER_HTTPS")):
            if key in env:
                conn[field] = env[key].strip().lower() in _TRUE

        settings = {"conn": ServerConnection(**conn)}
        if "MODERNIZER_COMPILE_FLAGS" in env:
            settings["compile_flags"] = env["MODERNIZER_COMPILE_FLAGS"]
        if "MODERNIZER_TIMEOUT" in env:
            settings["timeout"] = env["MODERNIZER_TIMEOUT"]
        return cls(**settings)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
