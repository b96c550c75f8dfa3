import os
from pathlib import Path
from typing import List, Union

import yaml
from pydantic import Field, field_validator

from sqlcoverlib.models.base import SqlCoverBaseModel
from sqlcoverlib.utils import parse_env_flag

DEFAULT_DISPATCH_LATENCY_SECONDS = 1.0

ENV_LOGGING = "SQLCOVERLIB_LOGGING"
ENV_DISPATCH_LATENCY = "SQLCOVERLIB_DISPATCH_LATENCY"


class CoverageConfig(SqlCoverBaseModel):
    connection: str = Field(description="SQLAlchemy URL or ODBC connection string of the target server")
    database: str = Field(description="Name of the database whose modules are measured")
    exclude_filter: List[str] = Field(default_factory=list, description="Case-insensitive glob or substring patterns of object names to leave out")
    logging: bool = Field(default=False, description="Forward diagnostics to the python logger")
    dispatch_latency_seconds: float = Field(default=DEFAULT_DISPATCH_LATENCY_SECONDS, description="How long to wait for the server to flush trace events")
    max_workers: int = Field(default=1, description="Threads used to segment object sources")

    @field_validator('exclude_filter', mode='before')
    @classmethod
    def none_is_empty(cls, v):
        return [] if v is None else v

    @field_validator('dispatch_latency_seconds')
    @classmethod
    def non_negative_latency(cls, v):
        if v < 0:
            raise ValueError(f"dispatch latency must not be negative, got {v}")
        return v

    @field_validator('max_workers')
    @classmethod
    def at_least_one_worker(cls, v):
        if v < 1:
            raise ValueError(f"max_workers must be at least 1, got {v}")
        return v

    def with_env_overrides(self, environ=None) -> "CoverageConfig":
        environ = os.environ if environ is None else environ
        update = {}
        if environ.get(ENV_LOGGING) is not None:
            update['logging'] = parse_env_flag(ENV_LOGGING, environ[ENV_LOGGING])
        if environ.get(ENV_DISPATCH_LATENCY) is not None:
            update['dispatch_latency_seconds'] = float(environ[ENV_DISPATCH_LATENCY])
        if not update:
            return self
        return CoverageConfig.model_validate({**self.model_dump(), **update})

    @classmethod
    def from_yaml(cls, path: Union[Path, str], environ=None) -> "CoverageConfig":
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
        return cls.model_validate(data).with_env_overrides(environ)
