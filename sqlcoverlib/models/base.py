from pydantic import BaseModel, ConfigDict


class SqlCoverBaseModel(BaseModel):
    # Unknown fields are a bug in the caller, never silently dropped.
    model_config = ConfigDict(extra='forbid')


class FrozenModel(SqlCoverBaseModel):
    model_config = ConfigDict(extra='forbid', frozen=True)
