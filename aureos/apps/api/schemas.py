from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    # Request bodies accept camelCase keys from browser clients and snake_case from SDKs.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")
