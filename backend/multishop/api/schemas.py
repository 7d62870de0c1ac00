from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Request body that accepts camelCase keys as well as snake_case ones."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
