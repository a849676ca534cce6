from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """En el cable todo va en camelCase (petId, scheduledTime...); en Python, snake_case."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    pages: int


class MessageOut(CamelModel):
    message: str
