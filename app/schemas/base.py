from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Wire names are camelCase (toolId, startDate); Python attributes stay snake_case."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class PaginationResponse(CamelModel):
    current: int
    total: int
    count: int
    total_items: int

    @classmethod
    def from_page(cls, page) -> "PaginationResponse":
        return cls(**page.pagination())
