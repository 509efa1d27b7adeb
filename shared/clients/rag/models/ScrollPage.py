from pydantic import BaseModel, Field


class ScrollPage(BaseModel):
    """Points returned by one scroll request, or by a fully paginated scroll.

    Attributes:
        points:           Raw point dicts with "id", "payload" and optionally "vector".
        next_page_offset: Cursor of the following page. None once every page was read.
    """

    points: list[dict] = Field(default_factory=list)
    next_page_offset: str | int | None = None

    @property
    def is_last(self) -> bool:
        return self.next_page_offset is None
