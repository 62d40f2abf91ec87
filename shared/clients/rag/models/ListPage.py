from pydantic import BaseModel


class ListPage(BaseModel):
    """One page of vector ids from a namespace listing.

    Attributes:
        ids:             Vector ids of this page.
        next_page_token: Cursor for the next page, or None when all pages
                         have been consumed.
    """

    ids: list[str]
    next_page_token: str | None = None
