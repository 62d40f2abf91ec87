from pydantic import BaseModel, ConfigDict, Field


class FileCount(BaseModel):
    """Number of records stored for one (namespace, fileName) key."""

    model_config = ConfigDict(populate_by_name=True)

    namespace: str
    file_name: str = Field(alias="fileName")
    count: int
