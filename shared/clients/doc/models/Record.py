"""Record model: one CSV row as stored in the document store."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Record(BaseModel):
    """
    A single ingested record. The document store is its record of truth.

    Attributes:
        code:           Unique identifier, shared with the Vector Entry id.
        file_name:      Origin CSV file (stored as "fileName").
        namespace:      Logical partition.
        metadata_small: Short mandatory text, embedded together with the code.
        metadata_big_1: Large free-form payload (text or parsed JSON), never embedded.
        metadata_big_2: See metadata_big_1.
        metadata_big_3: See metadata_big_1.
        source:         Optional provenance (set by repair targets).
        timestamp:      Creation time, set on insert.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    code: str = Field(min_length=1)
    file_name: str = Field(alias="fileName")
    namespace: str = "default"
    metadata_small: str = ""
    metadata_big_1: Any = None
    metadata_big_2: Any = None
    metadata_big_3: Any = None
    source: str | None = None
    timestamp: datetime | None = None

    @property
    def embedding_text(self) -> str:
        """Text sent to the embedding provider for this record."""
        return f"{self.code}\n{self.metadata_small}"

    def to_document(self) -> dict[str, Any]:
        """Serialise for the document store; the timestamp stays a BSON date."""
        return self.model_dump(by_alias=True, exclude_none=True)

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "Record":
        return cls.model_validate(document)
