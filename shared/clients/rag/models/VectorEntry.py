"""Vector store models: the stored entry and a similarity-query match."""

from typing import Any

from pydantic import BaseModel, Field

from shared.errors import DimensionMismatch


class VectorEntry(BaseModel):
    """A single vector as stored in the vector store.

    The id is the record code, so a Record and its Vector Entry share one key
    across both stores. Metadata is a minimal projection of the Record:
    {code, fileName, metadata_small, namespace}. An entry whose metadata lacks
    fileName is an orphan.

    Attributes:
        id:       The record code.
        values:   The embedding vector.
        metadata: Minimal record projection used for filtering and auditing.
    """

    id: str
    values: list[float] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_record(cls, code: str, file_name: str, metadata_small: str, namespace: str, values: list[float]) -> "VectorEntry":
        return cls(
            id=code,
            values=values,
            metadata={
                "code": code,
                "fileName": file_name,
                "metadata_small": metadata_small,
                "namespace": namespace,
            },
        )

    @property
    def file_name(self) -> str | None:
        return self.metadata.get("fileName") or None

    @property
    def is_orphan(self) -> bool:
        return self.file_name is None

    def validate_dimension(self, expected: int) -> None:
        """Raise DimensionMismatch if the vector length differs from expected.

        Vectors are never padded or truncated.
        """
        if len(self.values) != expected:
            raise DimensionMismatch(code=self.id, expected=expected, actual=len(self.values))


class QueryMatch(BaseModel):
    """One nearest-neighbour hit of a similarity query."""

    id: str
    score: float = 0.0
    metadata: dict[str, Any] = Field(default_factory=dict)
