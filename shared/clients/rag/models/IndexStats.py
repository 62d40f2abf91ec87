from pydantic import BaseModel


class IndexStats(BaseModel):
    """Index-wide statistics.

    Attributes:
        dimension:          Vector dimension of the index (0 if unknown).
        total_vector_count: Number of vectors across all namespaces.
        namespaces:         Vector count per namespace.
    """

    dimension: int = 0
    total_vector_count: int = 0
    namespaces: dict[str, int] = {}
