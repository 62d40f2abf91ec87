from pydantic import Field

from shared.models.base import CamelModel
from shared.models.health import RepairTarget


class QueryRequest(CamelModel):
    query: str = Field(min_length=1)
    limit: int = Field(default=5, ge=1, le=100)
    namespace: str = "default"
    only_context: bool = False


class RepairRequest(CamelModel):
    targets: list[RepairTarget]
    auto: bool = False
    namespace: str = "default"


class SyncRequest(CamelModel):
    # validated by the service so a missing name answers 400
    file_name: str = ""
    namespace: str = "default"
