from typing import Literal

from pydantic import BaseModel, Field

EnvValue = str | int | bool | list | None


class EnvConfig(BaseModel):
    """Declares one environment setting a client reads during boot.

    The full variable name is ``<CLIENT_TYPE>_<ENGINE>_<env_key>``, e.g.
    ``DOC_MONGO_DATABASE`` or ``RAG_PINECONE_API_KEY``. Settings without a
    default are required; booting fails with a ConfigurationError when they
    are missing.
    """

    env_key: str = Field(description="Suffix of the variable name after the client prefix.")
    val_type: Literal["string", "number", "bool"] = "string"
    default: EnvValue = None
