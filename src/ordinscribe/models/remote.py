"""Payload shapes exchanged with the remote execution endpoint."""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class StepResponse(BaseModel):
    """Response from one of the serve/download/inscribe calls."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    output: str = Field(default="")
    error: bool = False
    inscription_id: str | None = None
    transaction_id: str | None = None
    fee_paid: str | None = None


class GeneratedCommands(BaseModel):
    """Response from the command generator."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    commands: list[str]
    file_name: str
