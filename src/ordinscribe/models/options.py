"""Inscription options validated once at the boundary."""

import json

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from ordinscribe.models.errors import ValidationError


class InscriptionOptions(BaseModel):
    """Options forwarded to the remote command generator."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    container_name: str = Field(..., min_length=1, description="Docker container running ord")
    fee_rate: int = Field(..., ge=1, description="Fee rate in sats/vB")
    container_path: str = Field(default="/ord/data/")
    port: int | None = Field(default=None, ge=1025, le=65535)
    advanced_mode: bool = False
    no_limit_check: bool = False
    destination: str | None = None
    sat_point: str | None = None
    parent_id: str | None = None
    dry_run: bool = False
    mime_type: str | None = None
    optimize_image: bool = False
    include_metadata: bool = False
    metadata_json: str | None = None

    @model_validator(mode="after")
    def validate_metadata(self) -> "InscriptionOptions":
        if not self.include_metadata:
            return self
        if not self.metadata_json:
            raise ValueError("metadata_json is required when include_metadata is set")
        try:
            parsed = json.loads(self.metadata_json)
        except json.JSONDecodeError as e:
            raise ValueError(f"metadata_json is not valid JSON: {e.msg}")
        if not isinstance(parsed, dict):
            raise ValueError("metadata_json must be a JSON object")
        return self

    def to_payload(self) -> str:
        """Serialize with the camelCase keys the remote generator expects."""
        return self.model_dump_json(by_alias=True, exclude_none=True)


def parse_options(raw: str | bytes | dict) -> InscriptionOptions:
    """Parse free-form option JSON into a validated InscriptionOptions."""
    try:
        if isinstance(raw, dict):
            return InscriptionOptions.model_validate(raw)
        return InscriptionOptions.model_validate_json(raw)
    except PydanticValidationError as e:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationError("Invalid inscription options", details={"errors": errors})
