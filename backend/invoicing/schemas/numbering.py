from pydantic import BaseModel, field_validator

from invoicing.services.formatting import validate_prefix


class InvoiceNumberResponse(BaseModel):
    invoice_number: str


class SequenceResponse(BaseModel):
    organization_id: str
    year: int
    prefix: str
    last_issued: int

    model_config = {"from_attributes": True}


class NumberingSettingsUpdate(BaseModel):
    # None clears the override and falls back to the default prefix
    invoice_prefix: str | None = None

    @field_validator("invoice_prefix")
    @classmethod
    def check_prefix(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return validate_prefix(v)


class NumberingSettingsResponse(BaseModel):
    organization_id: str
    invoice_prefix: str | None
    effective_prefix: str
