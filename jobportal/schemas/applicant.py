from __future__ import annotations

from datetime import date
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, field_validator

IDENTITY_FIELDS = (
    "first_name",
    "middle_name",
    "last_name",
    "phone",
    "date_of_birth",
    "gender",
    "street_address",
    "barangay",
    "city",
    "province",
    "zip_code",
)
QUALIFICATION_FIELDS = ("licenses", "height_cm", "weight_kg")
REQUIRED_IDENTITY_FIELDS = {"first_name": "First Name", "last_name": "Last Name", "email": "Email"}


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        cleaned = value.strip()
        return cleaned or None
    return value


class ApplicantDetails(BaseModel):
    """
    Wizard form data. Every field is optional so drafts always validate; only fields the
    client actually sent are written back (an explicit null clears a field).
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    first_name: Optional[str] = None
    middle_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, validation_alias=AliasChoices("phone", "phone_number"))
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None

    street_address: Optional[str] = None
    barangay: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    zip_code: Optional[str] = None

    licenses: Optional[list[str]] = None
    height_cm: Optional[int] = None
    weight_kg: Optional[int] = None

    @field_validator("*", mode="before")
    @classmethod
    def _strip_blanks(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: Optional[str]) -> Optional[str]:
        return value.strip().lower() if value else value

    @field_validator("licenses")
    @classmethod
    def _dedupe_licenses(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        if value is None:
            return None
        seen: list[str] = []
        for item in value:
            tag = (item or "").strip()
            if tag and tag not in seen:
                seen.append(tag)
        return seen

    def _sent(self, names: tuple[str, ...]) -> dict[str, Any]:
        sent = self.model_fields_set
        values = {name: getattr(self, name) for name in names if name in sent}
        if "licenses" in values and values["licenses"] is None:
            values["licenses"] = []
        return values

    def identity_values(self) -> dict[str, Any]:
        return self._sent(IDENTITY_FIELDS)

    def qualification_values(self) -> dict[str, Any]:
        return self._sent(QUALIFICATION_FIELDS)

    def applicant_values(self) -> dict[str, Any]:
        return {**self.identity_values(), **self.qualification_values()}

    def missing_required_identity(self) -> list[str]:
        return [label for name, label in REQUIRED_IDENTITY_FIELDS.items() if not getattr(self, name)]
