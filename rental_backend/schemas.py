"""
Pydantic schemas for service inputs and outputs.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from rental_backend.db import Outlet, UserProfile


class LoginResponse(BaseModel):
    profile: UserProfile
    outlets: list[Outlet] = Field(default_factory=list)
    selected_outlet: Optional[str] = None


class CustomerFilters(BaseModel):
    customer_type: Optional[str] = None
    search: Optional[str] = None


class CustomerCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    customer_type: str = Field(default="individual", max_length=32)
    company_name: Optional[str] = None
    contact_person: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    gstin: Optional[str] = Field(default=None, max_length=15)
    address: Optional[str] = None
    credit_limit: Decimal = Field(default=Decimal("0"), ge=0)
    is_active: bool = True

    @model_validator(mode="after")
    def _require_name(self) -> "CustomerCreate":
        if not (self.company_name or self.contact_person):
            raise ValueError("company_name or contact_person is required")
        return self


class CustomerUpdate(BaseModel):
    """Partial update; only fields explicitly set are written."""

    model_config = ConfigDict(extra="forbid")

    customer_type: Optional[str] = Field(default=None, max_length=32)
    company_name: Optional[str] = None
    contact_person: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    gstin: Optional[str] = Field(default=None, max_length=15)
    address: Optional[str] = None
    credit_limit: Optional[Decimal] = Field(default=None, ge=0)
    is_active: Optional[bool] = None

    @field_validator("customer_type", "credit_limit", "is_active")
    @classmethod
    def _not_null(cls, value):
        # May be omitted, but these columns cannot be cleared.
        if value is None:
            raise ValueError("cannot be null")
        return value


class BalanceOperation(str, Enum):
    ADD = "add"
    SUBTRACT = "subtract"


class ImageUpload(BaseModel):
    filename: str = Field(..., min_length=1)
    content: bytes
    content_type: str

    @property
    def size(self) -> int:
        return len(self.content)
