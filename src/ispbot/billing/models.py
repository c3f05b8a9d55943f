"""Billing API response models."""

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

ACTIVE_SERVICE_STATUS = "ativo"


def _as_text(value: Any) -> str:
    return "" if value is None else str(value)


class Client(BaseModel):
    """A billing client (assinante)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    name: str = Field(default="", validation_alias=AliasChoices("nome", "name"))
    document: str = Field(default="", validation_alias=AliasChoices("documento", "document"))

    @field_validator("id", "name", "document", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return _as_text(value)


class Service(BaseModel):
    """A contracted service (internet plan, phone line, ...)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    status: str = ""

    @field_validator("id", "status", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return _as_text(value)

    @property
    def is_active(self) -> bool:
        return self.status.lower() == ACTIVE_SERVICE_STATUS


def pick_service(services: list[Service]) -> Service | None:
    """The active service, else the first one, else None."""
    for service in services:
        if service.is_active:
            return service
    return services[0] if services else None
