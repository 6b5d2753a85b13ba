"""Typed views over the order-line JSON payload, one model per status family.

Stored keys stay camelCase (`deliveryDate`, `completedAt`, ...) and delivery
events keep their `data`/`note` shape. Every write goes through
`apply_payload_changes`, which validates the merged payload against the model
of the line's target status before anything reaches the database.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from ..domain_errors import DomainError


class Stamp(BaseModel):
    """Who did something, and when."""

    timestamp: datetime
    user: str


class DeliveryEvent(BaseModel):
    """One physical delivery recorded against a line."""

    model_config = ConfigDict(populate_by_name=True)

    delivered_on: date = Field(alias="data")
    note: str = ""


class LinePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    quantity: int | None = Field(default=None, gt=0)
    delivery_date: date | None = Field(default=None, alias="deliveryDate")
    note: str = ""
    deliveries: list[DeliveryEvent] = Field(default_factory=list)
    production_confirmed_at: Stamp | None = Field(default=None, alias="productionConfirmedAt")
    completed_at: Stamp | None = Field(default=None, alias="completedAt")

    @property
    def is_complete(self) -> bool:
        """Lines without quantity or delivery date are hidden from every list."""
        return bool(self.quantity) and self.delivery_date is not None


class ProductionPayload(LinePayload):
    @model_validator(mode="after")
    def _no_stamps(self) -> "ProductionPayload":
        if self.completed_at is not None or self.production_confirmed_at is not None:
            raise ValueError("a line still in production cannot carry confirmation stamps")
        return self


class DeliveryPayload(LinePayload):
    @model_validator(mode="after")
    def _not_completed(self) -> "DeliveryPayload":
        if self.completed_at is not None:
            raise ValueError("a line awaiting delivery cannot carry a completion stamp")
        return self


class DocumentedPayload(LinePayload):
    completed_at: Stamp = Field(alias="completedAt")


class CompletedPayload(LinePayload):
    completed_at: Stamp = Field(alias="completedAt")


PAYLOAD_BY_STATUS: dict[str, type[LinePayload]] = {
    "production": ProductionPayload,
    "delivery": DeliveryPayload,
    "ready_for_delivery": DeliveryPayload,
    "documented": DocumentedPayload,
    "completed": CompletedPayload,
}


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def make_stamp(actor: Any, *, at: datetime | None = None) -> Stamp:
    """Stamp with the acting user's email, falling back to the user id."""
    who = getattr(actor, "email", None) or str(actor.id)
    return Stamp(timestamp=at or now_utc(), user=who)


def parse_payload(status: str, raw: dict[str, Any] | None) -> LinePayload:
    model = PAYLOAD_BY_STATUS.get(status)
    if model is None:
        raise DomainError(
            code="INVALID_STATUS",
            http_status=400,
            message=f"Stato non valido: {status}",
        )
    try:
        return model.model_validate(raw or {})
    except ValidationError as exc:
        raise DomainError(
            code="INVALID_PAYLOAD",
            http_status=422,
            message="Dati del carico non validi per lo stato richiesto",
            details={
                "status": status,
                "errors": [
                    {"loc": [str(part) for part in err["loc"]], "msg": err["msg"]}
                    for err in exc.errors()
                ],
            },
        ) from exc


def dump_payload(payload: LinePayload) -> dict[str, Any]:
    # exclude_unset keeps the stored key set as it was, apart from explicit changes.
    return payload.model_dump(mode="json", by_alias=True, exclude_unset=True)


def apply_payload_changes(status: str, raw: dict[str, Any] | None, changes: dict[str, Any]) -> dict[str, Any]:
    """Merge `changes` (alias keys) into `raw` and validate against `status`."""
    merged = dict(raw or {})
    merged.update(changes)
    return dump_payload(parse_payload(status, merged))


def read_payload(raw: dict[str, Any] | None) -> LinePayload:
    """Lenient read for list views: no per-status constraints."""
    try:
        return LinePayload.model_validate(raw or {})
    except ValidationError:
        return LinePayload()
