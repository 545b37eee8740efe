"""Pydantic schemas for upstream listings, pages and staging rows."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError


def _lenient_number(value: Any) -> float | None:
    """Coerce numeric-looking values, mapping anything unusable to None."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip().replace(",", ""))
        except ValueError:
            return None
    return None


def _lenient_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class NamedRef(BaseModel):
    """``{id, name}`` reference used by the API for manufacturer, model, colour..."""

    model_config = ConfigDict(extra="ignore")

    id: int | str | None = None
    name: str | None = None

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value: Any) -> str | None:
        return _lenient_text(value)


def _coerce_ref(value: Any) -> Any:
    """Accept bare strings in place of ``{name: ...}`` objects."""

    if isinstance(value, (str, int, float)) and not isinstance(value, bool):
        return {"name": str(value)}
    if isinstance(value, dict) or value is None or isinstance(value, NamedRef):
        return value
    return None


class Odometer(BaseModel):
    model_config = ConfigDict(extra="ignore")

    km: float | None = None
    miles: float | None = None

    @field_validator("km", "miles", mode="before")
    @classmethod
    def _coerce(cls, value: Any) -> float | None:
        return _lenient_number(value)


class LotImages(BaseModel):
    model_config = ConfigDict(extra="ignore")

    normal: list[str] = Field(default_factory=list)
    big: list[str] = Field(default_factory=list)
    thumbnails: list[str] = Field(default_factory=list)

    @field_validator("normal", "big", "thumbnails", mode="before")
    @classmethod
    def _coerce_urls(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        return [str(item) for item in value if isinstance(item, str) and item.strip()]


class RawLot(BaseModel):
    """An auction lot nested under a vehicle. Every field is optional."""

    model_config = ConfigDict(extra="ignore")

    lot: str | None = None
    bid: float | None = None
    buy_now: float | None = None
    odometer: Odometer | None = None
    images: LotImages | None = None
    status: NamedRef | None = None
    condition: NamedRef | None = None
    keys_available: bool | None = None

    @field_validator("lot", mode="before")
    @classmethod
    def _coerce_lot(cls, value: Any) -> str | None:
        return _lenient_text(value)

    @field_validator("bid", "buy_now", mode="before")
    @classmethod
    def _coerce_amount(cls, value: Any) -> float | None:
        return _lenient_number(value)

    @field_validator("status", "condition", mode="before")
    @classmethod
    def _coerce_refs(cls, value: Any) -> Any:
        return _coerce_ref(value)

    @field_validator("odometer", "images", mode="before")
    @classmethod
    def _drop_non_mapping(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else None

    @field_validator("keys_available", mode="before")
    @classmethod
    def _coerce_keys(cls, value: Any) -> bool | None:
        return value if isinstance(value, bool) else None


class RawListing(BaseModel):
    """A vehicle as returned by the upstream API.

    ``id``, ``manufacturer`` and ``model`` are required by the transformer but
    optional here so that incomplete records can be rejected with a reason
    instead of failing validation.
    """

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    manufacturer: NamedRef | None = None
    model: NamedRef | None = None
    year: int | None = None
    title: str | None = None
    vin: str | None = None
    color: NamedRef | None = None
    fuel: NamedRef | None = None
    transmission: NamedRef | None = None
    lots: list[RawLot] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str | None:
        if isinstance(value, bool):
            return None
        return _lenient_text(value)

    @field_validator("title", "vin", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str | None:
        return _lenient_text(value)

    @field_validator("year", mode="before")
    @classmethod
    def _coerce_year(cls, value: Any) -> int | None:
        number = _lenient_number(value)
        return int(number) if number is not None else None

    @field_validator("manufacturer", "model", "color", "fuel", "transmission", mode="before")
    @classmethod
    def _coerce_refs(cls, value: Any) -> Any:
        return _coerce_ref(value)

    @field_validator("lots", mode="before")
    @classmethod
    def _coerce_lots(cls, value: Any) -> list[Any]:
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, dict)]

    @property
    def primary_lot(self) -> RawLot | None:
        """Only the first lot of a vehicle is consumed."""

        return self.lots[0] if self.lots else None


class StagingRow(BaseModel):
    """Flattened listing written to the staging table."""

    model_config = ConfigDict(extra="forbid")

    id: str
    external_id: str
    make: str
    model: str
    year: int
    price: float
    mileage: float
    title: str
    vin: str | None = None
    color: str | None = None
    fuel: str | None = None
    transmission: str | None = None
    condition: str | None = None
    lot_number: str | None = None
    current_bid: float = 0.0
    buy_now_price: float = 0.0
    is_live: bool = False
    keys_available: bool = True
    image_url: str | None = None
    images: list[str] = Field(default_factory=list)
    location: str = "South Korea"
    domain_name: str = "external_api"
    source_api: str = "external"
    status: str = "active"
    is_active: bool = True
    is_archived: bool = False
    last_synced_at: datetime
    data_hash: str = ""

    def to_record(self) -> dict[str, Any]:
        """Return the JSON-compatible mapping sent to the datastore."""

        return self.model_dump(mode="json")


class PaginationMeta(BaseModel):
    model_config = ConfigDict(extra="ignore")

    current_page: int | None = None
    last_page: int | None = None
    total: int | None = None


class PagePayload(BaseModel):
    """Decoded upstream page. Anything but a ``data`` list yields an empty page."""

    model_config = ConfigDict(extra="ignore")

    page: int
    listings: list[dict[str, Any]] = Field(default_factory=list)
    has_more: bool | None = None
    total: int | None = None

    @property
    def is_empty(self) -> bool:
        return not self.listings

    @classmethod
    def from_response(cls, page: int, body: Any) -> PagePayload:
        """Build a page from a decoded JSON body of arbitrary shape."""

        if not isinstance(body, dict):
            return cls(page=page)

        data = body.get("data")
        listings = [item for item in data if isinstance(item, dict)] if isinstance(data, list) else []

        has_more: bool | None = None
        raw_has_more = body.get("has_more")
        if isinstance(raw_has_more, bool):
            has_more = raw_has_more

        meta: PaginationMeta | None = None
        meta_raw = body.get("meta")
        if isinstance(meta_raw, dict):
            try:
                meta = PaginationMeta.model_validate(meta_raw)
            except PydanticValidationError:
                meta = None
        if has_more is None and meta is not None:
            if meta.current_page is not None and meta.last_page is not None:
                has_more = meta.current_page < meta.last_page

        total = body.get("total")
        if not isinstance(total, int) and meta is not None:
            total = meta.total

        return cls(
            page=page,
            listings=listings,
            has_more=has_more,
            total=total if isinstance(total, int) else None,
        )
