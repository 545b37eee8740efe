"""Transform raw upstream listings into staging rows with a change-detection hash."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from ..exceptions import ListingRejectedError
from ..schemas.listing import RawListing, StagingRow
from ..utils.logging import setup_logger

logger = setup_logger(__name__, context={"component": "transformer"})

FALLBACK_YEAR = 2020
MIN_VALID_YEAR = 1900
DEFAULT_CONDITION = "good"

# Only these fields participate in the data hash; sync bookkeeping never does.
HASH_FIELDS: tuple[str, ...] = (
    "make",
    "model",
    "year",
    "price",
    "mileage",
    "vin",
    "color",
    "fuel",
    "transmission",
    "condition",
    "lot_number",
    "current_bid",
    "buy_now_price",
    "is_live",
    "keys_available",
)


def compute_data_hash(fields: Mapping[str, Any]) -> str:
    """Return the MD5 fingerprint of the business fields in ``fields``.

    Keys are serialised in sorted order, so the result does not depend on
    mapping order. Missing business fields hash as ``null``.
    """

    selected = {name: fields.get(name) for name in HASH_FIELDS}
    serialized = json.dumps(selected, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.md5(serialized.encode("utf-8")).hexdigest()


def _ref_name(ref: Any) -> str | None:
    return ref.name if ref is not None else None


def transform_listing(raw: Mapping[str, Any] | RawListing, *, synced_at: datetime | None = None) -> StagingRow:
    """
    Normalize one raw listing into a staging row.

    Args:
        raw: Listing as decoded from the API, or an already parsed RawListing
        synced_at: Sync timestamp recorded on the row (defaults to now)

    Returns:
        StagingRow with ``data_hash`` populated

    Raises:
        ListingRejectedError: If id, make or model is missing
    """
    if isinstance(raw, RawListing):
        listing = raw
    else:
        try:
            listing = RawListing.model_validate(raw)
        except PydanticValidationError as exc:
            raise ListingRejectedError(f"Unparseable listing: {exc.error_count()} errors") from exc

    make = _ref_name(listing.manufacturer)
    model = _ref_name(listing.model)
    missing = [
        name
        for name, value in (("id", listing.id), ("make", make), ("model", model))
        if not value
    ]
    if missing:
        raise ListingRejectedError(
            f"Missing required fields: {', '.join(missing)}",
            listing_id=listing.id,
        )
    assert listing.id is not None and make is not None and model is not None

    lot = listing.primary_lot
    year = listing.year if listing.year and listing.year > MIN_VALID_YEAR else FALLBACK_YEAR

    buy_now = lot.buy_now if lot and lot.buy_now is not None else 0.0
    bid = lot.bid if lot and lot.bid is not None else 0.0
    km = lot.odometer.km if lot and lot.odometer and lot.odometer.km is not None else 0.0

    images: list[str] = []
    if lot and lot.images:
        images = lot.images.normal or lot.images.big

    condition = _ref_name(lot.condition) if lot else None

    row = StagingRow(
        id=listing.id,
        external_id=listing.id,
        make=make,
        model=model,
        year=year,
        price=max(buy_now, 0.0),
        mileage=max(km, 0.0),
        title=listing.title or f"{make} {model} {listing.year or ''}".strip(),
        vin=listing.vin,
        color=_ref_name(listing.color),
        fuel=_ref_name(listing.fuel),
        transmission=_ref_name(listing.transmission),
        condition=condition or DEFAULT_CONDITION,
        lot_number=lot.lot if lot else None,
        current_bid=max(bid, 0.0),
        buy_now_price=max(buy_now, 0.0),
        is_live=bool(lot and lot.status and lot.status.name == "sale"),
        keys_available=not (lot is not None and lot.keys_available is False),
        image_url=images[0] if images else None,
        images=images,
        last_synced_at=synced_at or datetime.now(timezone.utc),
    )
    row.data_hash = compute_data_hash(row.model_dump())
    return row


@dataclass(slots=True)
class TransformResult:
    """Rows produced from one page plus the reasons records were dropped."""

    rows: list[StagingRow] = field(default_factory=list)
    rejected: list[str] = field(default_factory=list)


def transform_page(
    listings: Iterable[Mapping[str, Any]],
    *,
    synced_at: datetime | None = None,
    page: int | None = None,
) -> TransformResult:
    """Transform every listing of a page, dropping (and logging) incomplete ones."""

    synced_at = synced_at or datetime.now(timezone.utc)
    result = TransformResult()
    for raw in listings:
        try:
            result.rows.append(transform_listing(raw, synced_at=synced_at))
        except ListingRejectedError as exc:
            result.rejected.append(exc.reason)
            logger.warning(
                "Skipping listing %s: %s",
                exc.listing_id or "<no id>",
                exc.reason,
                extra={"page": page if page is not None else "-", "status": "rejected"},
            )
    return result
