"""Schema exports for car_sync."""

from .listing import (
    LotImages,
    NamedRef,
    Odometer,
    PagePayload,
    PaginationMeta,
    RawListing,
    RawLot,
    StagingRow,
)

__all__ = [
    "LotImages",
    "NamedRef",
    "Odometer",
    "PagePayload",
    "PaginationMeta",
    "RawListing",
    "RawLot",
    "StagingRow",
]
