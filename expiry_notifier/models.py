"""Data models for products, classification and notifications."""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass
class Product:
    """A tracked product. Only the fields the notifier reads."""
    id: Optional[str]
    name: str
    expiry: Any               # ISO string, {"seconds": n}, datetime/date, or raw value
    brand: str = ""           # source label shown in the digest

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Product":
        """Build a product from a store document (JSON or DynamoDB item)."""
        return cls(
            id=data.get("id"),
            name=data.get("name") or "",
            expiry=data.get("expiryDate", data.get("expiry")),
            brand=data.get("brand") or "",
        )


class ExpiryBucket(Enum):
    """Urgency buckets, most urgent first."""
    EXPIRED = "expired"
    CRITICAL = "critical"
    WARNING = "warning"
    NONE = "none"

    @property
    def rank(self) -> int:
        """Higher is more urgent."""
        return {
            ExpiryBucket.EXPIRED: 3,
            ExpiryBucket.CRITICAL: 2,
            ExpiryBucket.WARNING: 1,
            ExpiryBucket.NONE: 0,
        }[self]


@dataclass
class ClassifiedProduct:
    """A product together with its normalized expiry and bucket."""
    product: Product
    expires_at: datetime      # canonical instant
    expiry_day: date          # calendar day in the reference time zone
    days_until_expiry: int
    bucket: ExpiryBucket

    @property
    def is_today(self) -> bool:
        return self.days_until_expiry == 0


@dataclass
class ClassificationResult:
    """Products grouped by bucket, each list sorted by expiry then name."""
    buckets: Dict[ExpiryBucket, List[ClassifiedProduct]]
    excluded: List[Product] = field(default_factory=list)  # unclassifiable

    def get(self, bucket: ExpiryBucket) -> List[ClassifiedProduct]:
        return self.buckets.get(bucket, [])

    @property
    def expired(self) -> List[ClassifiedProduct]:
        return self.get(ExpiryBucket.EXPIRED)

    @property
    def critical(self) -> List[ClassifiedProduct]:
        return self.get(ExpiryBucket.CRITICAL)

    @property
    def warning(self) -> List[ClassifiedProduct]:
        return self.get(ExpiryBucket.WARNING)

    def flagged(self) -> List[ClassifiedProduct]:
        """All bucketed products, most urgent bucket first."""
        items = []
        for bucket in (ExpiryBucket.EXPIRED, ExpiryBucket.CRITICAL, ExpiryBucket.WARNING):
            items.extend(self.get(bucket))
        return items

    def is_empty(self) -> bool:
        return not self.flagged()


@dataclass
class DispatchMessage:
    """A notification ready to be handed to a channel."""
    title: str
    body: str
    tag: str                  # one per calendar day, lets channels collapse duplicates
    icon: Optional[str] = None
    require_interaction: bool = True
    vibrate: List[int] = field(default_factory=lambda: [200, 100, 200])


@dataclass
class DispatchResult:
    """Outcome of a Dispatcher.send call."""
    success: bool
    channel: Optional[str] = None
    error: Optional[str] = None


@dataclass
class MailMessage:
    """Message accepted by a mail channel."""
    sender: str
    to: str
    subject: str
    html: str
    text: str


@dataclass
class DigestResult:
    """Outcome of one digest invocation."""
    success: bool
    products_count: int
    message: str
