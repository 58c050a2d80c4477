"""Expiry classification: bucket products by how soon they expire."""

import logging
from abc import ABC, abstractmethod
from datetime import date, datetime, tzinfo
from typing import Dict, Iterable, List, Optional

from .dates import normalize
from .errors import InvalidDate
from .models import ClassificationResult, ClassifiedProduct, ExpiryBucket, Product

logger = logging.getLogger(__name__)


class WindowPolicy(ABC):
    """Maps a whole-day offset (expiry day minus reference day) to a bucket."""

    name: str = ""

    @abstractmethod
    def bucket_for(self, days_until_expiry: int) -> ExpiryBucket:
        """
        Return the bucket for a day offset.

        Args:
            days_until_expiry: Negative when the expiry day is in the past.

        Returns:
            The bucket, ExpiryBucket.NONE when the product is outside the window.
        """
        pass


class UrgentWindow(WindowPolicy):
    """
    Window used for firing decisions and the email digest.

    Yesterday is expired, today through three days out is critical, anything
    else (including products expired for more than a day) is left out.
    """

    name = "urgent"

    def bucket_for(self, days_until_expiry: int) -> ExpiryBucket:
        if days_until_expiry == -1:
            return ExpiryBucket.EXPIRED
        if 0 <= days_until_expiry <= 3:
            return ExpiryBucket.CRITICAL
        return ExpiryBucket.NONE


class DisplayWindow(WindowPolicy):
    """Window used for on-screen banners: expired, within 3 days, within the week."""

    name = "display"

    def bucket_for(self, days_until_expiry: int) -> ExpiryBucket:
        if days_until_expiry < 0:
            return ExpiryBucket.EXPIRED
        if days_until_expiry <= 3:
            return ExpiryBucket.CRITICAL
        if days_until_expiry <= 7:
            return ExpiryBucket.WARNING
        return ExpiryBucket.NONE


URGENT_WINDOW = UrgentWindow()
DISPLAY_WINDOW = DisplayWindow()


def is_urgent(days_until_expiry: int) -> bool:
    """True when the offset falls in the urgent window (-1..3 days)."""
    return URGENT_WINDOW.bucket_for(days_until_expiry) is not ExpiryBucket.NONE


def local_day(instant: datetime, tz: Optional[tzinfo] = None) -> date:
    """
    Calendar day of an instant in ``tz`` (host local time when None).

    Raises:
        InvalidDate: If the instant has no calendar day in ``tz`` (e.g. 9999-12-31 late UTC).
    """
    try:
        return instant.astimezone(tz).date()
    except (OverflowError, ValueError, OSError) as e:
        raise InvalidDate(instant, f"no calendar day in the reference zone: {e}") from e


def reference_day(now: Optional[datetime] = None, tz: Optional[tzinfo] = None) -> date:
    """Today's calendar day, i.e. now truncated to local midnight."""
    if now is None:
        now = datetime.now(tz)
    if now.tzinfo is not None:
        return now.astimezone(tz).date()
    return now.date()


def days_between(expiry_day: date, today: date) -> int:
    """Whole days from midnight of ``today`` to midnight of ``expiry_day``."""
    return (expiry_day - today).days


class ExpiryClassifier:
    """Classifies product snapshots against a reference day."""

    def __init__(self, tz: Optional[tzinfo] = None):
        """
        Initialize the classifier.

        Args:
            tz: Zone whose midnight defines a calendar day (host local time when None).
        """
        self.tz = tz

    def classify_product(
        self,
        product: Product,
        today: date,
        window: WindowPolicy = URGENT_WINDOW,
    ) -> ClassifiedProduct:
        """
        Classify a single product.

        Raises:
            InvalidDate: If the product's expiry cannot be normalized.
        """
        expires_at = normalize(product.expiry, self.tz)
        expiry_day = local_day(expires_at, self.tz)
        days = days_between(expiry_day, today)
        return ClassifiedProduct(
            product=product,
            expires_at=expires_at,
            expiry_day=expiry_day,
            days_until_expiry=days,
            bucket=window.bucket_for(days),
        )

    def classify(
        self,
        products: Iterable[Product],
        today: date,
        window: WindowPolicy = URGENT_WINDOW,
    ) -> ClassificationResult:
        """
        Bucket a product list.

        Products with an unusable expiry value are collected in ``excluded``
        instead of aborting the batch. Products outside the window are dropped.

        Args:
            products: Current product snapshot.
            today: Reference calendar day.
            window: Window policy deciding the buckets.

        Returns:
            A ClassificationResult with each bucket sorted by expiry, then name.
        """
        buckets: Dict[ExpiryBucket, List[ClassifiedProduct]] = {
            ExpiryBucket.EXPIRED: [],
            ExpiryBucket.CRITICAL: [],
            ExpiryBucket.WARNING: [],
        }
        excluded: List[Product] = []

        for product in products:
            try:
                item = self.classify_product(product, today, window)
            except InvalidDate as e:
                logger.warning(f"Skipping product {product.name!r} (id={product.id}): {e}")
                excluded.append(product)
                continue
            if item.bucket is ExpiryBucket.NONE:
                continue
            buckets[item.bucket].append(item)

        for items in buckets.values():
            items.sort(key=lambda i: (i.expires_at, i.product.name))

        logger.debug(
            f"Classified with {window.name} window: "
            + ", ".join(f"{b.value}={len(items)}" for b, items in buckets.items())
            + f", excluded={len(excluded)}"
        )
        return ClassificationResult(buckets=buckets, excluded=excluded)
