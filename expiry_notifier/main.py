"""Main entry point for the expiry notifier."""

import argparse
import json
import logging
import os
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from .classifier import DISPLAY_WINDOW, ExpiryClassifier, reference_day
from .config import AppConfig, load_config, require_mail_config
from .db import SqliteKeyValueStore
from .digest import DigestComposer, status_tag
from .errors import TransportFatal
from .mailer import SmtpMailer
from .models import ExpiryBucket, Product
from .service import NotificationService
from .state import NotificationStateStore

# Configure logging
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)
logger = logging.getLogger(__name__)

# Seconds between checks of the products file while running
RELOAD_INTERVAL_SECONDS = 30


def load_products(path: str) -> List[Product]:
    """
    Load a product snapshot from a JSON file.

    The file holds a list of product documents, or an object with a
    "products" list.
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("products", [])
    return [Product.from_dict(item) for item in data]


def load_products_or_exit(path: str) -> List[Product]:
    """Load the product snapshot, exiting with code 2 when the file is missing or malformed."""
    try:
        return load_products(path)
    except (OSError, ValueError) as e:
        logger.error(f"Could not load products from {path}: {e}")
        sys.exit(2)


class _ConsoleHandle:
    def __init__(self, title: str):
        self.title = title
        self.on_click = None

    def close(self) -> None:
        logger.debug(f"Notification closed: {self.title}")


class ConsoleNotifier:
    """Direct notifier for terminal sessions: prints the notification."""

    def is_supported(self) -> bool:
        return True

    def show(self, title: str, options: Dict[str, Any]) -> _ConsoleHandle:
        print(f"\n[{options.get('tag', '')}] {title}\n{options.get('body', '')}\n", flush=True)
        return _ConsoleHandle(title)


def _mtime(path: str) -> Optional[float]:
    try:
        return Path(path).stat().st_mtime
    except OSError:
        return None


def run_scheduler(config: AppConfig, store: SqliteKeyValueStore) -> None:
    """Run the daily scheduler until interrupted, reloading products when the file changes."""
    products_path = config.products_path
    service = NotificationService(config, store, direct_notifier=ConsoleNotifier())

    last_mtime = _mtime(products_path)
    service.start(load_products_or_exit(products_path))
    try:
        while True:
            time.sleep(RELOAD_INTERVAL_SECONDS)
            mtime = _mtime(products_path)
            if mtime is not None and mtime != last_mtime:
                last_mtime = mtime
                try:
                    service.on_products(load_products(products_path))
                    logger.info(f"Reloaded products from {products_path}")
                except (OSError, ValueError) as e:
                    logger.error(f"Could not reload {products_path}: {e}")
    except KeyboardInterrupt:
        logger.info("Interrupted; stopping scheduler...")
    finally:
        service.stop()


def print_check(config: AppConfig) -> None:
    """Print the display-window buckets for the current product file."""
    products = load_products_or_exit(config.products_path)
    tz = config.scheduler.tzinfo()
    today = reference_day(tz=tz)
    classifier = ExpiryClassifier(tz)
    result = classifier.classify(products, today, DISPLAY_WINDOW)

    headings = {
        ExpiryBucket.EXPIRED: "Expired",
        ExpiryBucket.CRITICAL: "To use within 3 days",
        ExpiryBucket.WARNING: "To use this week",
    }
    if result.is_empty():
        print("No product expires this week.")
    for bucket, heading in headings.items():
        items = result.get(bucket)
        if not items:
            continue
        print(f"{heading} ({len(items)})")
        for item in items:
            print(f"  {item.product.name} - {item.expiry_day.isoformat()} ({status_tag(item.days_until_expiry)})")
    for product in result.excluded:
        print(f"  ! {product.name}: unreadable expiry date {product.expiry!r}")


def run_digest(config: AppConfig, dry_run: bool = False, test: bool = False) -> int:
    """Compose and send the email digest once. Returns the process exit code."""
    products = load_products_or_exit(config.products_path)
    tz = config.scheduler.tzinfo()
    today = reference_day(tz=tz)

    if dry_run:
        composer = DigestComposer(
            ExpiryClassifier(tz), mailer=None,
            from_email=config.mail.from_email or "", to_email=config.mail.to_email or "",
            sender_name=config.mail.sender_name, app_url=config.mail.app_url,
        )
        mail = composer.compose(products, today, test=test)
        print(mail.text if mail else "No products to notify")
        return 0

    mail_config = require_mail_config(config)
    composer = DigestComposer(
        ExpiryClassifier(tz),
        SmtpMailer(mail_config),
        from_email=mail_config.from_email,
        to_email=mail_config.to_email,
        sender_name=mail_config.sender_name,
        app_url=mail_config.app_url,
    )
    try:
        result = composer.run(products, today, test=test)
    except TransportFatal as e:
        logger.error(f"Digest failed: {e}")
        return 1
    logger.info(result.message)
    return 0


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point with command-line argument parsing."""
    parser = argparse.ArgumentParser(
        description="Expiry notifier: daily notifications and email digest for perishable products"
    )
    parser.add_argument(
        "command",
        choices=["run", "check", "digest"],
        help="run: daily notification loop; check: print expiry buckets; digest: send the email digest once"
    )
    parser.add_argument(
        "--products",
        type=str,
        default=None,
        help="Path to the JSON product snapshot (overrides PRODUCTS_PATH env var)"
    )
    parser.add_argument(
        "--reset-state",
        action="store_true",
        help="Forget the last notification day before running (allows a second notification today)"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="digest: print the digest instead of sending it"
    )
    parser.add_argument(
        "--test",
        action="store_true",
        help="digest: send the short [TEST] variant"
    )

    args = parser.parse_args(argv)

    try:
        config = load_config()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(2)

    if args.products:
        config.products_path = args.products

    if args.command == "check":
        print_check(config)
        return

    if args.command == "digest":
        try:
            sys.exit(run_digest(config, dry_run=args.dry_run, test=args.test))
        except ValueError as e:
            logger.error(f"Configuration error: {e}")
            sys.exit(2)

    logger.info(f"Opening state database at {config.db_path}...")
    store = SqliteKeyValueStore.open(config.db_path)
    try:
        if args.reset_state:
            NotificationStateStore(store).clear()
            logger.info("Last notification day cleared.")
        run_scheduler(config, store)
    finally:
        store.close()


if __name__ == "__main__":
    main()
