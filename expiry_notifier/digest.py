"""Daily email digest of expired and soon-expiring products."""

import logging
from datetime import date
from email.utils import formataddr
from html import escape
from typing import Iterable, List, Optional

from .classifier import URGENT_WINDOW, ExpiryClassifier
from .errors import TransportFatal
from .mailer import Mailer
from .models import ClassifiedProduct, DigestResult, MailMessage, Product

logger = logging.getLogger(__name__)

UNNAMED_PRODUCT = "Unnamed product"
UNKNOWN_BRAND = "Unknown brand"

_STATUS_STYLES = {
    "expired": "color: red; font-weight: bold;",
    "today": "color: orange; font-weight: bold;",
    "soon": "color: orange;",
}

_HTML_TEMPLATE = """<!DOCTYPE html>
<html>
  <head>
    <meta charset="UTF-8">
    <style>
      body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
      .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
      .header {{ background-color: #000; color: white; padding: 20px; text-align: center; }}
      .content {{ background-color: #f9f9f9; padding: 20px; }}
      table {{ width: 100%; border-collapse: collapse; margin: 20px 0; }}
      th {{ background-color: #000; color: white; padding: 12px; text-align: left; }}
      td {{ padding: 8px; border-bottom: 1px solid #ddd; }}
      .footer {{ text-align: center; padding: 20px; color: #666; font-size: 12px; }}
      .button {{ display: inline-block; padding: 12px 24px; background-color: #000; color: white; text-decoration: none; border-radius: 4px; margin-top: 20px; }}
    </style>
  </head>
  <body>
    <div class="container">
      <div class="header"><h1>{app_name}</h1></div>
      <div class="content">
        <h2>Products to use up</h2>
        <p>You have <strong>{count}</strong> product(s) expiring soon:</p>
        <table>
          <thead>
            <tr><th>Product</th><th>Expiry date</th><th>Status</th></tr>
          </thead>
          <tbody>
{rows}
          </tbody>
        </table>
        <div style="text-align: center;">
          <a href="{app_url}" class="button">Open in the app</a>
        </div>
      </div>
      <div class="footer">
        <p>This email was sent automatically by {app_name}.</p>
        <p>You receive it because some of your products expire in the next few days.</p>
      </div>
    </div>
  </body>
</html>
"""


def status_tag(days_until_expiry: int) -> str:
    """EXPIRED, TODAY or IN <n> DAY(S) for a day offset."""
    if days_until_expiry < 0:
        return "EXPIRED"
    if days_until_expiry == 0:
        return "TODAY"
    unit = "DAY" if days_until_expiry == 1 else "DAYS"
    return f"IN {days_until_expiry} {unit}"


def _status_kind(days_until_expiry: int) -> str:
    if days_until_expiry < 0:
        return "expired"
    if days_until_expiry == 0:
        return "today"
    return "soon"


def _name(item: ClassifiedProduct) -> str:
    return item.product.name or UNNAMED_PRODUCT


def _brand(item: ClassifiedProduct) -> str:
    return item.product.brand or UNKNOWN_BRAND


def render_text(items: List[ClassifiedProduct], app_name: str, app_url: str) -> str:
    """Plain-text digest body."""
    lines = [
        f"{app_name} - Products to use up",
        "",
        f"You have {len(items)} product(s) expiring soon:",
        "",
    ]
    for item in items:
        lines.append(
            f"- {_name(item)} ({_brand(item)}) - Expires {item.expiry_day.isoformat()} "
            f"- {status_tag(item.days_until_expiry)}"
        )
    lines.extend(["", f"Open in the app: {app_url}"])
    return "\n".join(lines)


def render_html(items: List[ClassifiedProduct], app_name: str, app_url: str) -> str:
    """HTML digest body."""
    rows = []
    for item in items:
        style = _STATUS_STYLES[_status_kind(item.days_until_expiry)]
        rows.append(
            "            <tr>\n"
            f"              <td><strong>{escape(_name(item))}</strong><br>"
            f"<small style=\"color: #666;\">{escape(_brand(item))}</small></td>\n"
            f"              <td>{item.expiry_day.isoformat()}</td>\n"
            f"              <td><span style=\"{style}\">{status_tag(item.days_until_expiry)}</span></td>\n"
            "            </tr>"
        )
    return _HTML_TEMPLATE.format(
        app_name=escape(app_name),
        app_url=escape(app_url, quote=True),
        count=len(items),
        rows="\n".join(rows),
    )


class DigestComposer:
    """Builds and sends the once-a-day email digest."""

    def __init__(
        self,
        classifier: ExpiryClassifier,
        mailer: Mailer,
        from_email: str,
        to_email: str,
        sender_name: str = "DLC Watcher",
        app_url: str = "https://dlc-watcher.vercel.app",
    ):
        self.classifier = classifier
        self.mailer = mailer
        self.from_email = from_email
        self.to_email = to_email
        self.sender_name = sender_name
        self.app_url = app_url

    def urgent_items(self, products: Iterable[Product], today: date) -> List[ClassifiedProduct]:
        """Urgent-window products, ordered by expiry day (expired first)."""
        result = self.classifier.classify(products, today, URGENT_WINDOW)
        return sorted(result.flagged(), key=lambda i: (i.expires_at, _name(i)))

    def build_mail(self, items: List[ClassifiedProduct], test: bool = False) -> MailMessage:
        """Render the digest for already classified items."""
        subject = f"{self.sender_name} - {len(items)} product(s) to use up"
        if test:
            subject = f"[TEST] {subject}"
            html = f"<h2>Test email</h2><p>{len(items)} product(s) found</p>"
            text = f"Test: {len(items)} product(s) found"
        else:
            html = render_html(items, self.sender_name, self.app_url)
            text = render_text(items, self.sender_name, self.app_url)

        return MailMessage(
            sender=formataddr((self.sender_name, self.from_email)),
            to=self.to_email,
            subject=subject,
            html=html,
            text=text,
        )

    def compose(
        self,
        products: Iterable[Product],
        today: date,
        test: bool = False
    ) -> Optional[MailMessage]:
        """
        Build the digest message.

        Args:
            products: Full product listing.
            today: Reference calendar day.
            test: Build the short "[TEST]" variant used by the manual trigger.

        Returns:
            The message, or None when no product is in the urgent window.
        """
        items = self.urgent_items(products, today)
        if not items:
            return None
        return self.build_mail(items, test=test)

    def run(self, products: Iterable[Product], today: date, test: bool = False) -> DigestResult:
        """
        Compose and send the digest once. No retries.

        Raises:
            TransportFatal: If the mail channel fails.
        """
        logger.info("Checking for expiring products...")
        items = self.urgent_items(products, today)
        if not items:
            logger.info("No product expires in the next few days")
            return DigestResult(success=True, products_count=0, message="No products to notify")

        mail = self.build_mail(items, test=test)
        try:
            sent = self.mailer.send(mail)
        except Exception as e:
            logger.error(f"Error while sending the digest: {e}")
            raise TransportFatal(f"Error while sending the digest: {e}") from e
        if not sent:
            raise TransportFatal("Mail channel refused the digest")

        logger.info(f"Digest email sent for {len(items)} product(s)")
        return DigestResult(
            success=True,
            products_count=len(items),
            message=f"Email sent for {len(items)} product(s)",
        )
