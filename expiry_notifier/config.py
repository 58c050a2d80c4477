"""Configuration management."""

import os
from dataclasses import dataclass, field
from datetime import tzinfo
from typing import FrozenSet, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

load_dotenv()


@dataclass
class SchedulerConfig:
    """Daily scheduler configuration."""
    trigger_hour: int = 6
    trigger_minute: int = 0
    poll_interval_seconds: int = 3600   # one wake-up per hour
    skip_weekdays: FrozenSet[int] = frozenset()  # ISO weekdays, 1=Monday .. 7=Sunday
    timezone: Optional[str] = None      # IANA name; None = host local time

    def tzinfo(self) -> Optional[tzinfo]:
        return ZoneInfo(self.timezone) if self.timezone else None


@dataclass
class NotificationConfig:
    """Client notification options."""
    tag_prefix: str = "expiry"
    icon: str = "/icon-192x192.png"
    display_seconds: float = 10.0       # auto-dismiss delay on the direct channel
    require_interaction: bool = True
    sms_enabled: bool = False


@dataclass
class TwilioConfig:
    """Twilio SMS configuration."""
    account_sid: str
    auth_token: str
    from_number: str
    to_number: str


@dataclass
class MailConfig:
    """SMTP digest configuration."""
    host: Optional[str]
    port: int
    username: Optional[str]
    password: Optional[str]
    use_ssl: bool
    from_email: Optional[str]
    to_email: Optional[str]
    sender_name: str = "DLC Watcher"
    app_url: str = "https://dlc-watcher.vercel.app"


@dataclass
class AppConfig:
    """Complete application configuration."""
    db_path: str
    products_path: str
    scheduler: SchedulerConfig
    notification: NotificationConfig
    mail: MailConfig
    twilio: Optional[TwilioConfig] = None
    missing_mail: List[str] = field(default_factory=list)


def _parse_list_env(key: str, default: List[str]) -> List[str]:
    """Parse comma-separated list from environment variable."""
    value = os.getenv(key, "")
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


def _parse_bool_env(key: str, default: bool) -> bool:
    return os.getenv(key, str(default)).strip().lower() in ("1", "true", "yes", "on")


def _parse_weekdays(values: List[str]) -> FrozenSet[int]:
    days = set()
    for value in values:
        day = int(value)
        if not 1 <= day <= 7:
            raise ValueError(f"SKIP_WEEKDAYS entries must be between 1 and 7, got {day}")
        days.add(day)
    return frozenset(days)


def load_config() -> AppConfig:
    """
    Load configuration from environment variables.

    Raises:
        ValueError: If values are malformed or required values are missing.
    """
    # Storage
    db_path = os.getenv("DB_PATH", "expiry_state.db")
    products_path = os.getenv("PRODUCTS_PATH", "products.json")

    # Scheduler configuration
    trigger_hour = int(os.getenv("TRIGGER_HOUR", "6"))
    trigger_minute = int(os.getenv("TRIGGER_MINUTE", "0"))
    poll_interval_seconds = int(os.getenv("POLL_INTERVAL_SECONDS", "3600"))
    skip_weekdays = _parse_weekdays(_parse_list_env("SKIP_WEEKDAYS", []))
    timezone_name = os.getenv("TIMEZONE") or None

    if not 0 <= trigger_hour <= 23:
        raise ValueError(f"TRIGGER_HOUR must be between 0 and 23, got {trigger_hour}")
    if not 0 <= trigger_minute <= 59:
        raise ValueError(f"TRIGGER_MINUTE must be between 0 and 59, got {trigger_minute}")
    if poll_interval_seconds <= 0:
        raise ValueError("POLL_INTERVAL_SECONDS must be positive")
    if timezone_name:
        try:
            ZoneInfo(timezone_name)
        except ZoneInfoNotFoundError as e:
            raise ValueError(f"Unknown TIMEZONE '{timezone_name}'") from e

    # Notification configuration
    sms_enabled = _parse_bool_env("SMS_ENABLED", False)
    notification = NotificationConfig(
        tag_prefix=os.getenv("NOTIFICATION_TAG_PREFIX", "expiry"),
        icon=os.getenv("NOTIFICATION_ICON", "/icon-192x192.png"),
        display_seconds=float(os.getenv("NOTIFICATION_DISPLAY_SECONDS", "10")),
        require_interaction=_parse_bool_env("NOTIFICATION_REQUIRE_INTERACTION", True),
        sms_enabled=sms_enabled,
    )

    # Twilio configuration (only when the SMS channel is enabled)
    twilio = None
    if sms_enabled:
        twilio_account_sid = os.getenv("TWILIO_ACCOUNT_SID")
        twilio_auth_token = os.getenv("TWILIO_AUTH_TOKEN")
        twilio_from_number = os.getenv("TWILIO_FROM_NUMBER")
        twilio_to_number = os.getenv("TWILIO_TO_NUMBER")

        missing = []
        if not twilio_account_sid:
            missing.append("TWILIO_ACCOUNT_SID")
        if not twilio_auth_token:
            missing.append("TWILIO_AUTH_TOKEN")
        if not twilio_from_number:
            missing.append("TWILIO_FROM_NUMBER")
        if not twilio_to_number:
            missing.append("TWILIO_TO_NUMBER")
        if missing:
            raise ValueError(
                f"Missing required environment variables: {', '.join(missing)}"
            )

        twilio = TwilioConfig(
            account_sid=twilio_account_sid,
            auth_token=twilio_auth_token,
            from_number=twilio_from_number,
            to_number=twilio_to_number,
        )

    # Mail configuration (only required by the digest command)
    mail = MailConfig(
        host=os.getenv("SMTP_HOST"),
        port=int(os.getenv("SMTP_PORT", "587")),
        username=os.getenv("SMTP_USERNAME"),
        password=os.getenv("SMTP_PASSWORD"),
        use_ssl=_parse_bool_env("SMTP_USE_SSL", False),
        from_email=os.getenv("MAIL_FROM") or os.getenv("SMTP_USERNAME"),
        to_email=os.getenv("MAIL_TO"),
        sender_name=os.getenv("MAIL_SENDER_NAME", "DLC Watcher"),
        app_url=os.getenv("APP_URL", "https://dlc-watcher.vercel.app"),
    )
    missing_mail = []
    if not mail.host:
        missing_mail.append("SMTP_HOST")
    if not mail.from_email:
        missing_mail.append("MAIL_FROM")
    if not mail.to_email:
        missing_mail.append("MAIL_TO")

    return AppConfig(
        db_path=db_path,
        products_path=products_path,
        scheduler=SchedulerConfig(
            trigger_hour=trigger_hour,
            trigger_minute=trigger_minute,
            poll_interval_seconds=poll_interval_seconds,
            skip_weekdays=skip_weekdays,
            timezone=timezone_name,
        ),
        notification=notification,
        mail=mail,
        twilio=twilio,
        missing_mail=missing_mail,
    )


def require_mail_config(config: AppConfig) -> MailConfig:
    """
    Return the mail section, failing if the digest cannot be sent.

    Raises:
        ValueError: If required mail settings are missing.
    """
    if config.missing_mail:
        raise ValueError(
            f"Missing required environment variables: {', '.join(config.missing_mail)}"
        )
    return config.mail
