"""
Service wiring and CLI helper tests

- channel chain built from configuration
- NotificationService start/stop and display buckets
- product file loading and digest command
"""

import json
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from expiry_notifier.channels import DirectNotificationChannel, PlatformNotifierChannel, SmsChannel
from expiry_notifier.config import (
    AppConfig,
    MailConfig,
    NotificationConfig,
    SchedulerConfig,
    TwilioConfig,
)
from expiry_notifier.main import load_products, print_check, run_digest
from expiry_notifier.models import Product
from expiry_notifier.scheduler import SchedulerState
from expiry_notifier.service import NotificationService, build_channels

UTC = timezone.utc
SIX_AM = datetime(2024, 3, 14, 6, 0, tzinfo=UTC)


def make_config(products_path="products.json", sms_enabled=False, **mail):
    mail_values = dict(
        host="smtp.example.com", port=587, username=None, password=None, use_ssl=False,
        from_email="noreply@example.com", to_email="me@example.com",
    )
    mail_values.update(mail)
    return AppConfig(
        db_path=":memory:",
        products_path=products_path,
        scheduler=SchedulerConfig(timezone="UTC"),
        notification=NotificationConfig(sms_enabled=sms_enabled),
        mail=MailConfig(**mail_values),
        twilio=TwilioConfig("AC1", "token", "+1", "+2") if sms_enabled else None,
    )


class TestBuildChannels:
    def test_order(self):
        channels = build_channels(make_config(sms_enabled=True), MagicMock(), MagicMock())
        assert [type(c) for c in channels] == [PlatformNotifierChannel, DirectNotificationChannel, SmsChannel]

    def test_only_configured_channels(self):
        channels = build_channels(make_config(), direct_notifier=MagicMock())
        assert [c.name for c in channels] == ["direct"]


class TestNotificationService:
    def test_start_fire_stop(self, kv_store, fake_task):
        platform = MagicMock()
        platform.is_ready.return_value = True
        service = NotificationService(
            make_config(), kv_store, platform_notifier=platform,
            clock=lambda: SIX_AM, task_factory=fake_task,
        )
        with service:
            service.start([Product(id="g", name="Glace", expiry="2024-03-15T12:00:00Z")])
            fake_task.instances[0].fire()

        platform.show_notification.assert_called_once()
        assert service.scheduler.state is SchedulerState.STOPPED
        assert service.state_store.get_last_fired_day().isoformat() == "2024-03-14"

    def test_permission_gate(self, kv_store, fake_task):
        platform = MagicMock()
        service = NotificationService(
            make_config(), kv_store, platform_notifier=platform,
            permission_granted=lambda: False, clock=lambda: SIX_AM, task_factory=fake_task,
        )
        service.start([Product(id="g", name="Glace", expiry="2024-03-15T12:00:00Z")])
        fake_task.instances[0].fire()
        service.stop()

        platform.show_notification.assert_not_called()
        assert service.state_store.get_last_fired_day() is None

    def test_on_products_replaces_snapshot(self, kv_store, fake_task):
        service = NotificationService(make_config(), kv_store, clock=lambda: SIX_AM, task_factory=fake_task)
        service.start([])
        service.on_products([Product(id="a", name="A", expiry="2024-03-15")])
        assert [p.name for p in service.scheduler.products] == ["A"]
        service.stop()

    def test_display_buckets(self, kv_store, today):
        service = NotificationService(make_config(), kv_store)
        products = [
            Product(id="a", name="Saumon", expiry="2024-03-10T12:00:00Z"),
            Product(id="b", name="Glace", expiry="2024-03-16T12:00:00Z"),
            Product(id="c", name="Pizza", expiry="2024-03-19T12:00:00Z"),
            Product(id="d", name="Riz", expiry="2025-01-01T12:00:00Z"),
        ]
        result = service.display(products, today)

        assert [i.product.name for i in result.expired] == ["Saumon"]
        assert [i.product.name for i in result.critical] == ["Glace"]
        assert [i.product.name for i in result.warning] == ["Pizza"]


class TestLoadProducts:
    def test_list(self, tmp_path):
        path = tmp_path / "products.json"
        path.write_text(json.dumps([{"id": "1", "name": "Glace", "expiryDate": "2024-03-15", "brand": "X"}]))

        [product] = load_products(str(path))
        assert product == Product(id="1", name="Glace", expiry="2024-03-15", brand="X")

    def test_wrapped(self, tmp_path):
        path = tmp_path / "products.json"
        path.write_text(json.dumps({"products": [{"id": "1", "name": "Glace", "expiry": {"seconds": 1}}]}))

        [product] = load_products(str(path))
        assert product.expiry == {"seconds": 1}

    def test_missing_file_exits_with_config_code(self, tmp_path):
        config = make_config(str(tmp_path / "missing.json"))

        with pytest.raises(SystemExit) as excinfo:
            print_check(config)
        assert excinfo.value.code == 2

    def test_malformed_file_exits_with_config_code(self, tmp_path):
        path = tmp_path / "products.json"
        path.write_text("{not json")

        with pytest.raises(SystemExit) as excinfo:
            run_digest(make_config(str(path)), dry_run=True)
        assert excinfo.value.code == 2


class TestRunDigest:
    @pytest.fixture
    def products_file(self, tmp_path):
        path = tmp_path / "products.json"
        path.write_text(json.dumps([{"id": "1", "name": "Glace", "expiryDate": "2024-03-15T12:00:00Z"}]))
        return str(path)

    @pytest.fixture(autouse=True)
    def fixed_today(self, today):
        with patch("expiry_notifier.main.reference_day", return_value=today):
            yield

    def test_dry_run_prints(self, products_file, capsys):
        assert run_digest(make_config(products_file), dry_run=True) == 0
        assert "- Glace (Unknown brand) - Expires 2024-03-15 - IN 1 DAY" in capsys.readouterr().out

    @patch("expiry_notifier.main.SmtpMailer")
    def test_sends(self, mock_mailer_cls, products_file):
        mock_mailer_cls.return_value.send.return_value = True
        assert run_digest(make_config(products_file)) == 0
        mock_mailer_cls.return_value.send.assert_called_once()

    @patch("expiry_notifier.main.SmtpMailer")
    def test_transport_failure_exit_code(self, mock_mailer_cls, products_file):
        mock_mailer_cls.return_value.send.return_value = False
        assert run_digest(make_config(products_file)) == 1

    def test_missing_mail_settings(self, products_file):
        config = make_config(products_file)
        config.missing_mail = ["SMTP_HOST"]
        with pytest.raises(ValueError):
            run_digest(config)
