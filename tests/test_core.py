"""Tests for configuration, database URL handling and security helpers."""

from booking_engine.core.db import to_async_url
from booking_engine.core.security import (
    CONFIRMATION_CODE_ALPHABET,
    create_access_token,
    decode_access_token,
    generate_confirmation_code,
    verify_cron_secret,
)
from booking_engine.models.booking_page import BookingPage


class TestToAsyncUrl:
    """Tests for mapping database URLs onto async drivers."""

    def test_postgres_uses_asyncpg_and_drops_psycopg_params(self):
        url = to_async_url("postgresql://u:p@db.example.com:5432/app?sslmode=require&channel_binding=require")

        assert url == "postgresql+asyncpg://u:p@db.example.com:5432/app?ssl=require"

    def test_postgres_without_ssl(self):
        assert to_async_url("postgresql://u:p@localhost/app") == "postgresql+asyncpg://u:p@localhost/app"

    def test_sqlite_file_path_is_kept(self):
        assert to_async_url("sqlite:////tmp/bookings.db") == "sqlite+aiosqlite:////tmp/bookings.db"


class TestSecurity:
    """Tests for tokens, the cron secret and confirmation codes."""

    def test_access_token_round_trip(self):
        assert decode_access_token(create_access_token(5)) == "5"

    def test_garbage_token(self):
        assert decode_access_token("not-a-token") is None

    def test_cron_secret(self):
        assert verify_cron_secret("test-cron-secret") is True
        assert verify_cron_secret("wrong") is False
        assert verify_cron_secret(None) is False
        assert verify_cron_secret("") is False

    def test_confirmation_code_shape(self):
        code = generate_confirmation_code()

        assert len(code) == 6
        assert set(code) <= set(CONFIRMATION_CODE_ALPHABET)


class TestBookingPageSettings:
    """Tests for per-page booking settings."""

    def test_missing_keys_use_app_defaults(self):
        page = BookingPage(owner_id=1, slug="p", name="P", settings={"minimum_notice": 30})

        settings = page.get_settings()

        assert settings.booking_window_days == 60
        assert settings.minimum_notice_minutes == 30

    def test_inactive_type_is_not_bookable(self):
        page = BookingPage(
            owner_id=1,
            slug="p",
            name="P",
            appointment_types=[{"id": "old", "name": "Old", "duration": 30, "is_active": False}],
        )

        assert page.find_appointment_type("old") is None
        assert page.find_appointment_type("missing") is None
