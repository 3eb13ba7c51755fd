"""Unit tests for configuration and settings."""
from classfinder.config import Settings, get_settings, reset_settings_cache


class TestSettings:
    """Test configuration management."""

    def test_get_settings_returns_same_instance(self):
        assert get_settings() is get_settings()

    def test_reset_settings_cache(self):
        settings1 = get_settings()
        reset_settings_cache()
        settings2 = get_settings()

        assert settings1 is not settings2

    def test_booking_rule_defaults(self):
        settings = Settings()

        assert settings.max_advance_days == 7
        assert settings.min_booking_minutes == 30
        assert settings.max_booking_minutes == 180
        assert settings.daily_booking_quota == 2
        assert settings.checkin_window_minutes == 15
        assert settings.min_attendees == 2

    def test_campus_defaults(self):
        settings = Settings()

        assert settings.campus_timezone == "Asia/Manila"
        assert settings.allowed_email_domain == "dlsu.edu.ph"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("DAILY_BOOKING_QUOTA", "3")
        monkeypatch.setenv("BOOKING_RATE_LIMIT", "5/minute")

        settings = Settings()

        assert settings.daily_booking_quota == 3
        assert settings.booking_rate_limit == "5/minute"

    def test_test_environment_disables_side_channels(self):
        settings = get_settings()

        assert settings.rate_limiting_enabled is False
        assert settings.event_publishing_enabled is False

    def test_service_ports_configuration(self):
        settings = Settings()

        assert settings.bookings_service_port == 8001
        assert settings.manager_service_port == 8002
        assert settings.admin_service_port == 8003
        assert settings.heatmap_service_port == 8004
