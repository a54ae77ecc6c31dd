import pytest
from pydantic import ValidationError

from imagegen.config.settings import Settings


class TestSettingsDefaults:
    def test_default_app_env(self) -> None:
        s = Settings()
        assert s.app_env == "dev"

    def test_default_generation_provider(self) -> None:
        s = Settings()
        assert s.generation_provider == "systemsculpt"

    def test_default_model_id(self) -> None:
        s = Settings()
        assert s.default_model_id == "openai/gpt-5-image-mini"

    def test_default_poll_timings(self) -> None:
        s = Settings()
        assert s.poll_interval_seconds == 1.0
        assert s.poll_max_interval_seconds == 5.0
        assert s.refresh_poll_timeout_seconds == 8.0

    def test_default_upload_ceiling(self) -> None:
        s = Settings()
        assert s.upload_max_bytes == 4_500_000

    def test_default_image_engine(self) -> None:
        s = Settings()
        assert s.image_engine == "pillow"

    def test_sidecar_enabled_by_default(self) -> None:
        s = Settings()
        assert s.save_metadata_sidecar is True


class TestSettingsFromEnv:
    def test_loads_license_key(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LICENSE_KEY", "lic-123")
        s = Settings()
        assert s.license_key == "lic-123"

    def test_loads_log_level(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        s = Settings()
        assert s.log_level == "DEBUG"

    def test_loads_poll_interval(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("POLL_INTERVAL_SECONDS", "2.5")
        s = Settings()
        assert s.poll_interval_seconds == 2.5

    def test_loads_sidecar_flag(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SAVE_METADATA_SIDECAR", "false")
        s = Settings()
        assert s.save_metadata_sidecar is False


class TestSettingsValidation:
    def test_invalid_poll_interval_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("POLL_INTERVAL_SECONDS", "soon")
        with pytest.raises(ValidationError):
            Settings()

    def test_invalid_upload_ceiling_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("UPLOAD_MAX_BYTES", "abc")
        with pytest.raises(ValidationError):
            Settings()
