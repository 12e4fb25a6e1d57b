"""Tests for YAML settings loading and the pydantic settings tree."""
import pytest
from pydantic import ValidationError

from app.config import JWT_SECRET_ENV, AppSettings, RoomSettings, load_settings


class TestDefaults:
    def test_defaults_without_files(self, tmp_path, monkeypatch):
        monkeypatch.delenv(JWT_SECRET_ENV, raising=False)
        settings = load_settings(tmp_path / "missing.yaml", tmp_path / "missing.secrets.yaml")

        assert settings.server.port == 5000
        assert settings.auth.token_expire_days == 7
        assert settings.auth.algorithm == "HS256"
        assert settings.rooms.default_max_users == 100
        assert settings.rooms.list_limit == 50
        assert settings.messages.max_length == 500
        assert settings.secrets.jwt.secret_key == "change-me-in-production"

    def test_room_capacity_bounds(self):
        with pytest.raises(ValidationError):
            RoomSettings(default_max_users=1)
        with pytest.raises(ValidationError):
            RoomSettings(default_max_users=501)


class TestLoadSettings:
    def test_reads_settings_and_secrets(self, tmp_path, monkeypatch):
        monkeypatch.delenv(JWT_SECRET_ENV, raising=False)
        settings_file = tmp_path / "neon.settings.yaml"
        secrets_file = tmp_path / "neon.secrets.yaml"
        settings_file.write_text(
            "server:\n"
            "  port: 8080\n"
            "  allowed_origins: ['http://example.test']\n"
            "database:\n"
            "  path: ':memory:'\n"
            "messages:\n"
            "  max_length: 280\n"
        )
        secrets_file.write_text("jwt:\n  secret_key: from-file\n")

        settings = load_settings(settings_file, secrets_file)

        assert settings.server.port == 8080
        assert settings.server.allowed_origins == ["http://example.test"]
        assert settings.database.path == ":memory:"
        assert settings.messages.max_length == 280
        assert settings.secrets.jwt.secret_key == "from-file"

    def test_env_secret_wins_over_file(self, tmp_path, monkeypatch):
        secrets_file = tmp_path / "neon.secrets.yaml"
        secrets_file.write_text("jwt:\n  secret_key: from-file\n")
        monkeypatch.setenv(JWT_SECRET_ENV, "from-env")

        settings = load_settings(tmp_path / "missing.yaml", secrets_file)

        assert settings.secrets.jwt.secret_key == "from-env"

    def test_empty_files_are_defaults(self, tmp_path, monkeypatch):
        monkeypatch.delenv(JWT_SECRET_ENV, raising=False)
        settings_file = tmp_path / "neon.settings.yaml"
        secrets_file = tmp_path / "neon.secrets.yaml"
        settings_file.write_text("")
        secrets_file.write_text("")

        settings = load_settings(settings_file, secrets_file)

        assert settings == AppSettings()
