"""Tests for configuration loading."""

from timestitch.config import Config, load_config


class TestLoadConfig:
    """Tests for load_config."""

    def test_defaults(self):
        config = load_config()

        assert isinstance(config, Config)
        assert config.remote.bucket == "memories"
        assert config.storage.db_path == "~/.timestitch/local.db"
        assert config.sync.interval_seconds == 30.0
        assert config.images.max_file_size_bytes == 10 * 1024 * 1024

    def test_missing_file_uses_defaults(self, tmp_path):
        config = load_config(tmp_path / "missing.yaml")
        assert config.sync.enabled is True

    def test_yaml_sections(self, tmp_path):
        """Test that YAML values override defaults section by section."""
        path = tmp_path / "config.yaml"
        path.write_text(
            "remote:\n"
            "  url: https://abc.supabase.co\n"
            "  anon_key: public-key\n"
            "storage:\n"
            "  db_path: /tmp/ts.db\n"
            "sync:\n"
            "  interval_seconds: 5\n"
            "connectivity:\n"
            "  probe_enabled: false\n"
            "images:\n"
            "  quality: 60\n"
            "sharing:\n"
            "  base_url: https://journal.example.com\n"
        )

        config = load_config(path)

        assert config.remote.url == "https://abc.supabase.co"
        assert config.remote.anon_key == "public-key"
        assert config.remote.bucket == "memories"
        assert config.storage.db_path == "/tmp/ts.db"
        assert config.sync.interval_seconds == 5
        assert config.sync.call_timeout_seconds == 10.0
        assert config.connectivity.probe_enabled is False
        assert config.images.quality == 60
        assert config.images.max_width == 1920
        assert config.sharing.base_url == "https://journal.example.com"

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")

        assert load_config(path).remote.bucket == "memories"

    def test_env_overrides(self, tmp_path, monkeypatch):
        """Test that TIMESTITCH_* variables win over the file."""
        path = tmp_path / "config.yaml"
        path.write_text("sync:\n  enabled: true\n")
        monkeypatch.setenv("TIMESTITCH_REMOTE_URL", "https://env.supabase.co")
        monkeypatch.setenv("TIMESTITCH_SYNC_ENABLED", "no")
        monkeypatch.setenv("TIMESTITCH_SYNC_INTERVAL", "12.5")
        monkeypatch.setenv("TIMESTITCH_SYNC_CALL_TIMEOUT", "3")
        monkeypatch.setenv("TIMESTITCH_DB_PATH", ":memory:")

        config = load_config(path)

        assert config.remote.url == "https://env.supabase.co"
        assert config.sync.enabled is False
        assert config.sync.interval_seconds == 12.5
        assert config.sync.call_timeout_seconds == 3.0
        assert config.storage.db_path == ":memory:"
