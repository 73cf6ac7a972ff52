"""
Unit tests for settings loading.
"""

from pathlib import Path

import pytest

from forcam_ingest.core.config import IngestSettings, load_settings
from forcam_ingest.core.errors import FatalConfigurationError


@pytest.fixture
def config_file(tmp_path):
    def _write(content: str) -> Path:
        path = tmp_path / "ingest.yaml"
        path.write_text(content, encoding="utf-8")
        return path

    return _write


class TestLoadSettings:
    """YAML plus environment overlay"""

    def test_defaults_without_file(self):
        settings = load_settings(environ={})
        assert settings.database.port == 5432
        assert settings.files.extensions == [".csv", ".json"]
        assert settings.files.file_unlock_retries == 10
        assert settings.files.file_unlock_wait_seconds == 3.0
        assert settings.load.round_cycle_time is True
        assert settings.api.endpoints == []

    def test_yaml_values(self, config_file):
        path = config_file(
            """
database:
  host: db.internal
  password: secret
files:
  root: /data/forcam
  extensions: [CSV, json]
  max_workers: 8
load:
  max_row_failures: 5
"""
        )
        settings = load_settings(path, environ={})
        assert settings.database.host == "db.internal"
        assert settings.files.root == Path("/data/forcam")
        assert settings.files.extensions == [".csv", ".json"]
        assert settings.files.max_workers == 8
        assert settings.load.max_row_failures == 5

    def test_environment_overrides_yaml(self, config_file):
        path = config_file("database:\n  host: from-yaml\n  password: yaml\n")
        settings = load_settings(path, environ={"DB_HOST": "from-env", "DB_PORT": "6543",
                                                "FORCAM_MAX_WORKERS": "3"})
        assert settings.database.host == "from-env"
        assert settings.database.port == 6543
        assert settings.database.password == "yaml"
        assert settings.files.max_workers == 3

    def test_empty_environment_values_are_ignored(self):
        settings = load_settings(environ={"DB_HOST": ""})
        assert settings.database.host == "localhost"

    def test_missing_file_is_fatal(self, tmp_path):
        with pytest.raises(FatalConfigurationError, match="not found"):
            load_settings(tmp_path / "missing.yaml", environ={})

    def test_invalid_yaml_is_fatal(self, config_file):
        with pytest.raises(FatalConfigurationError, match="Invalid YAML"):
            load_settings(config_file("database: [unclosed"), environ={})

    def test_non_mapping_is_fatal(self, config_file):
        with pytest.raises(FatalConfigurationError):
            load_settings(config_file("- a\n- b\n"), environ={})

    def test_invalid_value_is_fatal(self):
        with pytest.raises(FatalConfigurationError, match="database.port"):
            load_settings(environ={"DB_PORT": "not-a-port"})

    def test_endpoints_require_token(self, config_file):
        path = config_file(
            """
api:
  base_url: https://forcam.example.com
  endpoints:
    - path: /api/v1/cycles
"""
        )
        with pytest.raises(FatalConfigurationError, match="token"):
            load_settings(path, environ={})

    def test_endpoints_with_token_from_environment(self, config_file):
        path = config_file(
            """
api:
  base_url: https://forcam.example.com
  endpoints:
    - path: /api/v1/cycles
      page_size: 100
"""
        )
        settings = load_settings(path, environ={"FORCAM_API_TOKEN": "abc"})
        assert settings.api.token == "abc"
        assert settings.api.endpoints[0].page_size == 100


class TestRequirements:
    """Checks run before ingestion starts"""

    def test_missing_password_is_fatal(self):
        with pytest.raises(FatalConfigurationError, match="password"):
            IngestSettings().require_database()

    def test_password_present(self):
        IngestSettings.model_validate({"database": {"password": "x"}}).require_database()

    def test_file_root_required(self):
        with pytest.raises(FatalConfigurationError, match="FORCAM_ROOT"):
            IngestSettings().require_file_root()

    def test_file_root_must_be_directory(self, tmp_path):
        settings = IngestSettings.model_validate({"files": {"root": str(tmp_path / "nope")}})
        with pytest.raises(FatalConfigurationError, match="not a directory"):
            settings.require_file_root()

    def test_file_root_ok(self, tmp_path):
        settings = IngestSettings.model_validate({"files": {"root": str(tmp_path)}})
        assert settings.require_file_root() == tmp_path

    def test_pool_bounds(self, config_file):
        path = config_file("database:\n  min_size: 5\n  max_size: 2\n")
        with pytest.raises(FatalConfigurationError, match="min_size"):
            load_settings(path, environ={})
