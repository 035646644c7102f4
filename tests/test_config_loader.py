"""Tests for itinerary_sync.config_loader: hierarchical config loading."""

import textwrap

import pytest
import yaml

from itinerary_sync.config_loader import (
    _interpolate_recursive,
    _load_yaml_with_includes,
    discover_config_files,
    ensure_config,
    interpolate_env_vars,
    load_hierarchical_config,
)


@pytest.fixture
def isolated(tmp_path, monkeypatch):
    """CWD and HOME inside tmp_path, no explicit config path."""
    monkeypatch.delenv("ITINERARY_SYNC_CONFIG", raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    return tmp_path


def _project_config(root, text: str):
    path = root / ".itinerary_sync" / "config.yml"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(text))
    return path


def _global_config(root, text: str):
    path = root / "home" / ".config" / "itinerary_sync" / "config.yml"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(text))
    return path


# -------------------------------------------------------------------------
# Env var interpolation
# -------------------------------------------------------------------------


class TestInterpolateEnvVars:
    """Tests for ${VAR} and ${VAR:-default} substitution."""

    def test_replaces_set_var(self, monkeypatch):
        """${VAR} takes the variable's value."""
        monkeypatch.setenv("NOTION_TOKEN", "secret_abc")
        assert interpolate_env_vars("${NOTION_TOKEN}") == "secret_abc"

    def test_unset_var_replaced_with_empty(self, monkeypatch):
        """An unset variable becomes an empty string."""
        monkeypatch.delenv("UNSET_VAR_XYZ", raising=False)
        assert interpolate_env_vars("${UNSET_VAR_XYZ}") == ""

    def test_default_used_when_unset_or_empty(self, monkeypatch):
        """${VAR:-default} falls back for unset or empty variables."""
        monkeypatch.delenv("UNSET_VAR_XYZ", raising=False)
        monkeypatch.setenv("EMPTY_VAR", "")
        assert interpolate_env_vars("${UNSET_VAR_XYZ:-Asia/Tokyo}") == "Asia/Tokyo"
        assert interpolate_env_vars("${EMPTY_VAR:-fallback}") == "fallback"

    def test_default_ignored_when_set(self, monkeypatch):
        """A set variable wins over its default."""
        monkeypatch.setenv("WEBHOOK_PORT", "9000")
        assert interpolate_env_vars("${WEBHOOK_PORT:-8080}") == "9000"

    def test_multiple_vars_in_one_string(self, monkeypatch):
        """Several references in one string are all replaced."""
        monkeypatch.setenv("DATA_ROOT", "/srv")
        monkeypatch.setenv("TRIP_DIR", "trips")
        assert interpolate_env_vars("${DATA_ROOT}/${TRIP_DIR}") == "/srv/trips"

    def test_literal_dollar_brace_no_closing(self):
        """An unterminated reference is left as written."""
        assert interpolate_env_vars("${NO_CLOSE") == "${NO_CLOSE"

    def test_nested_structures(self, monkeypatch):
        """Interpolation reaches nested dicts and lists."""
        monkeypatch.setenv("GOOGLE_CLIENT_ID", "client-1")
        data = {
            "google": {"client_id": "${GOOGLE_CLIENT_ID}", "retries": 3},
            "tags": ["${GOOGLE_CLIENT_ID}", "static", 99],
            "enabled": True,
        }
        assert _interpolate_recursive(data) == {
            "google": {"client_id": "client-1", "retries": 3},
            "tags": ["client-1", "static", 99],
            "enabled": True,
        }


# -------------------------------------------------------------------------
# YAML !include support
# -------------------------------------------------------------------------


class TestIncludeDirective:
    """Tests for !include YAML loading via ConfigLoader subclass."""

    def test_include_relative_file(self, tmp_path):
        """!include resolves paths relative to the including file."""
        (tmp_path / "google.yml").write_text("client_id: abc\n")
        main = tmp_path / "config.yml"
        main.write_text("google: !include google.yml\n")

        assert _load_yaml_with_includes(main) == {"google": {"client_id": "abc"}}

    def test_include_absolute_path(self, tmp_path):
        """!include accepts absolute paths."""
        secrets = tmp_path / "notion.yml"
        secrets.write_text("token: secret_abc\n")
        main = tmp_path / "config.yml"
        main.write_text(f"notion: !include {secrets}\n")

        assert _load_yaml_with_includes(main) == {"notion": {"token": "secret_abc"}}

    def test_nested_includes(self, tmp_path):
        """Included files can include further files."""
        (tmp_path / "c.yml").write_text("val: deep\n")
        (tmp_path / "b.yml").write_text("inner: !include c.yml\n")
        a = tmp_path / "a.yml"
        a.write_text("outer: !include b.yml\n")

        assert _load_yaml_with_includes(a) == {"outer": {"inner": {"val": "deep"}}}

    def test_include_nonexistent_raises(self, tmp_path):
        """Including a missing file is an error."""
        main = tmp_path / "config.yml"
        main.write_text("data: !include missing.yml\n")

        with pytest.raises(FileNotFoundError, match="missing.yml"):
            _load_yaml_with_includes(main)

    def test_circular_include_raises(self, tmp_path):
        """Include cycles are detected."""
        (tmp_path / "a.yml").write_text("x: !include b.yml\n")
        (tmp_path / "b.yml").write_text("y: !include a.yml\n")

        with pytest.raises(ValueError, match="Circular include"):
            _load_yaml_with_includes(tmp_path / "a.yml")

    def test_self_include_raises(self, tmp_path):
        """A file including itself is a cycle."""
        a = tmp_path / "a.yml"
        a.write_text("x: !include a.yml\n")

        with pytest.raises(ValueError, match="Circular include"):
            _load_yaml_with_includes(a)

    def test_global_safe_loader_not_polluted(self, tmp_path):
        """!include is NOT registered on yaml.SafeLoader."""
        cfg = tmp_path / "test.yml"
        cfg.write_text("x: !include other.yml\n")

        with pytest.raises(yaml.constructor.ConstructorError):
            with open(cfg) as fh:
                yaml.safe_load(fh)


# -------------------------------------------------------------------------
# Convention-based file discovery
# -------------------------------------------------------------------------


class TestDiscoverConfigFiles:
    """Tests for discover_config_files() precedence and filtering."""

    def test_env_var_takes_highest_precedence(self, isolated, monkeypatch):
        """ITINERARY_SYNC_CONFIG is discovered first."""
        custom = isolated / "custom.yml"
        custom.write_text("sync: {}\n")
        _project_config(isolated, "sync: {}\n")
        monkeypatch.setenv("ITINERARY_SYNC_CONFIG", str(custom))

        assert discover_config_files()[0] == custom.resolve()

    def test_project_before_global(self, isolated):
        """The project file precedes the user file."""
        proj = _project_config(isolated, "store: {}\n")
        glob = _global_config(isolated, "store: {}\n")

        result = discover_config_files()
        assert result.index(proj) < result.index(glob)

    def test_yaml_extension_discovered(self, isolated):
        """config.yaml is found as well as config.yml."""
        alt = isolated / ".itinerary_sync" / "config.yaml"
        alt.parent.mkdir(parents=True)
        alt.write_text("sync: {}\n")

        assert alt in discover_config_files()

    def test_missing_files_excluded(self, isolated):
        """Only existing files are returned."""
        assert discover_config_files() == []


# -------------------------------------------------------------------------
# Hierarchical merge
# -------------------------------------------------------------------------


class TestLoadHierarchicalConfig:
    """Tests for load_hierarchical_config() merge and interpolation."""

    def test_zero_config_returns_empty_dict(self, isolated):
        """No config files yields an empty dict."""
        assert load_hierarchical_config() == {}

    def test_global_only_loaded(self, isolated):
        """A lone user file is loaded."""
        _global_config(
            isolated,
            """\
            sync:
              timezone: Asia/Tokyo
            """,
        )
        assert load_hierarchical_config()["sync"]["timezone"] == "Asia/Tokyo"

    def test_project_overrides_global_key_by_key(self, isolated):
        """Project sections override the user file key by key."""
        _global_config(
            isolated,
            """\
            sync:
              poll_interval: 900
              timezone: Asia/Tokyo
            logging:
              level: DEBUG
            """,
        )
        _project_config(
            isolated,
            """\
            sync:
              poll_interval: 120
            """,
        )

        result = load_hierarchical_config()
        assert result["sync"] == {"poll_interval": 120, "timezone": "Asia/Tokyo"}
        assert result["logging"]["level"] == "DEBUG"

    def test_env_var_interpolation_after_merge(self, isolated, monkeypatch):
        """Variables are interpolated in the merged result."""
        monkeypatch.setenv("MY_NOTION_TOKEN", "secret_xyz")
        _project_config(
            isolated,
            """\
            notion:
              token: "${MY_NOTION_TOKEN}"
            """,
        )
        assert load_hierarchical_config()["notion"]["token"] == "secret_xyz"

    def test_include_within_project_config(self, isolated):
        """Includes work inside a discovered project file."""
        proj = _project_config(
            isolated,
            """\
            store:
              directory: /srv/trips
            google: !include google.yml
            """,
        )
        (proj.parent / "google.yml").write_text("client_id: client-1\n")

        result = load_hierarchical_config()
        assert result["google"]["client_id"] == "client-1"
        assert result["store"]["directory"] == "/srv/trips"

    def test_non_dict_root_skipped(self, isolated, monkeypatch):
        """A file whose root is not a mapping is ignored."""
        bad = isolated / "bad.yml"
        bad.write_text("- item1\n- item2\n")
        monkeypatch.setenv("ITINERARY_SYNC_CONFIG", str(bad))

        assert load_hierarchical_config() == {}

    def test_invalid_yaml_raises(self, isolated):
        """Malformed YAML is reported, not ignored."""
        _project_config(isolated, "sync: [unclosed\n")
        with pytest.raises(yaml.YAMLError):
            load_hierarchical_config()


# -------------------------------------------------------------------------
# Starter config
# -------------------------------------------------------------------------


class TestEnsureConfig:
    def test_creates_commented_starter(self, isolated):
        """A missing config is created as a commented starter."""
        path = ensure_config()
        assert path == isolated / ".itinerary_sync" / "config.yml"
        assert "poll_interval" in path.read_text()
        # Every line is commented out, so it loads as an empty document.
        assert load_hierarchical_config() == {}

    def test_existing_config_returned(self, isolated):
        """An existing config file is returned untouched."""
        proj = _project_config(isolated, "sync: {}\n")
        assert ensure_config() == proj
