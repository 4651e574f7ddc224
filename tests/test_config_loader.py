"""
Tests for configuration file loading.
"""
import pytest

from adapt_heal.config_loader import (
    deep_merge,
    find_config_file,
    flatten_config,
    get_env_config,
    load_config_file,
    load_config_with_overrides,
    merge_config,
)


def test_load_yaml_file(tmp_path) -> None:
    """Test loading a YAML config."""
    path = tmp_path / "config.yaml"
    path.write_text("advisory:\n  provider: anthropic\n  timeout: 10\n")

    config = load_config_file(str(path))

    assert config == {"advisory": {"provider": "anthropic", "timeout": 10}}


def test_load_empty_yaml_file(tmp_path) -> None:
    """Test an empty YAML file loads as an empty dict."""
    path = tmp_path / "config.yml"
    path.write_text("")

    assert load_config_file(str(path)) == {}


def test_load_toml_file(tmp_path) -> None:
    """Test loading a TOML config."""
    path = tmp_path / "config.toml"
    path.write_text('[execution]\nrollback_order = "forward"\nmax_retries = 2\n')

    config = load_config_file(str(path))

    assert config["execution"] == {"rollback_order": "forward", "max_retries": 2}


def test_load_invalid_yaml(tmp_path) -> None:
    """Test malformed YAML raises ValueError."""
    path = tmp_path / "bad.yaml"
    path.write_text("advisory: [unclosed\n")

    with pytest.raises(ValueError, match="Failed to parse YAML"):
        load_config_file(str(path))


def test_load_unsupported_format(tmp_path) -> None:
    """Test unsupported extensions are rejected."""
    path = tmp_path / "config.ini"
    path.write_text("[advisory]\n")

    with pytest.raises(ValueError, match="Unsupported config file format"):
        load_config_file(str(path))


def test_load_missing_file(tmp_path) -> None:
    """Test missing file raises FileNotFoundError."""
    with pytest.raises(FileNotFoundError):
        load_config_file(str(tmp_path / "nope.yaml"))


def test_deep_merge() -> None:
    """Test nested override precedence."""
    base = {"advisory": {"provider": "none", "timeout": 30}, "logging": {"level": "INFO"}}
    override = {"advisory": {"timeout": 5}}

    merged = deep_merge(base, override)

    assert merged == {"advisory": {"provider": "none", "timeout": 5}, "logging": {"level": "INFO"}}
    assert base["advisory"]["timeout"] == 30


def test_flatten_config_ignores_unknown_keys() -> None:
    """Test unknown sections and keys are dropped."""
    flat = flatten_config({
        "execution": {"max_retries": 2, "bogus": True},
        "logging": {"level": "DEBUG", "file": "heal.log"},
        "extra": {"x": 1},
        "scalar": 5,
    })

    assert flat == {"max_retries": 2, "log_level": "DEBUG", "log_file": "heal.log"}


def test_get_env_config(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test env vars map onto nested sections with parsing."""
    monkeypatch.setenv("ADAPT_HEAL_ADVISORY_TIMEOUT", "12")
    monkeypatch.setenv("ADAPT_HEAL_ALLOW_GRAPH_ONLY", "false")
    monkeypatch.setenv("ADAPT_HEAL_MAX_RETRIES", "many")

    config = get_env_config()

    assert config["advisory"]["timeout"] == 12
    assert config["analysis"]["allow_graph_only"] is False
    assert "max_retries" not in config.get("execution", {})


def test_merge_config_env_wins() -> None:
    """Test environment values override file values."""
    merged = merge_config(
        {"execution": {"max_retries": 5, "rollback_order": "forward"}},
        {"execution": {"max_retries": 1}},
    )

    assert merged == {"max_retries": 1, "rollback_order": "forward"}


def test_find_config_file_in_cwd(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Test the working directory is searched first."""
    monkeypatch.chdir(tmp_path)
    (tmp_path / "adapt-heal.toml").write_text("[logging]\nlevel = \"DEBUG\"\n")

    assert find_config_file() == tmp_path / "adapt-heal.toml"


def test_load_config_with_overrides_explicit_path(tmp_path) -> None:
    """Test explicit path is loaded and flattened."""
    path = tmp_path / "heal.yaml"
    path.write_text("analysis:\n  min_confidence: 0.3\n")

    assert load_config_with_overrides(str(path))["min_confidence"] == 0.3
