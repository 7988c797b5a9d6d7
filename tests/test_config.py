import json
from pathlib import Path

import pytest

from honcho_claudis.config import (
    get_all_sessions,
    get_config_path,
    get_env_overrides,
    get_session_for_path,
    load_config,
    read_config_file,
    remove_session_for_path,
    save_config,
    session_name_for_path,
    set_session_for_path,
    write_config_file,
)


def test_read_config_file_rejects_invalid_json(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("{not-json}")
    with pytest.raises(ValueError, match="invalid config json"):
        read_config_file(config_path)


def test_read_config_file_missing_is_empty(tmp_path: Path) -> None:
    assert read_config_file(tmp_path / "missing.json") == {}


def test_get_config_path_honours_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HONCHO_CLAUDIS_CONFIG", str(tmp_path / "custom.json"))
    assert get_config_path() == tmp_path / "custom.json"


def test_load_config_missing_file_is_none() -> None:
    assert load_config() is None


def test_load_config_invalid_json_is_none(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("{nope")
    assert load_config(config_path) is None


@pytest.mark.parametrize("missing", ["peerName", "apiKey", "workspace"])
def test_load_config_requires_core_fields(tmp_path: Path, missing: str) -> None:
    data = {"peerName": "eri", "apiKey": "hch-test", "workspace": "eri-code"}
    del data[missing]
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps(data))

    assert load_config(config_path) is None


def test_load_config_maps_camel_case_keys(config_file: Path) -> None:
    data = json.loads(config_file.read_text())
    data.update(
        {
            "saveMessages": False,
            "sessions": {"/work/parser": "parser-work", "/bad": 3},
            "contextStaleAfterS": 90,
            "refreshEveryMessages": "5",
            "dialecticOnPrompt": "true",
        }
    )
    config_file.write_text(json.dumps(data))

    cfg = load_config()

    assert cfg is not None
    assert cfg.peer_name == "eri"
    assert cfg.api_key == "hch-test"
    assert cfg.workspace == "eri-code"
    assert cfg.claude_peer == "claudis"
    assert cfg.save_messages is False
    assert cfg.sessions == {"/work/parser": "parser-work"}
    assert cfg.context_stale_after_s == 90
    assert cfg.refresh_every_messages == 5
    assert cfg.dialectic_on_prompt is True


def test_load_config_defaults(config_file: Path) -> None:
    cfg = load_config()

    assert cfg is not None
    assert cfg.save_messages is True
    assert cfg.sessions == {}
    assert cfg.context_stale_after_s == 60
    assert cfg.refresh_every_messages == 10
    assert cfg.dialectic_on_prompt is False


def test_env_overrides_apply(config_file: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HONCHO_CLAUDIS_API_KEY", "hch-env")
    monkeypatch.setenv("HONCHO_CLAUDIS_REFRESH_EVERY_MESSAGES", "3")
    monkeypatch.setenv("HONCHO_CLAUDIS_DIALECTIC_ON_PROMPT", "1")

    cfg = load_config()

    assert cfg is not None
    assert cfg.api_key == "hch-env"
    assert cfg.refresh_every_messages == 3
    assert cfg.dialectic_on_prompt is True
    assert get_env_overrides()["api_key"] == "hch-env"


def test_invalid_int_warns_and_keeps_default(config_file: Path) -> None:
    data = json.loads(config_file.read_text())
    data["refreshEveryMessages"] = "often"
    config_file.write_text(json.dumps(data))

    with pytest.warns(RuntimeWarning, match="refresh_every_messages"):
        cfg = load_config()

    assert cfg is not None
    assert cfg.refresh_every_messages == 10


def test_save_config_round_trips(config_file: Path) -> None:
    cfg = load_config()
    assert cfg is not None
    cfg.sessions = {"/work/parser": "parser-work"}

    save_config(cfg)
    written = json.loads(config_file.read_text())

    assert written["peerName"] == "eri"
    assert written["sessions"] == {"/work/parser": "parser-work"}


def test_session_mapping_helpers(config_file: Path) -> None:
    assert get_session_for_path("/work/parser") is None

    set_session_for_path("/work/parser", "parser-work")
    assert get_session_for_path("/work/parser") == "parser-work"
    assert get_all_sessions() == {"/work/parser": "parser-work"}
    assert json.loads(config_file.read_text())["apiKey"] == "hch-test"

    assert remove_session_for_path("/work/parser") is True
    assert remove_session_for_path("/work/parser") is False
    assert get_all_sessions() == {}


def test_session_helpers_work_without_api_key(tmp_path: Path) -> None:
    config_path = tmp_path / "partial.json"
    write_config_file({"peerName": "eri"}, config_path)

    set_session_for_path("/work/parser", "parser-work", config_path)

    assert get_session_for_path("/work/parser", config_path) == "parser-work"


@pytest.mark.parametrize(
    ("cwd", "configured", "expected"),
    [
        ("/home/eri/code/Parser", None, "project-parser"),
        ("/home/eri/code/my app.v2", None, "project-my-app-v2"),
        ("/home/eri/code/tool_kit-x", None, "project-tool_kit-x"),
        ("/home/eri/code/parser", "parser-work", "parser-work"),
    ],
)
def test_session_name_for_path(cwd: str, configured: str | None, expected: str) -> None:
    assert session_name_for_path(cwd, configured) == expected
