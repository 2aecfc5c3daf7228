from __future__ import annotations

from pathlib import Path

import pytest

from microtermi.env import Environment, load_env, save_env


def test_profile_file_is_preferred(tmp_path: Path) -> None:
    (tmp_path / ".env").write_text("API_URL=http://fallback\n", encoding="utf-8")
    (tmp_path / ".env.staging").write_text("API_URL=https://staging\n# comment\nDEBUG=1\n", encoding="utf-8")

    assert load_env(tmp_path, Environment.STAGING) == {"API_URL": "https://staging", "DEBUG": "1"}


def test_falls_back_to_plain_env_file(tmp_path: Path) -> None:
    (tmp_path / ".env").write_text('GREETING="hello world"\n', encoding="utf-8")

    assert load_env(tmp_path, "prod") == {"GREETING": "hello world"}


def test_no_env_files_yields_empty_mapping(tmp_path: Path) -> None:
    assert load_env(tmp_path) == {}


def test_values_are_not_interpolated(tmp_path: Path) -> None:
    (tmp_path / ".env.dev").write_text("HOME_DIR=${HOME}/app\n", encoding="utf-8")

    assert load_env(tmp_path, Environment.DEV) == {"HOME_DIR": "${HOME}/app"}


def test_save_env_writes_sorted_keys(tmp_path: Path) -> None:
    path = save_env(tmp_path, Environment.DEV, {"ZED": "1", "ALPHA": "2", " ": "skip"})

    assert path == tmp_path / ".env.dev"
    keys = [line.split("=", 1)[0] for line in path.read_text(encoding="utf-8").splitlines() if line]
    assert keys == ["ALPHA", "ZED"]
    assert load_env(tmp_path, Environment.DEV) == {"ALPHA": "2", "ZED": "1"}


def test_saved_values_load_back_unchanged(tmp_path: Path) -> None:
    values = {
        "COMMENTED": "x #y",
        "PADDED": " padded ",
        "QUOTES": "it's \"fine\"",
        "URL": "https://example.test/?a=1&b=2",
    }

    save_env(tmp_path, Environment.STAGING, values)

    assert load_env(tmp_path, Environment.STAGING) == values


def test_save_env_drops_keys_missing_from_new_values(tmp_path: Path) -> None:
    save_env(tmp_path, Environment.PROD, {"OLD": "1", "KEEP": "2"})

    save_env(tmp_path, Environment.PROD, {"KEEP": "3"})

    assert load_env(tmp_path, Environment.PROD) == {"KEEP": "3"}


def test_unknown_environment_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        load_env(tmp_path, "qa")
