from __future__ import annotations

from pathlib import Path

import pytest

from certsigner.apps.cli.options import OptionsError, ParsedOptions, parse_options


def test_base_dir_is_required():
    for value in (None, "", "   "):
        result = parse_options(value, None)
        assert isinstance(result, OptionsError)
        assert result.exit_code == 2


def test_base_dir_may_not_exist_yet(tmp_path: Path):
    result = parse_options(str(tmp_path / "new-node"), None)
    assert result == ParsedOptions(base_dir=tmp_path / "new-node")


def test_base_dir_must_be_a_directory(tmp_path: Path):
    target = tmp_path / "file"
    target.write_text("x", encoding="utf-8")
    assert isinstance(parse_options(str(target), None), OptionsError)


@pytest.mark.parametrize("config_file", ["", "missing.yaml"])
def test_config_file_must_exist(tmp_path: Path, config_file: str):
    assert isinstance(parse_options(str(tmp_path), config_file), OptionsError)


def test_existing_config_file_is_accepted(tmp_path: Path):
    config = tmp_path / "custom.yaml"
    config.write_text("my_legal_name: Test LLC\n", encoding="utf-8")
    result = parse_options(str(tmp_path), str(config))
    assert isinstance(result, ParsedOptions)
    assert result.config_file == config
