"""Tests for pipeline config loading."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
import yaml

from changegate.rules import (
    CONFIG_REASON_PARSE_ERROR,
    CONFIG_REASON_SCHEMA_INVALID,
    DEFAULT_JOB_GROUPS,
    DEFAULT_RULES,
    ConfigError,
    config_path_for_repo,
    load_config,
    parse_config,
    write_default_config,
)
from changegate.types import Category, Gate

if TYPE_CHECKING:
    from pathlib import Path


def _write_config(repo: Path, text: str) -> None:
    path = config_path_for_repo(repo)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def test_missing_config_uses_defaults(tmp_path: Path) -> None:
    config = load_config(tmp_path)
    assert config.rules == DEFAULT_RULES
    assert config.job_groups == DEFAULT_JOB_GROUPS


def test_default_job_groups_and_gates() -> None:
    gates = {group.name: group.gate for group in DEFAULT_JOB_GROUPS}
    assert gates == {
        "lint": Gate.TEST_CODE,
        "notebooks": Gate.BUILD_NBS,
        "tests": Gate.TEST_CODE,
        "build": Gate.TEST_CODE,
        "docs": Gate.BUILD_DOCS,
    }


def test_custom_rules_replace_defaults(tmp_path: Path) -> None:
    _write_config(
        tmp_path,
        """
rules:
  - pattern: CHANGELOG.md
    category: ignored
  - pattern: "docs/*"
    category: Doc
""".lstrip(),
    )
    config = load_config(tmp_path)
    assert [(r.pattern, r.category) for r in config.rules] == [
        ("CHANGELOG.md", Category.IGNORED),
        ("docs/*", Category.DOC),
    ]
    assert config.job_groups == DEFAULT_JOB_GROUPS


def test_version_file_override(tmp_path: Path) -> None:
    _write_config(tmp_path, "version_file: mypkg/_version.py\n")
    patterns = [rule.pattern for rule in load_config(tmp_path).rules]
    assert "mypkg/_version.py" in patterns
    assert "econml/_version.py" not in patterns


def test_jobs_with_single_command_shorthand() -> None:
    config = parse_config(
        {
            "jobs": {
                "lint": {"gate": "test_code", "command": "ruff check ."},
                "verify": {"gate": "always", "command": "true"},
            }
        }
    )
    lint = config.group("lint")
    assert lint.gate is Gate.TEST_CODE
    assert [v.command for v in lint.variants] == ["ruff check ."]
    assert config.group("verify").gate is Gate.ALWAYS


def test_jobs_with_variants_and_env() -> None:
    config = parse_config(
        {
            "jobs": {
                "tests": {
                    "gate": "test_code",
                    "variants": [
                        {"name": "fast", "command": "pytest", "env": {"PYTEST_ADDOPTS": "-m fast", "N": 2}},
                    ],
                }
            }
        }
    )
    variant = config.group("tests").variants[0]
    assert variant.name == "fast"
    assert variant.env == {"PYTEST_ADDOPTS": "-m fast", "N": "2"}


def test_unknown_group_lookup_raises() -> None:
    with pytest.raises(KeyError):
        parse_config(None).group("missing")


def test_malformed_yaml_raises_parse_error(tmp_path: Path) -> None:
    _write_config(tmp_path, "rules: [unclosed\n")
    with pytest.raises(ConfigError) as excinfo:
        load_config(tmp_path)
    assert excinfo.value.reason_code == CONFIG_REASON_PARSE_ERROR


def test_top_level_list_is_parse_error(tmp_path: Path) -> None:
    _write_config(tmp_path, "- a\n- b\n")
    with pytest.raises(ConfigError) as excinfo:
        load_config(tmp_path)
    assert excinfo.value.reason_code == CONFIG_REASON_PARSE_ERROR


def test_unknown_category_is_schema_error() -> None:
    with pytest.raises(ConfigError, match="unknown category") as excinfo:
        parse_config({"rules": [{"pattern": "x", "category": "binary"}]})
    assert excinfo.value.reason_code == CONFIG_REASON_SCHEMA_INVALID


def test_empty_pattern_rejected() -> None:
    with pytest.raises(ConfigError, match="pattern"):
        parse_config({"rules": [{"pattern": "  ", "category": "doc"}]})


def test_unknown_gate_rejected() -> None:
    with pytest.raises(ConfigError, match="unknown gate"):
        parse_config({"jobs": {"lint": {"gate": "sometimes", "command": "x"}}})


def test_job_without_command_rejected() -> None:
    with pytest.raises(ConfigError, match="variants"):
        parse_config({"jobs": {"lint": {"gate": "test_code"}}})


def test_write_default_config_round_trips(tmp_path: Path) -> None:
    path = write_default_config(tmp_path)
    assert path == config_path_for_repo(tmp_path)

    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    assert data["rules"][0] == {"pattern": "README.md", "category": "ignored"}

    config = load_config(tmp_path)
    assert config.rules == DEFAULT_RULES
    assert {g.name for g in config.job_groups} == {g.name for g in DEFAULT_JOB_GROUPS}


def test_write_default_config_refuses_overwrite(tmp_path: Path) -> None:
    write_default_config(tmp_path)
    with pytest.raises(FileExistsError):
        write_default_config(tmp_path)
    write_default_config(tmp_path, force=True)


def test_non_utf8_config_raises_parse_error(tmp_path: Path) -> None:
    path = config_path_for_repo(tmp_path)
    path.parent.mkdir(parents=True)
    path.write_bytes(b"rules: \xff\xfe\n")

    with pytest.raises(ConfigError, match="cannot read") as excinfo:
        load_config(tmp_path)
    assert excinfo.value.reason_code == CONFIG_REASON_PARSE_ERROR


def test_unreadable_config_path_raises_parse_error(tmp_path: Path) -> None:
    # A directory where the file should be fails to read on every platform.
    config_path_for_repo(tmp_path).mkdir(parents=True)

    with pytest.raises(ConfigError) as excinfo:
        load_config(tmp_path)
    assert excinfo.value.reason_code == CONFIG_REASON_PARSE_ERROR
