"""Load and validate path rules and job configuration.

Configuration lives in ``.changegate/pipeline.yaml``. When the file is
absent the built-in defaults apply.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import yaml  # type: ignore[import-untyped]

from changegate.types import Category, Gate, PathRule

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_VERSION_FILE = "econml/_version.py"

CONFIG_REASON_PARSE_ERROR = "CONFIG_PARSE_ERROR"
CONFIG_REASON_SCHEMA_INVALID = "CONFIG_SCHEMA_INVALID"


class ConfigError(ValueError):
    """Pipeline configuration validation error."""

    reason_code: str

    def __init__(self, message: str, reason_code: str = CONFIG_REASON_SCHEMA_INVALID) -> None:
        super().__init__(message)
        self.reason_code = reason_code


def build_default_rules(version_file: str = DEFAULT_VERSION_FILE) -> tuple[PathRule, ...]:
    """Return the default first-match-wins rule list."""
    return (
        PathRule("README.md", Category.IGNORED),
        PathRule(".gitignore", Category.IGNORED),
        PathRule(version_file, Category.IGNORED),
        PathRule("prototypes/*", Category.IGNORED),
        PathRule("images/*", Category.IGNORED),
        PathRule("doc/*", Category.DOC),
        PathRule("notebooks/*", Category.NOTEBOOK),
    )


DEFAULT_RULES: tuple[PathRule, ...] = build_default_rules()


@dataclass(frozen=True)
class JobVariantConfig:
    """One matrix entry of a job group."""

    name: str
    command: str
    env: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class JobGroupConfig:
    """Configured job group: gate plus the variants it runs."""

    name: str
    gate: Gate
    variants: tuple[JobVariantConfig, ...]


def _tests_variant(kind: str, opts: str) -> JobVariantConfig:
    return JobVariantConfig(
        name=kind,
        command="python -m pytest",
        env={"PYTEST_ADDOPTS": opts},
    )


DEFAULT_JOB_GROUPS: tuple[JobGroupConfig, ...] = (
    JobGroupConfig(
        name="lint",
        gate=Gate.TEST_CODE,
        variants=(JobVariantConfig(name="pycodestyle", command="pycodestyle econml"),),
    ),
    JobGroupConfig(
        name="notebooks",
        gate=Gate.BUILD_NBS,
        variants=(
            JobVariantConfig(
                name="except customer scenarios",
                command="python -m pytest",
                env={"PYTEST_ADDOPTS": '-m "notebook"', "NOTEBOOK_DIR_PATTERN": "(?!CustomerScenarios)"},
            ),
            JobVariantConfig(
                name="customer scenarios",
                command="python -m pytest",
                env={"PYTEST_ADDOPTS": '-m "notebook"', "NOTEBOOK_DIR_PATTERN": "CustomerScenarios"},
            ),
        ),
    ),
    JobGroupConfig(
        name="tests",
        gate=Gate.TEST_CODE,
        variants=(
            _tests_variant("serial", '-m "serial" -n 1'),
            _tests_variant("other", '-m "cate_api" -n auto'),
            _tests_variant("dml", '-m "dml"'),
            _tests_variant(
                "main",
                '-m "not (notebook or automl or dml or serial or cate_api or treatment_featurization)" -n 2',
            ),
            _tests_variant("treatment", '-m "treatment_featurization" -n auto'),
        ),
    ),
    JobGroupConfig(
        name="build",
        gate=Gate.TEST_CODE,
        variants=(JobVariantConfig(name="sdist-wheel", command="python -m build"),),
    ),
    JobGroupConfig(
        name="docs",
        gate=Gate.BUILD_DOCS,
        variants=(JobVariantConfig(name="sphinx", command="sphinx-build -W doc build/sphinx/html"),),
    ),
)


@dataclass(frozen=True)
class PipelineConfig:
    """Normalized pipeline configuration."""

    rules: tuple[PathRule, ...] = DEFAULT_RULES
    job_groups: tuple[JobGroupConfig, ...] = DEFAULT_JOB_GROUPS

    def group(self, name: str) -> JobGroupConfig:
        for group in self.job_groups:
            if group.name == name:
                return group
        raise KeyError(name)


def config_path_for_repo(repo_root: Path) -> Path:
    """Return canonical config file path for a repository."""
    return repo_root.resolve() / ".changegate" / "pipeline.yaml"


def _parse_category(value: Any, where: str) -> Category:
    try:
        return Category(str(value).lower())
    except ValueError:
        allowed = ", ".join(c.value for c in Category)
        raise ConfigError(f"{where}: unknown category {value!r} (expected one of: {allowed})") from None


def _parse_rules(raw: Any) -> tuple[PathRule, ...]:
    if not isinstance(raw, list):
        raise ConfigError("pipeline.yaml `rules` must be a list")
    rules: list[PathRule] = []
    for index, entry in enumerate(raw):
        where = f"rules[{index}]"
        if not isinstance(entry, dict):
            raise ConfigError(f"{where}: expected mapping with `pattern` and `category`")
        pattern = entry.get("pattern")
        if not isinstance(pattern, str) or not pattern.strip():
            raise ConfigError(f"{where}: `pattern` must be a non-empty string")
        rules.append(PathRule(pattern.strip(), _parse_category(entry.get("category"), where)))
    return tuple(rules)


def _parse_job_groups(raw: Any) -> tuple[JobGroupConfig, ...]:
    if not isinstance(raw, dict) or not raw:
        raise ConfigError("pipeline.yaml `jobs` must be a non-empty mapping")
    groups: list[JobGroupConfig] = []
    for name, body in raw.items():
        where = f"jobs.{name}"
        if not isinstance(body, dict):
            raise ConfigError(f"{where}: expected mapping")
        try:
            gate = Gate(str(body.get("gate", "")).lower())
        except ValueError:
            allowed = ", ".join(g.value for g in Gate)
            raise ConfigError(f"{where}: unknown gate {body.get('gate')!r} (expected one of: {allowed})") from None

        variants_raw = body.get("variants")
        if variants_raw is None and "command" in body:
            variants_raw = [{"name": str(name), "command": body["command"], "env": body.get("env", {})}]
        if not isinstance(variants_raw, list) or not variants_raw:
            raise ConfigError(f"{where}: needs `command` or a non-empty `variants` list")

        variants: list[JobVariantConfig] = []
        for index, variant in enumerate(variants_raw):
            if not isinstance(variant, dict) or not isinstance(variant.get("command"), str):
                raise ConfigError(f"{where}.variants[{index}]: `command` must be a string")
            env = variant.get("env") or {}
            if not isinstance(env, dict):
                raise ConfigError(f"{where}.variants[{index}]: `env` must be a mapping")
            variants.append(
                JobVariantConfig(
                    name=str(variant.get("name", f"{name}-{index}")),
                    command=variant["command"],
                    env={str(k): str(v) for k, v in env.items()},
                )
            )
        groups.append(JobGroupConfig(name=str(name), gate=gate, variants=tuple(variants)))
    return tuple(groups)


def parse_config(raw: Any) -> PipelineConfig:
    """Normalize a decoded YAML document into a PipelineConfig."""
    if raw is None:
        return PipelineConfig()
    if not isinstance(raw, dict):
        raise ConfigError(
            "pipeline.yaml parse error: expected mapping at top level",
            CONFIG_REASON_PARSE_ERROR,
        )

    if "rules" in raw:
        rules = _parse_rules(raw["rules"])
    else:
        version_file = raw.get("version_file", DEFAULT_VERSION_FILE)
        if not isinstance(version_file, str) or not version_file.strip():
            raise ConfigError("pipeline.yaml `version_file` must be a non-empty string")
        rules = build_default_rules(version_file.strip())

    job_groups = _parse_job_groups(raw["jobs"]) if "jobs" in raw else DEFAULT_JOB_GROUPS
    return PipelineConfig(rules=rules, job_groups=job_groups)


def load_config(repo_root: Path) -> PipelineConfig:
    """Load pipeline config for a repository, falling back to defaults."""
    path = config_path_for_repo(repo_root)
    if not path.exists():
        logger.debug("no config at %s, using defaults", path)
        return PipelineConfig()

    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"cannot read {path}: {exc}", CONFIG_REASON_PARSE_ERROR) from exc

    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"pipeline.yaml parse error: {exc}", CONFIG_REASON_PARSE_ERROR) from exc

    config = parse_config(raw)
    logger.debug("loaded %d rules and %d job groups from %s", len(config.rules), len(config.job_groups), path)
    return config


def config_to_dict(config: PipelineConfig) -> dict[str, Any]:
    """Render a config back into its YAML document shape."""
    return {
        "rules": [{"pattern": r.pattern, "category": r.category.value} for r in config.rules],
        "jobs": {
            group.name: {
                "gate": group.gate.value,
                "variants": [
                    {"name": v.name, "command": v.command, "env": dict(v.env)}
                    for v in group.variants
                ],
            }
            for group in config.job_groups
        },
    }


def write_default_config(repo_root: Path, *, force: bool = False) -> Path:
    """Create the default pipeline YAML deterministically."""
    output_path = config_path_for_repo(repo_root)
    if output_path.exists() and not force:
        raise FileExistsError(f"Config file already exists: {output_path}")

    output_path.parent.mkdir(parents=True, exist_ok=True)
    rendered = yaml.safe_dump(config_to_dict(PipelineConfig()), sort_keys=True)
    output_path.write_text(rendered, encoding="utf-8")
    return output_path
