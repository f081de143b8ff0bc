from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Optional

import yaml

from solution_upgrader.core.errors import ConfigError


DEFAULT_CONFIG_NAME = "solution-upgrader.yaml"

DEFAULT_PACKAGE_SOURCES: list[str] = [
    "https://api.nuget.org/v3/index.json",
    "https://nuget.sitefinity.com/nuget",
]


@dataclass(frozen=True)
class ProductSettings:
    package_id: str = "Telerik.Sitefinity.All"
    reference_keywords: list[str] = field(
        default_factory=lambda: ["Telerik.Sitefinity", "Progress.Sitefinity"]
    )
    excluded_keywords: list[str] = field(default_factory=lambda: ["Progress.Sitefinity.Renderer"])
    public_key_token: str = "b28c218413bdf563"


@dataclass(frozen=True)
class ExecutorSettings:
    # Placeholders: {config}, {solution}, {workdir}
    command: list[str] = field(default_factory=list)
    workdir: Optional[str] = None
    poll_interval: float = 0.5
    # None waits forever, which is what the executor protocol assumes.
    timeout: Optional[float] = None
    # Seconds a finished executor gets to exit before it is terminated.
    exit_grace: float = 5.0


@dataclass(frozen=True)
class UpgradeSettings:
    product: ProductSettings = field(default_factory=ProductSettings)
    executor: ExecutorSettings = field(default_factory=ExecutorSettings)
    package_sources: list[str] = field(default_factory=lambda: list(DEFAULT_PACKAGE_SOURCES))
    package_catalog: Optional[str] = None
    base_dir: Optional[str] = None

    def resolve(self, value: Optional[str], default: str) -> Path:
        """Resolve a configured path relative to ``base_dir``."""
        p = Path(value or default)
        if not p.is_absolute() and self.base_dir:
            p = Path(self.base_dir) / p
        return p

    @property
    def workdir(self) -> Path:
        return self.resolve(self.executor.workdir, ".upgrade")

    @property
    def catalog_dir(self) -> Path:
        return self.resolve(self.package_catalog, "packages-catalog")


def _str_list(value: Any, key: str) -> list[str]:
    if not isinstance(value, list) or any(not isinstance(x, str) or not x.strip() for x in value):
        raise ConfigError(
            code="E_CONFIG_INVALID",
            message=f"{key} must be a list of non-empty strings",
            path=key,
        )
    return [x.strip() for x in value]


def _number(value: Any, key: str, *, allow_none: bool = False) -> Optional[float]:
    if value is None and allow_none:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigError(
            code="E_CONFIG_INVALID",
            message=f"{key} must be a positive number",
            path=key,
        )
    return float(value)


def _mapping(value: Any, key: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(code="E_CONFIG_INVALID", message=f"{key} must be a mapping", path=key)
    return value


def parse_settings(raw: Any, *, base_dir: Optional[str] = None) -> UpgradeSettings:
    """Build settings from a parsed YAML mapping, keeping defaults for missing keys."""
    data = _mapping(raw, "<root>")
    settings = UpgradeSettings(base_dir=base_dir)

    product_raw = _mapping(data.get("product"), "product")
    product = settings.product
    if "package_id" in product_raw:
        pid = product_raw["package_id"]
        if not isinstance(pid, str) or not pid.strip():
            raise ConfigError(
                code="E_CONFIG_INVALID",
                message="product.package_id must be a non-empty string",
                path="product.package_id",
            )
        product = replace(product, package_id=pid.strip())
    if "reference_keywords" in product_raw:
        product = replace(
            product,
            reference_keywords=_str_list(product_raw["reference_keywords"], "product.reference_keywords"),
        )
    if "excluded_keywords" in product_raw:
        product = replace(
            product,
            excluded_keywords=_str_list(product_raw["excluded_keywords"], "product.excluded_keywords"),
        )
    if "public_key_token" in product_raw:
        token = product_raw["public_key_token"]
        if not isinstance(token, str) or not token.strip():
            raise ConfigError(
                code="E_CONFIG_INVALID",
                message="product.public_key_token must be a non-empty string",
                path="product.public_key_token",
            )
        product = replace(product, public_key_token=token.strip())

    executor_raw = _mapping(data.get("executor"), "executor")
    executor = settings.executor
    if "command" in executor_raw:
        command = executor_raw["command"]
        if isinstance(command, str):
            command = command.split()
        executor = replace(executor, command=_str_list(command, "executor.command"))
    if "workdir" in executor_raw:
        if not isinstance(executor_raw["workdir"], str):
            raise ConfigError(
                code="E_CONFIG_INVALID",
                message="executor.workdir must be a string",
                path="executor.workdir",
            )
        executor = replace(executor, workdir=executor_raw["workdir"])
    if "poll_interval" in executor_raw:
        executor = replace(
            executor,
            poll_interval=_number(executor_raw["poll_interval"], "executor.poll_interval"),
        )
    if "timeout" in executor_raw:
        executor = replace(
            executor,
            timeout=_number(executor_raw["timeout"], "executor.timeout", allow_none=True),
        )
    if "exit_grace" in executor_raw:
        executor = replace(
            executor,
            exit_grace=_number(executor_raw["exit_grace"], "executor.exit_grace"),
        )

    sources = settings.package_sources
    if "package_sources" in data:
        sources = _str_list(data["package_sources"], "package_sources")

    catalog = settings.package_catalog
    if "package_catalog" in data:
        if not isinstance(data["package_catalog"], str):
            raise ConfigError(
                code="E_CONFIG_INVALID",
                message="package_catalog must be a string",
                path="package_catalog",
            )
        catalog = data["package_catalog"]

    return replace(
        settings,
        product=product,
        executor=executor,
        package_sources=sources,
        package_catalog=catalog,
    )


def _apply_env(settings: UpgradeSettings) -> UpgradeSettings:
    executor = settings.executor
    interval = os.getenv("SOLUTION_UPGRADER_POLL_INTERVAL", "").strip()
    if interval:
        executor = replace(executor, poll_interval=_env_number(interval, "SOLUTION_UPGRADER_POLL_INTERVAL"))
    timeout = os.getenv("SOLUTION_UPGRADER_TIMEOUT", "").strip()
    if timeout:
        executor = replace(executor, timeout=_env_number(timeout, "SOLUTION_UPGRADER_TIMEOUT"))
    return replace(settings, executor=executor)


def _env_number(text: str, key: str) -> float:
    try:
        value = float(text)
    except ValueError:
        value = -1.0
    if value <= 0:
        raise ConfigError(code="E_CONFIG_INVALID", message=f"{key} must be a positive number", path=key)
    return value


def load_settings(config_file: Optional[str], solution_path: Optional[str] = None) -> UpgradeSettings:
    """Load settings from ``config_file``, or from the default file beside the solution.

    Relative paths inside the file resolve against the solution directory.
    """
    base_dir = str(Path(solution_path).resolve().parent) if solution_path else None

    path: Optional[Path] = None
    if config_file:
        path = Path(config_file)
        if not path.exists():
            raise ConfigError(
                code="E_FILE_NOT_FOUND",
                message=f"config file not found: {config_file}",
                file=str(path),
            )
    elif base_dir and (Path(base_dir) / DEFAULT_CONFIG_NAME).exists():
        path = Path(base_dir) / DEFAULT_CONFIG_NAME

    if path is None:
        return _apply_env(UpgradeSettings(base_dir=base_dir))

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(code="E_CONFIG_INVALID", message=str(e), file=str(path)) from e

    try:
        settings = parse_settings(raw, base_dir=base_dir)
    except ConfigError as e:
        raise ConfigError(code=e.code, message=e.message, file=str(path), path=e.path) from e
    return _apply_env(settings)


def split_package_sources(text: Optional[str], defaults: list[str]) -> list[str]:
    """Comma-separated sources from the command line; fall back to ``defaults``."""
    if not text:
        return list(defaults)
    return [s.strip() for s in text.split(",") if s.strip()]
