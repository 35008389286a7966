"""Configuration loader for the bashoutter CLI."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from core.constants import DEFAULT_INDEX_DOCUMENT, DEFAULT_RUNTIME, DEFAULT_STAGE

DEFAULTS = {
    "project_name": "Bashoutter",
    "region": "us-east-1",
    "stage_name": DEFAULT_STAGE,
    "asset_dir": "gui/dist",
    "api_code_dir": "api",
    "runtime": DEFAULT_RUNTIME,
    "index_document": DEFAULT_INDEX_DOCUMENT,
    "error_document": None,
    "api_path_pattern": "haiku/*",
    "default_format": "json",
}

DEFAULT_HANDLERS = {
    "get": "api.get_haiku",
    "post": "api.post_haiku",
    "patch": "api.patch_haiku",
    "delete": "api.delete_haiku",
}


@dataclass(slots=True)
class Settings:
    project_name: str = DEFAULTS["project_name"]
    region: str = DEFAULTS["region"]
    stage_name: str = DEFAULTS["stage_name"]
    stage_variables: dict[str, str] = field(default_factory=dict)
    asset_dir: Path = Path(DEFAULTS["asset_dir"])
    api_code_dir: Path = Path(DEFAULTS["api_code_dir"])
    runtime: str = DEFAULTS["runtime"]
    index_document: str = DEFAULTS["index_document"]
    error_document: str | None = DEFAULTS["error_document"]
    api_path_pattern: str = DEFAULTS["api_path_pattern"]
    handlers: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_HANDLERS))
    default_format: str = DEFAULTS["default_format"]
    base_dir: Path = field(default_factory=Path.cwd)

    @classmethod
    def from_mapping(cls, data: dict[str, Any], base_dir: Path | None = None) -> "Settings":
        handlers = dict(DEFAULT_HANDLERS)
        handlers.update({str(verb).lower(): str(handler) for verb, handler in (data.get("handlers") or {}).items()})
        return cls(
            project_name=str(data.get("project_name", DEFAULTS["project_name"])),
            region=str(data.get("region", DEFAULTS["region"])),
            stage_name=str(data.get("stage_name", DEFAULTS["stage_name"])),
            stage_variables={str(key): str(value) for key, value in (data.get("stage_variables") or {}).items()},
            asset_dir=Path(data.get("asset_dir", DEFAULTS["asset_dir"])),
            api_code_dir=Path(data.get("api_code_dir", DEFAULTS["api_code_dir"])),
            runtime=str(data.get("runtime", DEFAULTS["runtime"])),
            index_document=str(data.get("index_document", DEFAULTS["index_document"])),
            error_document=data.get("error_document", DEFAULTS["error_document"]),
            api_path_pattern=str(data.get("api_path_pattern", DEFAULTS["api_path_pattern"])),
            handlers=handlers,
            default_format=str(data.get("default_format", DEFAULTS["default_format"])),
            base_dir=base_dir or Path.cwd(),
        )

    def merge_cli(self, format_override: str | None = None, stage_override: str | None = None) -> "Settings":
        return Settings(
            project_name=self.project_name,
            region=self.region,
            stage_name=stage_override or self.stage_name,
            stage_variables=dict(self.stage_variables),
            asset_dir=self.asset_dir,
            api_code_dir=self.api_code_dir,
            runtime=self.runtime,
            index_document=self.index_document,
            error_document=self.error_document,
            api_path_pattern=self.api_path_pattern,
            handlers=dict(self.handlers),
            default_format=format_override or self.default_format,
            base_dir=self.base_dir,
        )


def load_settings(path: Path) -> Settings:
    if not path.exists():
        return Settings(base_dir=path.resolve().parent)

    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}

    if not isinstance(data, dict):
        raise ValueError("Configuration file must be a mapping of keys to values.")

    return Settings.from_mapping(data, base_dir=path.resolve().parent)


__all__ = ["DEFAULT_HANDLERS", "Settings", "load_settings"]
