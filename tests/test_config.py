"""Configuration loading tests."""

from pathlib import Path

import pytest

from cli.config import DEFAULT_HANDLERS, Settings, load_settings


def test_missing_file_yields_defaults(tmp_path: Path) -> None:
    settings = load_settings(tmp_path / "bashoutter.yml")
    assert settings.stage_name == "prod"
    assert settings.runtime == "python3.12"
    assert settings.handlers == DEFAULT_HANDLERS
    assert settings.base_dir == tmp_path.resolve()


def test_yaml_values_override_defaults(tmp_path: Path) -> None:
    config = tmp_path / "bashoutter.yml"
    config.write_text(
        "\n".join(
            [
                "project_name: Poems",
                "stage_name: beta",
                "asset_dir: site/build",
                "stage_variables:",
                "  LOG_LEVEL: debug",
                "handlers:",
                "  GET: poems.list_poems",
                "default_format: table",
            ]
        ),
        encoding="utf-8",
    )
    settings = load_settings(config)
    assert settings.project_name == "Poems"
    assert settings.stage_name == "beta"
    assert settings.asset_dir == Path("site/build")
    assert settings.stage_variables == {"LOG_LEVEL": "debug"}
    assert settings.handlers["get"] == "poems.list_poems"
    assert settings.handlers["post"] == DEFAULT_HANDLERS["post"]
    assert settings.default_format == "table"


def test_non_mapping_file_is_rejected(tmp_path: Path) -> None:
    config = tmp_path / "bashoutter.yml"
    config.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ValueError, match="mapping"):
        load_settings(config)


def test_cli_overrides_win() -> None:
    settings = Settings(stage_name="prod", default_format="json")
    merged = settings.merge_cli(format_override="md", stage_override="dev")
    assert (merged.stage_name, merged.default_format) == ("dev", "md")
    assert (settings.stage_name, settings.default_format) == ("prod", "json")
    assert settings.merge_cli().stage_name == "prod"
