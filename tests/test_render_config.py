"""
Tests for RenderConfig parsing, validation and path-based updates.
"""

import logging
from pathlib import Path

import pytest

from render_config import (
    InvalidConfig,
    RenderConfig,
    WatermarkConfig,
    default_render_config,
    load_render_config,
    save_render_config,
)

CONFIG_DIR = Path(__file__).resolve().parent.parent / "render_configs"


@pytest.fixture
def config_dict():
    return default_render_config().to_dict()


class TestFromDict:
    def test_shipped_configs_load(self):
        printed = load_render_config(CONFIG_DIR / "invoice-print.json")
        display = load_render_config(CONFIG_DIR / "invoice-display.json")

        assert printed.print_settings.include_page_numbers is True
        assert display.print_settings.include_page_numbers is False
        assert printed.print_settings.pdf_metadata.keywords == ("invoice",)

    def test_to_dict_uses_camel_case_keys(self, config_dict):
        assert "print" in config_dict
        assert "pdfMetadata" in config_dict["print"]
        assert "showAlternatingRows" in config_dict["table"]
        assert "darkGray" in config_dict["colors"]

    def test_defaults_survive_json_shape(self, config_dict):
        assert RenderConfig.from_dict(config_dict) == default_render_config()

    def test_unknown_keys_are_reported(self, config_dict, caplog):
        config_dict["logo"]["position"] = "left"
        config_dict["print"]["printHeader"] = True
        config_dict["print"]["backgroundPrint"] = False
        config_dict["version"] = 2

        with caplog.at_level(logging.WARNING, logger="render_config"):
            config = RenderConfig.from_dict(config_dict)

        assert config == default_render_config()
        assert "position at config.logo" in caplog.text
        assert "backgroundPrint, printHeader at config.print" in caplog.text
        assert "version at config" in caplog.text

    def test_known_keys_log_nothing(self, config_dict, caplog):
        with caplog.at_level(logging.WARNING, logger="render_config"):
            RenderConfig.from_dict(config_dict)

        assert caplog.records == []

    def test_hex_colors_accepted(self, config_dict):
        config_dict["colors"]["primary"] = "#ff8000"

        assert RenderConfig.from_dict(config_dict).colors.primary == (255, 128, 0)

    @pytest.mark.parametrize("part", ["colors", "layout", "typography", "sections"])
    def test_core_parts_are_required(self, config_dict, part):
        del config_dict[part]

        with pytest.raises(InvalidConfig, match=part):
            RenderConfig.from_dict(config_dict)

    def test_enabled_section_requires_its_part(self, config_dict):
        del config_dict["table"]

        with pytest.raises(InvalidConfig, match="table is required while itemsTable is enabled"):
            RenderConfig.from_dict(config_dict)

    def test_disabled_section_part_may_be_absent(self, config_dict):
        del config_dict["table"]
        config_dict["sections"]["itemsTable"] = False

        assert RenderConfig.from_dict(config_dict).table is None

    def test_malformed_part_of_disabled_section_is_dropped(self, config_dict, caplog):
        config_dict["sections"]["footer"] = False
        config_dict["footer"] = {"showThankYou": "yes"}

        with caplog.at_level(logging.WARNING, logger="render_config"):
            config = RenderConfig.from_dict(config_dict)

        assert config.footer is None
        assert "disabled section" in caplog.text

    def test_malformed_part_of_enabled_section_raises(self, config_dict):
        config_dict["footer"] = {"showThankYou": "yes"}

        with pytest.raises(InvalidConfig, match="showThankYou"):
            RenderConfig.from_dict(config_dict)

    def test_enabled_watermark_requires_valid_fields(self, config_dict):
        config_dict["watermark"] = {"enabled": True, "opacity": 3}

        with pytest.raises(InvalidConfig, match="opacity"):
            RenderConfig.from_dict(config_dict)

    def test_bad_color_raises(self, config_dict):
        config_dict["colors"]["primary"] = [300, 0, 0]

        with pytest.raises(InvalidConfig, match="primary"):
            RenderConfig.from_dict(config_dict)

    def test_unknown_column_raises(self, config_dict):
        config_dict["table"]["columns"] = ["description", "discount"]

        with pytest.raises(InvalidConfig, match="discount"):
            RenderConfig.from_dict(config_dict)

    def test_unparsable_rotation_is_kept_for_the_renderer(self, config_dict):
        config_dict["watermark"]["rotation"] = "diagonal"

        rotation = RenderConfig.from_dict(config_dict).watermark.rotation

        assert rotation != rotation  # NaN


class TestUpdated:
    """Path-based updates return new values."""

    def test_returns_new_value(self):
        base = default_render_config()
        changed = base.updated("watermark.opacity", 0.2)

        assert changed.watermark.opacity == 0.2
        assert base.watermark.opacity == 0.1

    def test_nested_path(self):
        changed = default_render_config().updated("typography.body.size", 11)

        assert changed.typography.body.size == 11

    def test_absent_part_is_created_from_defaults(self):
        base = default_render_config().updated("watermark", None)
        changed = base.updated("watermark.text", "PAID")

        assert base.watermark is None
        assert changed.watermark == WatermarkConfig(text="PAID")

    def test_unknown_path_raises(self):
        with pytest.raises(InvalidConfig, match="nope"):
            default_render_config().updated("layout.nope", 1)

    def test_value_is_validated(self):
        with pytest.raises(InvalidConfig):
            default_render_config().updated("watermark.opacity", 2)

    def test_columns_update(self):
        changed = default_render_config().updated("table.columns", ["amount", "description"])

        assert changed.table.columns == ("amount", "description")


class TestValidateForRender:
    def test_defaults_are_valid(self):
        default_render_config().validate_for_render()

    def test_missing_part_for_enabled_section(self):
        config = default_render_config().updated("currency", None)

        with pytest.raises(InvalidConfig, match="currency"):
            config.validate_for_render()

    def test_enabled_watermark_needs_text(self):
        config = default_render_config().updated("watermark.enabled", True).updated("watermark.text", "  ")

        with pytest.raises(InvalidConfig, match="watermark.text"):
            config.validate_for_render()

    def test_empty_columns(self):
        config = default_render_config().updated("table.columns", [])

        with pytest.raises(InvalidConfig, match="columns"):
            config.validate_for_render()


class TestFiles:
    def test_save_then_load(self, tmp_path):
        config = default_render_config().updated("currency.symbol", "€")
        path = tmp_path / "nested" / "print.json"

        save_render_config(config, path)

        assert load_render_config(path) == config
