"""
Tests for layered run configuration: defaults, environment, CLI overlay,
validation and per-component converters.
"""

import argparse

import pytest

from harvester.errors import ConfigurationError
from harvester.run_config import HarvestRunConfig


class TestLayers:

    def test_defaults(self):
        cfg = HarvestRunConfig()
        assert cfg.empty_threshold == 3
        assert cfg.duplicate_threshold == 3
        assert cfg.min_sample == 5
        assert cfg.batch_size == 10
        assert cfg.max_tile_width == 4000
        assert cfg.tile_overlap == 200
        assert cfg.end_page is None

    def test_env_values_are_coerced(self):
        cfg = HarvestRunConfig.from_env({
            "HARVESTER_END_PAGE": "12",
            "HARVESTER_DETAIL_DELAY": "1.5",
            "HARVESTER_USE_BROWSER": "no",
            "HARVESTER_BATCH_SIZE": "25",
            "HARVESTER_LIST_WAIT_SELECTOR": "ul.items",
            "MISTRAL_API_KEY": "secret",
        })
        assert cfg.end_page == 12
        assert cfg.detail_delay == 1.5
        assert cfg.use_browser is False
        assert cfg.batch_size == 25
        assert cfg.list_wait_selector == "ul.items"
        assert cfg.api_key == "secret"

    def test_bad_env_value(self):
        with pytest.raises(ConfigurationError):
            HarvestRunConfig.from_env({"HARVESTER_BATCH_SIZE": "many"})

    def test_cli_overrides_env(self):
        args = argparse.Namespace(batch_size=3, end_page=None, verbose=True)
        cfg = HarvestRunConfig.from_cli_args(args, environ={"HARVESTER_BATCH_SIZE": "25",
                                                             "HARVESTER_END_PAGE": "9"})
        assert cfg.batch_size == 3
        assert cfg.end_page == 9


class TestValidate:

    def test_crawl_requires_page_placeholder(self):
        with pytest.raises(ConfigurationError):
            HarvestRunConfig(listing_url_template="https://site.test/list").validate(need_crawl=True)

    def test_store_only_needs_nothing(self):
        HarvestRunConfig().validate(need_crawl=False)

    @pytest.mark.parametrize("overrides", [
        {"start_page": 0},
        {"start_page": 5, "end_page": 2},
        {"batch_size": 0},
        {"tile_overlap": 4000},
        {"empty_threshold": 0},
    ])
    def test_invalid_limits(self, overrides):
        with pytest.raises(ConfigurationError):
            HarvestRunConfig(**overrides).validate(need_crawl=False)

    def test_scoring_requires_key_and_files(self, tmp_path):
        profile = tmp_path / "profile.txt"
        profile.write_text("Python developer", encoding="utf-8")
        instructions = tmp_path / "instructions.txt"
        instructions.write_text("Rate fit.", encoding="utf-8")

        with pytest.raises(ConfigurationError):
            HarvestRunConfig(profile_path=str(profile), instructions_path=str(instructions)).validate(
                need_crawl=False, need_scoring=True)

        HarvestRunConfig(
            api_key="k", profile_path=str(profile), instructions_path=str(instructions)
        ).validate(need_crawl=False, need_scoring=True)

        with pytest.raises(ConfigurationError):
            HarvestRunConfig(api_key="k", profile_path=str(tmp_path / "missing.txt"),
                             instructions_path=str(instructions)).validate(
                need_crawl=False, need_scoring=True)


class TestConverters:

    def test_retry_policies(self):
        cfg = HarvestRunConfig()
        detail = cfg.to_retry_policy("detail")
        assert detail.max_retries == 2
        assert [detail.delay_for(n) for n in range(2)] == [3.0, 3.0]

        api = cfg.to_retry_policy("ocr")
        assert [api.delay_for(n) for n in range(4)] == [2.0, 4.0, 8.0, 15.0]

        with pytest.raises(ConfigurationError):
            cfg.to_retry_policy("nowhere")

    def test_source_config_keep_params(self):
        cfg = HarvestRunConfig(listing_url_template="https://s.test/?p={page}", keep_params="rec_idx, id ,")
        assert cfg.to_source_config().keep_params == ("rec_idx", "id")

    def test_tiling_limits(self):
        limits = HarvestRunConfig(max_tile_height=2000, tile_overlap=100).to_tiling_limits()
        assert limits.max_height == 2000
        assert limits.overlap == 100

    def test_page_range(self):
        page_range = HarvestRunConfig(start_page=2, end_page=4).to_page_range()
        assert list(page_range.pages()) == [2, 3, 4]
