"""
Tests for candidate URL canonicalization.
"""

import pytest

from harvester.utils import URLNormalizer, humanized_delay, truncate


@pytest.fixture
def normalizer():
    return URLNormalizer()


class TestNormalize:
    """Same item, same string."""

    def test_scheme_and_host_lowercased(self, normalizer):
        assert normalizer.normalize("HTTPS://Site.TEST/Item/1") == "https://site.test/Item/1"

    def test_fragment_removed(self, normalizer):
        assert normalizer.normalize("https://site.test/a#section") == "https://site.test/a"

    def test_tracking_params_removed(self, normalizer):
        url = "https://site.test/view?id=3&utm_source=x&gclid=y"
        assert normalizer.normalize(url) == "https://site.test/view?id=3"

    def test_duplicate_and_trailing_slashes(self, normalizer):
        assert normalizer.normalize("https://site.test//a//b/") == "https://site.test/a/b"
        assert normalizer.normalize("https://site.test/") == "https://site.test/"

    def test_relative_resolved(self, normalizer):
        assert normalizer.normalize("../item/2", "https://site.test/list/page") == "https://site.test/item/2"

    @pytest.mark.parametrize("href", [
        "", "#top", "javascript:void(0)", "mailto:a@b.test", "ftp://site.test/x",
        "https://site.test/file.pdf", "https://site.test/logo.PNG",
    ])
    def test_rejected(self, normalizer, href):
        assert normalizer.normalize(href) is None

    def test_keep_params_whitelist(self):
        normalizer = URLNormalizer(keep_params=["rec_idx"])
        url = "https://site.test/view?rec_idx=9&view_type=list&recommend_ids=1"
        assert normalizer.normalize(url) == "https://site.test/view?rec_idx=9"

    def test_normalize_all_preserves_first_seen_order(self, normalizer):
        hrefs = ["/b", "/a", "/b#x", "mailto:x@y.test", "/c/"]
        assert normalizer.normalize_all(hrefs, "https://site.test/") == [
            "https://site.test/b",
            "https://site.test/a",
            "https://site.test/c",
        ]


class TestHelpers:

    def test_humanized_delay_within_spread(self):
        for _ in range(100):
            assert 3.75 <= humanized_delay(5.0) <= 6.25

    def test_humanized_delay_zero(self):
        assert humanized_delay(0) == 0.0

    def test_truncate(self):
        assert truncate("a  b\nc") == "a b c"
        assert truncate("x" * 100, 10) == "xxxxxxx..."
