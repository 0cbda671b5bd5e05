"""
Tests for the detail harvester: retry on transient failures, skip on
permanent ones, and enrichment of the parsed body.
"""

import asyncio

import pytest

from harvester.detail import DetailHarvester
from harvester.enrichment import DocumentEnrichmentService
from harvester.errors import (
    ConfigurationError,
    MalformedContentError,
    NotFoundError,
    ParseFailureError,
    TransientNetworkError,
)
from harvester.models import EmbeddedImage
from harvester.retry import RetryGateway
from harvester.source import ParsedDetail

from conftest import FakeFetcher, FakeOCR, FakeSource, RecordingSleep

URL = "https://site.test/item/1"


class FakeImageLoader:
    def __init__(self):
        self.requested = []

    async def load_all(self, urls):
        self.requested.extend(urls)
        return [EmbeddedImage(url=u, data=b"x" * 1024, width=10, height=10) for u in urls]


def _harvester(fetcher=None, source=None, ocr=None, image_loader=None, sleep=None):
    sleep = sleep or RecordingSleep()
    enrichment = DocumentEnrichmentService(ocr=ocr, ocr_gateway=RetryGateway(sleep=sleep))
    return DetailHarvester(
        fetcher=fetcher or FakeFetcher(),
        source=source or FakeSource(),
        enrichment=enrichment,
        image_loader=image_loader,
        gateway=RetryGateway(max_retries=2, initial_backoff=3.0, max_backoff=3.0, sleep=sleep),
    )


class TestHarvest:

    def test_success_builds_record(self):
        source = FakeSource(details={
            URL: ParsedDetail(title="Engineer", fields={"Location": "Seoul"}, body_text="•  Build   things"),
        })
        record = asyncio.run(_harvester(source=source).harvest(URL))
        assert record.url == URL
        assert record.title == "Engineer"
        assert record.fields == {"Location": "Seoul"}
        assert record.raw_text == "•  Build   things"
        assert record.body_text == "Build things"
        assert record.provenance == "text"
        assert record.id is None

    def test_transient_failures_retried_with_fixed_delay(self):
        sleep = RecordingSleep()
        fetcher = FakeFetcher(failures={URL: [TransientNetworkError("reset"), TransientNetworkError("reset")]})
        record = asyncio.run(_harvester(fetcher=fetcher, sleep=sleep).harvest(URL))
        assert record is not None
        assert len(fetcher.calls) == 3
        assert sleep.delays == [3.0, 3.0]

    def test_exhausted_retries_return_none(self):
        sleep = RecordingSleep()
        fetcher = FakeFetcher(failures={URL: [TransientNetworkError("down")] * 3})
        assert asyncio.run(_harvester(fetcher=fetcher, sleep=sleep).harvest(URL)) is None
        assert len(fetcher.calls) == 3

    @pytest.mark.parametrize("error", [
        NotFoundError("404"), MalformedContentError("bad"),
    ])
    def test_permanent_fetch_errors_skip_without_retry(self, error):
        sleep = RecordingSleep()
        fetcher = FakeFetcher(failures={URL: [error]})
        assert asyncio.run(_harvester(fetcher=fetcher, sleep=sleep).harvest(URL)) is None
        assert len(fetcher.calls) == 1
        assert sleep.delays == []

    def test_parse_failure_skips(self):
        source = FakeSource(detail_errors={URL: ParseFailureError("no body")})
        fetcher = FakeFetcher()
        assert asyncio.run(_harvester(fetcher=fetcher, source=source).harvest(URL)) is None
        assert len(fetcher.calls) == 1

    def test_configuration_error_propagates(self):
        fetcher = FakeFetcher(failures={URL: [ConfigurationError("bad selector")]})
        with pytest.raises(ConfigurationError):
            asyncio.run(_harvester(fetcher=fetcher).harvest(URL))

    def test_images_are_loaded_and_ocrd(self):
        source = FakeSource(details={
            URL: ParsedDetail(title="Poster", body_text="See poster", image_urls=["https://img.test/p.png"]),
        })
        loader = FakeImageLoader()
        ocr = FakeOCR(lambda n, ref: "Deadline: June 30")
        record = asyncio.run(_harvester(source=source, ocr=ocr, image_loader=loader).harvest(URL))
        assert loader.requested == ["https://img.test/p.png"]
        assert record.body_text == "See poster\n\nDeadline: June 30"
        assert record.provenance == "text+ocr"
