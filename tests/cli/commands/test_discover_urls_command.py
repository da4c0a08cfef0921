import argparse
import json

import pytest

import src.pipeline as pipeline_module
from src.cli.commands.discovery import add_discover_urls_parser, handle_discovery_command
from src.crawler import ConfigurationError
from src.utils.discovery_outcomes import DiscoveredUrl, DiscoveryResult


def parse(argv):
    parser = argparse.ArgumentParser()
    subparsers = parser.add_subparsers(dest="command")
    add_discover_urls_parser(subparsers)
    return parser.parse_args(["discover-urls", *argv])


class FakePipeline:
    calls = []
    result = None
    error = None

    def discover(self, url, **kwargs):
        FakePipeline.calls.append((url, kwargs))
        if FakePipeline.error is not None:
            raise FakePipeline.error
        return FakePipeline.result


@pytest.fixture
def fake_pipeline(monkeypatch):
    FakePipeline.calls = []
    FakePipeline.error = None
    FakePipeline.result = DiscoveryResult(
        urls=[
            DiscoveredUrl(
                url="https://example.com/blog/first-post",
                title="First post",
                published_date="2024-02-01",
                content_section="blog",
            ),
            DiscoveredUrl(url="https://example.com/blog/second-post", title="Second post"),
        ],
        method="sitemap",
        content_sections=["blog"],
        errors={"rss": "Feed returned HTTP 404"},
    )
    monkeypatch.setattr(pipeline_module, "BlogImportPipeline", FakePipeline)
    return FakePipeline


def test_parser_defaults():
    args = parse(["https://example.com/blog"])

    assert args.max_urls == 100
    assert args.max_posts is None
    assert args.validate is False
    assert args.as_json is False
    assert args.func is handle_discovery_command


def test_summary_output(fake_pipeline, capsys):
    args = parse(["https://example.com/blog", "--max-urls", "20", "--language", "german", "--validate"])

    assert handle_discovery_command(args) == 0

    url, kwargs = fake_pipeline.calls[0]
    assert url == "https://example.com/blog"
    assert kwargs["max_urls"] == 20
    assert kwargs["language"] == "german"
    assert kwargs["validate"] is True

    output = capsys.readouterr().out
    assert "Method: sitemap" in output
    assert "URLs found: 2" in output
    assert "2024-02-01  https://example.com/blog/first-post" in output
    assert "rss: Feed returned HTTP 404" in output


def test_json_output(fake_pipeline, capsys):
    args = parse(["https://example.com/blog", "--json", "--date-from", "2024-01-01"])

    assert handle_discovery_command(args) == 0

    payload = json.loads(capsys.readouterr().out)
    assert payload["method"] == "sitemap"
    assert [item["url"] for item in payload["urls"]] == [
        "https://example.com/blog/first-post",
        "https://example.com/blog/second-post",
    ]
    assert fake_pipeline.calls[0][1]["date_from"] == "2024-01-01"


def test_reader_error_returns_failure(fake_pipeline, capsys):
    fake_pipeline.error = ConfigurationError("FIRECRAWL_API_KEY is not set")

    assert handle_discovery_command(parse(["https://example.com/blog"])) == 1
    assert "Discovery failed" in capsys.readouterr().out


def test_bad_date_returns_failure(fake_pipeline):
    fake_pipeline.error = ValueError("Invalid isoformat string: 'yesterday'")

    assert handle_discovery_command(parse(["https://example.com/blog", "--date-from", "yesterday"])) == 1
