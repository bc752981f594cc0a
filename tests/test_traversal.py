# File: tests/test_traversal.py
# Traversal engine against an in-memory fetcher, plus one run over real HTTP
from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
from aiohttp import web
from prometheus_client import CollectorRegistry

from conftest import StubFetcher, serve_app
from crawl_service.crawler.fetcher import WebFetcher
from crawl_service.crawler.traversal import CrawlJob, CrawlResult, CrawlTraversal
from crawl_service.errors import TraversalError
from crawl_service.utils.monitoring import CrawlMetrics


def links(*urls: str) -> str:
    return "".join(f'<a href="{url}">{url}</a>' for url in urls)


def make_traversal(fetcher, fast_limiter, fast_retry, **kwargs) -> CrawlTraversal:
    return CrawlTraversal(fetcher=fetcher, rate_limiter=fast_limiter,
                          retry_policy=fast_retry, **kwargs)


@pytest.mark.asyncio()
async def test_single_page_job(fast_limiter, fast_retry):
    fetcher = StubFetcher({"https://a.test/": "<p>hello</p>"})
    traversal = make_traversal(fetcher, fast_limiter, fast_retry)

    results = await traversal.traverse(
        CrawlJob(job_id="1", seed_url="https://a.test/", recursive=False, max_depth=0)
    )

    assert [r.to_dict() for r in results] == [
        {"url": "https://a.test/", "content": "<p>hello</p>", "failed": False}
    ]


@pytest.mark.asyncio()
async def test_non_recursive_job_ignores_links(fast_limiter, fast_retry):
    fetcher = StubFetcher({
        "https://a.test/": links("https://b.test/"),
        "https://b.test/": "b",
    })
    traversal = make_traversal(fetcher, fast_limiter, fast_retry)

    results = await traversal.traverse(
        CrawlJob(job_id="1", seed_url="https://a.test/", recursive=False, max_depth=3)
    )

    assert [r.url for r in results] == ["https://a.test/"]
    assert fetcher.fetched == ["https://a.test/"]


@pytest.mark.asyncio()
async def test_self_link_is_deduplicated(fast_limiter, fast_retry):
    fetcher = StubFetcher({
        "https://a.test/": links("https://b.test/", "https://a.test/"),
        "https://b.test/": "<p>b</p>",
    })
    traversal = make_traversal(fetcher, fast_limiter, fast_retry)

    results = await traversal.traverse(
        CrawlJob(job_id="2", seed_url="https://a.test/", recursive=True, max_depth=1)
    )

    assert [r.url for r in results] == ["https://a.test/", "https://b.test/"]
    assert all(not r.failed for r in results)


@pytest.mark.asyncio()
async def test_depth_first_document_order(fast_limiter, fast_retry):
    fetcher = StubFetcher({
        "https://a.test/": links("https://a.test/1", "https://a.test/2"),
        "https://a.test/1": links("https://a.test/1/x", "https://a.test/2"),
        "https://a.test/1/x": "leaf",
        "https://a.test/2": links("https://a.test/2/y"),
        "https://a.test/2/y": "leaf",
    })
    traversal = make_traversal(fetcher, fast_limiter, fast_retry)

    results = await traversal.traverse(
        CrawlJob(job_id="3", seed_url="https://a.test/", recursive=True, max_depth=2)
    )

    # /2 is first reached through /1 at depth 2, so its own links are not followed
    assert [(r.url, r.depth) for r in results] == [
        ("https://a.test/", 0),
        ("https://a.test/1", 1),
        ("https://a.test/1/x", 2),
        ("https://a.test/2", 2),
    ]
    assert "https://a.test/2/y" not in fetcher.fetched


@pytest.mark.asyncio()
async def test_depth_bound_and_no_duplicates_on_diamond_graph(fast_limiter, fast_retry):
    fetcher = StubFetcher({
        "https://a.test/": links("https://b.test/", "https://c.test/"),
        "https://b.test/": links("https://d.test/", "https://c.test/"),
        "https://c.test/": links("https://d.test/", "https://e.test/"),
        "https://d.test/": links("https://a.test/"),
        "https://e.test/": "e",
    })
    traversal = make_traversal(fetcher, fast_limiter, fast_retry)

    results = await traversal.traverse(
        CrawlJob(job_id="4", seed_url="https://a.test/", recursive=True, max_depth=2)
    )

    urls = [r.url for r in results]
    assert len(urls) == len(set(urls))
    assert all(r.depth <= 2 for r in results)
    assert urls == ["https://a.test/", "https://b.test/", "https://d.test/", "https://c.test/"]
    assert "https://e.test/" not in fetcher.fetched


@pytest.mark.asyncio()
async def test_robots_disallowed_url_is_recorded_without_fetch(fast_limiter, fast_retry):
    fetcher = StubFetcher({"https://c.test/secret": "classified"},
                          disallowed={"https://c.test/secret"})
    traversal = make_traversal(fetcher, fast_limiter, fast_retry)

    results = await traversal.traverse(
        CrawlJob(job_id="5", seed_url="https://c.test/secret")
    )

    assert [r.to_dict() for r in results] == [
        {"url": "https://c.test/secret", "content": None, "failed": True}
    ]
    assert fetcher.fetched == []


@pytest.mark.asyncio()
async def test_fetch_succeeding_on_fourth_attempt_records_one_success(
        fast_limiter, fast_retry, sleep_recorder):
    fetcher = StubFetcher({"https://a.test/": "finally"}, failures={"https://a.test/": 3})
    traversal = make_traversal(fetcher, fast_limiter, fast_retry)

    results = await traversal.traverse(CrawlJob(job_id="6", seed_url="https://a.test/"))

    assert results == [CrawlResult(url="https://a.test/", content="finally", failed=False)]
    assert len(fetcher.fetched) == 4
    assert sleep_recorder.delays == [10, 20, 60]


@pytest.mark.asyncio()
async def test_unreachable_seed_fails_the_traversal(fast_limiter, fast_retry):
    fetcher = StubFetcher({})
    traversal = make_traversal(fetcher, fast_limiter, fast_retry)

    with pytest.raises(TraversalError) as exc_info:
        await traversal.traverse(CrawlJob(job_id="7", seed_url="https://down.test/"))

    assert len(fetcher.fetched) == 4
    assert [r.to_dict() for r in exc_info.value.results] == [
        {"url": "https://down.test/", "content": None, "failed": True}
    ]


@pytest.mark.asyncio()
async def test_failed_link_fails_the_traversal(fast_limiter, fast_retry):
    fetcher = StubFetcher({
        "https://a.test/": links("https://down.test/", "https://b.test/"),
        "https://b.test/": "b",
    })
    traversal = make_traversal(fetcher, fast_limiter, fast_retry)

    with pytest.raises(TraversalError) as exc_info:
        await traversal.traverse(
            CrawlJob(job_id="8", seed_url="https://a.test/", recursive=True, max_depth=1)
        )

    assert exc_info.value.url == "https://down.test/"
    assert [(r.url, r.failed) for r in exc_info.value.results] == [
        ("https://a.test/", False),
        ("https://down.test/", True),
    ]
    assert "https://b.test/" not in fetcher.fetched


@pytest.mark.asyncio()
async def test_failed_link_can_be_skipped_when_configured(fast_limiter, fast_retry):
    fetcher = StubFetcher({
        "https://a.test/": links("https://down.test/", "https://b.test/"),
        "https://b.test/": "b",
    })
    traversal = make_traversal(fetcher, fast_limiter, fast_retry, abort_on_link_failure=False)

    results = await traversal.traverse(
        CrawlJob(job_id="9", seed_url="https://a.test/", recursive=True, max_depth=1)
    )

    assert [(r.url, r.failed) for r in results] == [
        ("https://a.test/", False),
        ("https://down.test/", True),
        ("https://b.test/", False),
    ]


@pytest.mark.asyncio()
async def test_unreachable_seed_fails_even_when_links_are_skipped(fast_limiter, fast_retry):
    traversal = make_traversal(StubFetcher({}), fast_limiter, fast_retry,
                               abort_on_link_failure=False)

    with pytest.raises(TraversalError):
        await traversal.traverse(
            CrawlJob(job_id="9", seed_url="https://down.test/", recursive=True, max_depth=1)
        )


@pytest.mark.asyncio()
async def test_metrics_are_counted(fast_limiter, fast_retry):
    metrics = CrawlMetrics(CollectorRegistry())
    fetcher = StubFetcher(
        {
            "https://a.test/": links("https://a.test/no", "https://b.test/"),
            "https://b.test/": "b",
        },
        failures={"https://b.test/": 1},
        disallowed={"https://a.test/no"},
    )
    traversal = make_traversal(fetcher, fast_limiter, fast_retry, metrics=metrics)

    await traversal.traverse(
        CrawlJob(job_id="10", seed_url="https://a.test/", recursive=True, max_depth=1)
    )

    snapshot = metrics.snapshot()
    assert snapshot["crawler_pages_fetched_total"] == 2
    assert snapshot["crawler_robots_blocked_total"] == 1
    assert snapshot["crawler_fetch_retries_total"] == 1


def test_job_payload_conversion():
    job = CrawlJob.from_dict("42", {"url": "https://a.test/", "recursive": True,
                                    "depth": 2, "rate_limit": 3})

    assert job == CrawlJob(job_id="42", seed_url="https://a.test/", recursive=True,
                           max_depth=2, rate_limit=3)
    assert job.to_dict() == {"url": "https://a.test/", "recursive": True,
                             "depth": 2, "rate_limit": 3}
    assert CrawlJob.from_dict("1", {"url": "https://a.test/"}).rate_limit is None


# --------------------------------------------------------------------------- #
#                      Over HTTP with the real fetcher                        #
# --------------------------------------------------------------------------- #


@pytest_asyncio.fixture
async def two_sites(unused_tcp_port_factory) -> AsyncIterator[tuple]:
    port_a, port_b = unused_tcp_port_factory(), unused_tcp_port_factory()
    base_a, base_b = f"http://127.0.0.1:{port_a}", f"http://127.0.0.1:{port_b}"
    requested = []

    app_a = web.Application()

    async def root_a(request):
        requested.append(request.url.path)
        return web.Response(text=links(f"{base_b}/", f"{base_a}/", f"{base_a}/secret"),
                            content_type="text/html")

    async def secret_a(request):
        requested.append(request.url.path)
        return web.Response(text="classified", content_type="text/html")

    async def robots_a(_):
        return web.Response(text="User-agent: *\nDisallow: /secret\n")

    app_a.router.add_get("/", root_a)
    app_a.router.add_get("/secret", secret_a)
    app_a.router.add_get("/robots.txt", robots_a)

    app_b = web.Application()

    async def root_b(_):
        return web.Response(text="<p>b</p>", content_type="text/html")

    app_b.router.add_get("/", root_b)

    gen_a = serve_app(app_a, port_a)
    gen_b = serve_app(app_b, port_b)
    await gen_a.__anext__()
    await gen_b.__anext__()
    try:
        yield base_a, base_b, requested
    finally:
        await gen_a.aclose()
        await gen_b.aclose()


@pytest.mark.asyncio()
async def test_recursive_crawl_over_http(two_sites, fast_limiter, fast_retry):
    base_a, base_b, requested = two_sites

    async with WebFetcher(user_agent="CrawlService", request_timeout=2, robots_timeout=2) as fetcher:
        traversal = make_traversal(fetcher, fast_limiter, fast_retry)
        results = await traversal.traverse(
            CrawlJob(job_id="http", seed_url=f"{base_a}/", recursive=True, max_depth=1)
        )

    assert [(r.url, r.failed) for r in results] == [
        (f"{base_a}/", False),
        (f"{base_b}/", False),
        (f"{base_a}/secret", True),
    ]
    assert results[1].content == "<p>b</p>"
    assert "/secret" not in requested
