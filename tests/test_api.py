"""HTTP surface tests using FastAPI's TestClient with injected components."""

import asyncio
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from config.settings import Settings
from indexer.store import StoreError, StoreErrorCode
from server.app import create_app
from server.errors import StartupError
from sources.loader import CrawlTarget

from .fakes import FakeCrawler, FakeEmbedder, page

PAGES = [
    page("https://docs.example.org/pets/cats.html", "Cats", "cats are great pets"),
    page("https://docs.example.org/pets/dogs.html", "Dogs", "dogs are loyal companions"),
    page("https://docs.example.org/pets/index.html", "Index", "all pets"),
]

TARGETS = [
    CrawlTarget(name="pets", root_url="https://docs.example.org/pets/"),
]


@pytest.fixture
def settings(tmp_path):
    return Settings(index_path=str(tmp_path / "index.db"))


def build_client(settings, store=None, embedder=None, pages=PAGES):
    app = create_app(
        settings,
        store=store,
        embedder=embedder or FakeEmbedder(),
        targets=TARGETS,
        crawler=FakeCrawler(pages),
    )
    return TestClient(app)


@pytest.fixture
def client(settings):
    with build_client(settings) as client:
        yield client


class TestStartup:

    def test_crawls_before_serving(self, client):
        response = client.get("/stats")

        assert response.status_code == 200
        data = response.json()
        assert data["documents"] == {"pets": 3}
        assert data["total"] == 3
        assert data["targets"]["pets"]["indexed"] == 3

    def test_missing_template_aborts(self, settings, tmp_path):
        settings.templates_dir = str(tmp_path / "no-templates")

        with pytest.raises(StartupError, match="Template"):
            with build_client(settings):
                pass

    def test_dimension_mismatch_aborts(self, settings):
        class WideEmbedder(FakeEmbedder):
            dimension = 32

        with build_client(settings):
            pass

        with pytest.raises(StartupError, match="dimension"):
            with build_client(settings, embedder=WideEmbedder()):
                pass

    def test_serving_without_crawl(self, settings):
        with build_client(settings):
            pass
        settings.crawl_on_startup = False

        with build_client(settings, pages=[]) as client:
            data = client.get("/stats").json()

        assert data["documents"] == {"pets": 3}
        checkpoint = data["targets"]["pets"]
        assert checkpoint["last_url"] == "https://docs.example.org/pets/index.html"
        assert checkpoint["committed_at"]


class TestSearchApi:

    def test_json_results(self, client):
        response = client.get("/api/search", params={"q": "cats"})

        assert response.status_code == 200
        data = response.json()
        assert data["query"] == "cats"
        assert data["results"][0]["url"] == "https://docs.example.org/pets/cats.html"
        assert data["results"][0]["title"] == "Cats"
        assert "<b>cats</b>" in data["results"][0]["snippet"]
        assert data["timings"]["total"] >= 0

    def test_absent_query(self, client):
        response = client.get("/api/search")

        assert response.status_code == 200
        assert response.json()["results"] == []

    def test_invalid_query(self, client):
        response = client.get("/api/search", params={"q": '"unbalanced'})

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_query"

    def test_embedding_failure(self, settings):
        with build_client(settings, embedder=FakeEmbedder(fail_on="zebra")) as client:
            response = client.get("/api/search", params={"q": "zebra"})

        assert response.status_code == 503
        assert response.json()["error"] == "embedding_failed"


class TestSearchPage:

    def test_empty_page(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert "text/html" in response.headers["content-type"]
        assert '<form action="/"' in response.text
        assert 'class="result"' not in response.text

    def test_results_page(self, client):
        response = client.get("/", params={"q": "cats"})

        assert response.status_code == 200
        assert 'href="https://docs.example.org/pets/cats.html"' in response.text
        assert "<b>cats</b>" in response.text
        assert "results in" in response.text

    def test_query_is_escaped(self, client):
        response = client.get("/", params={"q": "<script>alert(1)</script>"})

        assert response.status_code == 200
        assert "<script>alert(1)</script>" not in response.text

    def test_invalid_query_renders_error(self, client):
        response = client.get("/", params={"q": '"unbalanced'})

        assert response.status_code == 400
        assert "text/html" in response.headers["content-type"]
        assert 'class="error"' in response.text


class TestOperationalEndpoints:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["ok"] is True
        assert response.json()["documents"] == 3

    def test_metrics(self, client):
        client.get("/api/search", params={"q": "cats"})

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "docsearch_search_requests_total" in response.text
        assert "docsearch_ingested_pages_total" in response.text

    def test_health_counts_off_the_event_loop(self, client):
        def count():
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                return 7
            return -1

        with patch.object(client.app.state.docsearch.store, "count", side_effect=count):
            response = client.get("/health")

        assert response.json()["documents"] == 7

    def test_health_reports_unavailable_store(self, client):
        error = StoreError(StoreErrorCode.READ_FAILED, "disk gone")
        with patch.object(client.app.state.docsearch.store, "count", side_effect=error):
            response = client.get("/health")

        assert response.status_code == 503
        assert response.json() == {"ok": False, "error": "read_failed"}
