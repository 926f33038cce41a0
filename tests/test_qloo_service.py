"""Unit tests for QlooService — taste-graph search, insights and enrichment."""
import httpx
import pytest
from tenacity import wait_none

from app.services.qloo_service import QlooService, _is_retryable_http_error, _normalise_entity

SEARCH_HITS = {
    "drake": [{"entity_id": "E-DRAKE", "name": "Drake", "popularity": 0.98}],
    "inception": [{"entity_id": "E-INC", "name": "Inception", "popularity": 0.91}],
    "nobody": [],
}

INSIGHTS = {
    "E-DRAKE": [
        {"entity_id": "B-OVO", "name": "OVO", "popularity": 0.7},
        {"entity_id": "B-NIKE", "name": "Nike"},
    ],
    "E-INC": [{"entity_id": "B-WB", "name": "Warner Bros", "popularity": 0.8}],
}


def _make_service(handler):
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler),
        base_url="https://qloo.test",
    )
    service = QlooService(http_client=client)
    service._retry_wait = wait_none()
    return service


def _taste_graph_handler(request: httpx.Request) -> httpx.Response:
    params = request.url.params
    if request.url.path == "/search":
        hits = SEARCH_HITS.get(params["query"].lower())
        if hits is None:
            return httpx.Response(500, json={"error": "boom"})
        return httpx.Response(200, json={"results": hits})
    if request.url.path == "/v2/insights":
        entities = INSIGHTS.get(params["signal.interests.entities"], [])
        return httpx.Response(200, json={"results": {"entities": entities}})
    return httpx.Response(404)


class TestHelpers:
    def test_normalise_entity(self):
        assert _normalise_entity({"entity_id": "E1", "name": "Drake", "popularity": 1}) == {
            "entity_id": "E1",
            "name": "Drake",
            "popularity": 1.0,
        }

    @pytest.mark.parametrize("raw", [None, "E1", {"name": "Drake"}, {"entity_id": "E1"}, {"entity_id": "", "name": "x"}])
    def test_normalise_entity_rejects_incomplete(self, raw):
        assert _normalise_entity(raw) is None

    def test_retryable_statuses(self):
        request = httpx.Request("GET", "https://qloo.test/search")
        for status, expected in [(429, True), (503, True), (500, True), (404, False), (401, False)]:
            exc = httpx.HTTPStatusError("x", request=request, response=httpx.Response(status, request=request))
            assert _is_retryable_http_error(exc) is expected
        assert _is_retryable_http_error(httpx.ConnectError("refused"))
        assert not _is_retryable_http_error(ValueError("nope"))


class TestRawEndpoints:
    @pytest.mark.asyncio
    async def test_search_params(self):
        seen = {}

        def handler(request):
            seen.update(request.url.params)
            return httpx.Response(200, json={"results": []})

        service = _make_service(handler)
        await service.search("Drake", entity_type="artist", take=3)

        assert seen == {
            "query": "Drake",
            "take": "3",
            "page": "1",
            "sort_by": "match",
            "types": "urn:entity:artist",
        }

    @pytest.mark.asyncio
    async def test_insights_defaults(self):
        seen = {}

        def handler(request):
            seen.update(request.url.params)
            return httpx.Response(200, json={"results": {"entities": []}})

        service = _make_service(handler)
        await service.insights("E-DRAKE")

        assert seen["filter.type"] == "urn:entity:brand"
        assert seen["signal.interests.entities"] == "E-DRAKE"
        assert seen["take"] == "5"

    @pytest.mark.asyncio
    async def test_retries_server_errors(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503)
            return httpx.Response(200, json={"results": []})

        service = _make_service(handler)
        assert await service.search("Drake") == {"results": []}
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_client_error_raised_without_retry(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(401)

        service = _make_service(handler)
        with pytest.raises(httpx.HTTPStatusError):
            await service.search("Drake")
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_list_payload_wrapped(self):
        service = _make_service(lambda request: httpx.Response(200, json=[1, 2]))
        assert await service.search("x") == {"data": [1, 2]}


class TestEnrichInterests:
    @pytest.mark.asyncio
    async def test_enrichment_map(self):
        service = _make_service(_taste_graph_handler)
        enrichment = await service.enrich_interests(
            {"artist": ["Drake"], "movie": ["Inception"], "cuisine": ["Ramen"]}
        )

        assert enrichment == {
            "artist": [
                {"entity_id": "B-OVO", "name": "OVO", "popularity": 0.7},
                {"entity_id": "B-NIKE", "name": "Nike", "popularity": 0.0},
            ],
            "movie": [{"entity_id": "B-WB", "name": "Warner Bros", "popularity": 0.8}],
        }

    @pytest.mark.asyncio
    async def test_unresolved_interest_omitted(self):
        service = _make_service(_taste_graph_handler)
        assert await service.enrich_interests({"book": ["Nobody"]}) == {}

    @pytest.mark.asyncio
    async def test_failing_lookup_skips_only_that_interest(self):
        service = _make_service(_taste_graph_handler)
        enrichment = await service.enrich_interests({"artist": ["Unknown Band", "Drake"]})
        assert [e["entity_id"] for e in enrichment["artist"]] == ["B-OVO", "B-NIKE"]

    @pytest.mark.asyncio
    async def test_enrichment_search_is_untyped(self):
        seen = []

        def handler(request):
            if request.url.path == "/search":
                seen.append(dict(request.url.params))
            return _taste_graph_handler(request)

        service = _make_service(handler)
        enrichment = await service.enrich_interests({"tag": ["Drake"], "artist": ["Inception"]})

        assert seen and all("types" not in params for params in seen)
        assert set(enrichment) == {"tag", "artist"}

    @pytest.mark.asyncio
    async def test_search_results_object_skipped(self):
        def handler(request):
            if request.url.path == "/search":
                return httpx.Response(200, json={"results": {"entities": []}})
            return _taste_graph_handler(request)

        service = _make_service(handler)
        assert await service.enrich_interests({"artist": ["Drake"]}) == {}

    @pytest.mark.asyncio
    async def test_insights_results_list_skipped(self):
        def handler(request):
            if request.url.path == "/v2/insights":
                return httpx.Response(200, json={"results": [{"entity_id": "B1", "name": "OVO"}]})
            return _taste_graph_handler(request)

        service = _make_service(handler)
        enrichment = await service.enrich_interests({"artist": ["Drake"], "movie": ["Inception"]})
        assert enrichment == {"artist": [], "movie": []}

    @pytest.mark.asyncio
    async def test_insights_entities_not_a_list_skipped(self):
        def handler(request):
            if request.url.path == "/v2/insights":
                return httpx.Response(200, json={"results": {"entities": "OVO"}})
            return _taste_graph_handler(request)

        service = _make_service(handler)
        assert await service.enrich_interests({"artist": ["Drake"]}) == {"artist": []}
