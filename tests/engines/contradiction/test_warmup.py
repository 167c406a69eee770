"""Tests for inference model warming."""

import json

import httpx
import pytest

from reqconflict.core.backoff import BackoffCaller
from reqconflict.core.config import Settings
from reqconflict.engines.contradiction.warmup import ModelWarmer


async def _no_sleep(_: float) -> None:
    return None


def make_warmer(handler, **overrides) -> ModelWarmer:
    values = {
        "huggingface_api_key": "hf_test",
        "huggingface_api_url": "https://hf.test/models",
        "similarity_model": "org/sim-model",
        "nli_model": "org/nli-model",
        "nli_endpoint_url": "",
        "nli_endpoint_api_key": "",
        "model_warming_max_retries": 2,
    }
    values.update(overrides)
    caller = BackoffCaller(
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        base_delay=0.0,
        sleep=_no_sleep,
    )
    return ModelWarmer(caller=caller, settings=Settings(**values))


@pytest.mark.asyncio
async def test_warms_similarity_and_public_nli_model() -> None:
    bodies: dict[str, dict] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        bodies[request.url.path] = json.loads(request.content)
        return httpx.Response(200, json=[0.5])

    results = await make_warmer(handler).warm_all()

    assert [r.success for r in results] == [True, True]
    assert bodies["/models/org/nli-model"] == {"inputs": "Hello\nHello"}
    assert bodies["/models/org/sim-model"]["inputs"]["sentences"] == ["Hello"]


@pytest.mark.asyncio
async def test_warms_dedicated_endpoint_when_configured() -> None:
    paths: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        return httpx.Response(200, json={"contradiction": 0.1})

    warmer = make_warmer(
        handler,
        nli_endpoint_url="https://endpoint.test/nli",
        nli_endpoint_api_key="endpoint_key",
    )
    results = await warmer.warm_all()

    assert sorted(paths) == ["/models/org/sim-model", "/nli"]
    assert results[1].model == "nli-endpoint"


@pytest.mark.asyncio
async def test_loading_model_reported_as_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    results = await make_warmer(handler).warm_all()

    assert all(not r.success for r in results)
    assert "Maximum retries (2)" in results[0].error
