"""Tests de la classification des échecs amont et des clients de génération/embedding."""

from __future__ import annotations

import base64
import json
from types import SimpleNamespace
from unittest.mock import Mock

import httpx
import openai
import pytest

from physim.domain.errors import ErrorKind, GenerationError
from physim.infra.embeddings.openai_embedder import OpenAIEmbedder
from physim.infra.generation.http_client import HttpGenerationClient
from physim.infra.generation.openai_client import (
    OpenAIGenerationClient,
    decode_content,
    split_confidence,
)
from physim.infra.upstream import classify_exception, kind_for_status
from tests.fakes import valid_manifest

REQUEST = httpx.Request("POST", "http://generator.local/v1/manifests")


@pytest.mark.parametrize(
    ("status", "kind"),
    [
        (200, None),
        (302, None),
        (400, ErrorKind.BAD_REQUEST),
        (401, ErrorKind.UNAUTHORIZED),
        (403, ErrorKind.FORBIDDEN),
        (404, ErrorKind.BAD_REQUEST),
        (408, ErrorKind.TIMEOUT),
        (429, ErrorKind.RATE_LIMITED),
        (500, ErrorKind.SERVER_ERROR),
        (503, ErrorKind.SERVER_ERROR),
    ],
)
def test_kind_for_status(status, kind) -> None:
    assert kind_for_status(status) is kind


def test_classify_transport_exceptions() -> None:
    """Les exceptions httpx/openai deviennent des erreurs classifiées."""
    assert classify_exception(httpx.ReadTimeout("slow", request=REQUEST)).kind is ErrorKind.TIMEOUT
    assert classify_exception(TimeoutError()).kind is ErrorKind.TIMEOUT
    assert classify_exception(openai.APITimeoutError(request=REQUEST)).kind is ErrorKind.TIMEOUT
    status_error = httpx.HTTPStatusError(
        "boom", request=REQUEST, response=httpx.Response(429, request=REQUEST)
    )
    assert classify_exception(status_error).kind is ErrorKind.RATE_LIMITED
    api_error = openai.APIStatusError(
        "denied", response=httpx.Response(401, request=REQUEST), body=None
    )
    assert classify_exception(api_error).kind is ErrorKind.UNAUTHORIZED
    conn = httpx.ConnectError("refused", request=REQUEST)
    assert classify_exception(conn).kind is ErrorKind.SERVER_ERROR
    already = GenerationError(ErrorKind.FORBIDDEN)
    assert classify_exception(already) is already


def test_split_confidence_and_decode() -> None:
    manifest, confidence = split_confidence({"physics_type": "wave", "confidence": 1.4})
    assert manifest == {"physics_type": "wave"}
    assert confidence == 1.0
    assert split_confidence({"confidence": "high"}) == ({}, None)
    assert split_confidence("raw") == ("raw", None)
    assert decode_content('{"a": 1}') == {"a": 1}
    assert decode_content("not json") == "not json"
    assert decode_content(None) == ""


def _completion(content: str) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def test_openai_client_text_request() -> None:
    sdk = Mock()
    sdk.chat.completions.create.return_value = _completion(json.dumps(valid_manifest()))
    client = OpenAIGenerationClient(api_key=None, client=sdk)
    result = client.generate(text="a ball thrown up", hint="no drag")
    assert result.manifest["physics_type"] == "projectile"
    assert result.confidence is None
    kwargs = sdk.chat.completions.create.call_args.kwargs
    assert kwargs["response_format"] == {"type": "json_object"}
    assert "a ball thrown up" in kwargs["messages"][1]["content"]


def test_openai_client_image_request_reads_confidence() -> None:
    sdk = Mock()
    sdk.chat.completions.create.return_value = _completion(
        json.dumps({**valid_manifest(), "confidence": 0.42})
    )
    client = OpenAIGenerationClient(api_key=None, client=sdk)
    result = client.generate(image=b"png")
    assert result.confidence == 0.42
    assert "confidence" not in result.manifest
    parts = sdk.chat.completions.create.call_args.kwargs["messages"][1]["content"]
    assert parts[1]["image_url"]["url"].startswith("data:image/png;base64,")


def test_openai_client_classifies_sdk_errors() -> None:
    sdk = Mock()
    sdk.chat.completions.create.side_effect = openai.APITimeoutError(request=REQUEST)
    client = OpenAIGenerationClient(api_key=None, client=sdk)
    with pytest.raises(GenerationError) as exc_info:
        client.generate(text="x")
    assert exc_info.value.kind is ErrorKind.TIMEOUT


def test_openai_client_requires_key() -> None:
    with pytest.raises(ValueError):
        OpenAIGenerationClient(api_key=None)


def test_openai_embedder_orders_by_index() -> None:
    sdk = Mock()
    sdk.embeddings.create.return_value = SimpleNamespace(
        data=[
            SimpleNamespace(index=1, embedding=[0.0, 1.0]),
            SimpleNamespace(index=0, embedding=[1.0, 0.0]),
        ]
    )
    embedder = OpenAIEmbedder(api_key=None, client=sdk)
    assert embedder.embed(["a", "b"]) == [[1.0, 0.0], [0.0, 1.0]]


def _http_client(handler) -> HttpGenerationClient:
    transport = httpx.MockTransport(handler)
    return HttpGenerationClient(
        "http://generator.local/", client=httpx.Client(transport=transport)
    )


def test_http_client_posts_request_body() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"manifest": valid_manifest(), "confidence": 0.8})

    result = _http_client(handler).generate(image=b"img", hint="top view")
    assert seen["url"] == "http://generator.local/v1/manifests"
    assert seen["body"] == {
        "text": None,
        "image_base64": base64.b64encode(b"img").decode(),
        "hint": "top view",
    }
    assert result.confidence == 0.8
    assert result.manifest["version"] == "1.0"


@pytest.mark.parametrize(
    ("status", "kind"),
    [(503, ErrorKind.SERVER_ERROR), (429, ErrorKind.RATE_LIMITED), (400, ErrorKind.BAD_REQUEST)],
)
def test_http_client_maps_status(status, kind) -> None:
    client = _http_client(lambda request: httpx.Response(status))
    with pytest.raises(GenerationError) as exc_info:
        client.generate(text="x")
    assert exc_info.value.kind is kind


def test_http_client_timeout() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(GenerationError) as exc_info:
        _http_client(handler).generate(text="x")
    assert exc_info.value.kind is ErrorKind.TIMEOUT


def test_http_client_non_json_body_is_raw_text() -> None:
    client = _http_client(lambda request: httpx.Response(200, text="<html>"))
    assert client.generate(text="x").manifest == "<html>"
