"""Unit tests validating HTTP response construction logic."""

import pytest

from echo_stream.bootstrap.config import SECURITY_HEADERS
from echo_stream.domain.http_types import should_close
from echo_stream.domain.response_builders import (
    draining_response,
    entity_too_large_response,
    head_response,
    header_too_large_response,
    method_not_allowed_response,
    ok_response,
    stream_response,
)
from echo_stream.pipeline.validation import enforce_allowed_method
from tests.utils.fakes import make_request


def test_should_close_only_on_explicit_close():
    """HTTP/1.1 connections stay open unless the client asks otherwise."""
    assert not should_close({})
    assert not should_close({"connection": "keep-alive"})
    assert should_close({"connection": "Close"})
    assert should_close({"connection": "TE, close"})


@pytest.mark.parametrize(
    "headers,expected",
    [
        ({}, True),
        ({"connection": "Keep-Alive"}, False),
        ({"connection": "keep-alive, Upgrade"}, False),
        ({"connection": "keep-alive, close"}, True),
    ],
)
def test_should_close_defaults_to_close_for_http10(headers, expected):
    assert should_close(headers, "HTTP/1.0") is expected


def test_ok_response_is_plain_text_with_security_headers():
    response = ok_response("healthy", make_request("/health"), SECURITY_HEADERS)
    assert response.status_line == "HTTP/1.1 200 OK"
    assert response.headers["Content-Type"] == "text/plain; charset=utf-8"
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.body == b"healthy"


def test_stream_response_carries_length_and_iterator():
    chunks = [b"ab", b"c"]
    response = stream_response(make_request("/download"), 3, chunks, SECURITY_HEADERS)
    assert response.headers["Content-Type"] == "application/octet-stream"
    assert response.content_length == 3
    assert response.body_iter is chunks
    assert response.body == b""


def test_head_response_has_length_but_no_body():
    response = head_response(make_request("/download", method="HEAD"), 42, SECURITY_HEADERS)
    assert response.content_length == 42
    assert response.body_iter is None
    assert response.body == b""


def test_error_responses_always_close():
    for response, code in [
        (entity_too_large_response(SECURITY_HEADERS), 413),
        (header_too_large_response(SECURITY_HEADERS), 431),
        (draining_response(SECURITY_HEADERS), 503),
    ]:
        assert response.status_code == code
        assert response.close_connection is True


def test_method_not_allowed_lists_sorted_methods():
    response = method_not_allowed_response(
        make_request("/upload"), SECURITY_HEADERS, {"PUT", "POST"}
    )
    assert response.status_code == 405
    assert response.headers["Allow"] == "POST, PUT"


def test_enforce_allowed_method_passes_allowed():
    request = make_request("/download", method="HEAD")
    assert enforce_allowed_method(request, {"GET", "HEAD"}, SECURITY_HEADERS) is None
