import json

import httpx
import pytest
from unittest.mock import patch

from rule_handler.core.config import HandlerSettings
from rule_handler.core_api import graphql_api_service
from rule_handler.core_api.exceptions import ApiError, InvalidParameterError


# --- Fixtures ---
@pytest.fixture
def settings():
    return HandlerSettings(api_endpoint="http://api.test/api/", jwt_secret="secret", request_timeout=3)


@pytest.fixture
def recorded_requests():
    return []


@pytest.fixture
def mock_transport(recorded_requests):
    """Routes requests to a per-test responder; the default answers with empty data."""
    state = {"responder": lambda request: httpx.Response(200, json={"data": {}})}

    def handler(request: httpx.Request) -> httpx.Response:
        recorded_requests.append(request)
        return state["responder"](request)

    def client_factory(settings):
        return httpx.Client(transport=httpx.MockTransport(handler))

    with patch.object(graphql_api_service, "_build_client", side_effect=client_factory):
        yield state


def _body(request: httpx.Request) -> dict:
    return json.loads(request.content)


# --- Tests for execute_query ---
def test_execute_query_posts_to_graphql_with_auth_cookie(settings, mock_transport, recorded_requests):
    mock_transport["responder"] = lambda request: httpx.Response(200, json={"data": {"ok": True}})

    data = graphql_api_service.execute_query(settings, "tok", "query { ok }", {"a": 1})

    assert data == {"ok": True}
    request = recorded_requests[0]
    assert request.method == "POST"
    assert str(request.url) == "http://api.test/api/graphql"
    assert request.headers["Cookie"] == "auth=tok;"
    assert request.headers["Content-Type"] == "application/json"
    assert _body(request) == {"query": "query { ok }", "variables": {"a": 1}}


def test_execute_query_http_error(settings, mock_transport):
    mock_transport["responder"] = lambda request: httpx.Response(500, text="oops")
    with pytest.raises(ApiError, match="status 500") as excinfo:
        graphql_api_service.execute_query(settings, "tok", "query { ok }")
    assert isinstance(excinfo.value.original_exception, httpx.HTTPStatusError)


def test_execute_query_transport_error(settings, mock_transport):
    def raise_connect(request):
        raise httpx.ConnectError("refused", request=request)

    mock_transport["responder"] = raise_connect
    with pytest.raises(ApiError, match="Could not reach the API"):
        graphql_api_service.execute_query(settings, "tok", "query { ok }")


def test_execute_query_non_json(settings, mock_transport):
    mock_transport["responder"] = lambda request: httpx.Response(200, text="<html>")
    with pytest.raises(ApiError, match="non-JSON"):
        graphql_api_service.execute_query(settings, "tok", "query { ok }")


def test_execute_query_graphql_errors(settings, mock_transport):
    mock_transport["responder"] = lambda request: httpx.Response(
        200, json={"data": None, "errors": [{"message": "Cannot query field"}]}
    )
    with pytest.raises(ApiError, match="Cannot query field"):
        graphql_api_service.execute_query(settings, "tok", "query { nope }")


def test_execute_query_requires_token(settings, mock_transport):
    with pytest.raises(InvalidParameterError):
        graphql_api_service.execute_query(settings, "", "query { ok }")


def test_build_client_uses_configured_timeout(settings):
    client = graphql_api_service._build_client(settings)
    try:
        assert client.timeout == httpx.Timeout(3)
    finally:
        client.close()


# --- Tests for fetch_enabled_rules ---
def test_fetch_enabled_rules_success(settings, mock_transport, recorded_requests):
    rules = [{"id": "r1", "name": "One", "filter": "*", "actions": []}]
    mock_transport["responder"] = lambda request: httpx.Response(
        200, json={"data": {"rules": {"rules": rules}}}
    )

    assert graphql_api_service.fetch_enabled_rules(settings, "tok") == rules
    assert "rules(enabled: true)" in _body(recorded_requests[0])["query"]


def test_fetch_enabled_rules_error_codes(settings, mock_transport):
    mock_transport["responder"] = lambda request: httpx.Response(
        200, json={"data": {"rules": {"errorCodes": ["UNAUTHORIZED"]}}}
    )
    with pytest.raises(ApiError, match="UNAUTHORIZED"):
        graphql_api_service.fetch_enabled_rules(settings, "tok")


def test_fetch_enabled_rules_missing_list(settings, mock_transport):
    mock_transport["responder"] = lambda request: httpx.Response(200, json={"data": {"rules": {}}})
    with pytest.raises(ApiError, match="no rule list"):
        graphql_api_service.fetch_enabled_rules(settings, "tok")


# --- Tests for page actions ---
def test_add_labels_sends_label_names(settings, mock_transport, recorded_requests):
    mock_transport["responder"] = lambda request: httpx.Response(
        200, json={"data": {"setLabels": {"labels": [{"id": "l1", "name": "x"}]}}}
    )

    graphql_api_service.add_labels(settings, "tok", "p1", ["x", "y"])

    body = _body(recorded_requests[0])
    assert "setLabels" in body["query"]
    assert body["variables"] == {"input": {"pageId": "p1", "labels": [{"name": "x"}, {"name": "y"}]}}


def test_add_labels_requires_labels(settings, mock_transport, recorded_requests):
    with pytest.raises(InvalidParameterError):
        graphql_api_service.add_labels(settings, "tok", "p1", [])
    assert recorded_requests == []


def test_archive_page(settings, mock_transport, recorded_requests):
    mock_transport["responder"] = lambda request: httpx.Response(
        200, json={"data": {"setLinkArchived": {"linkId": "p1", "message": "ok"}}}
    )
    result = graphql_api_service.archive_page(settings, "tok", "p1")
    assert result["linkId"] == "p1"
    assert _body(recorded_requests[0])["variables"] == {"input": {"linkId": "p1", "archived": True}}


def test_archive_page_error_codes(settings, mock_transport):
    mock_transport["responder"] = lambda request: httpx.Response(
        200, json={"data": {"setLinkArchived": {"message": "nope", "errorCodes": ["NOT_FOUND"]}}}
    )
    with pytest.raises(ApiError, match="NOT_FOUND"):
        graphql_api_service.archive_page(settings, "tok", "p1")


def test_mark_page_as_read(settings, mock_transport, recorded_requests):
    mock_transport["responder"] = lambda request: httpx.Response(
        200, json={"data": {"saveArticleReadingProgress": {"updatedArticle": {"id": "p1"}}}}
    )
    graphql_api_service.mark_page_as_read(settings, "tok", "p1")
    assert _body(recorded_requests[0])["variables"]["input"] == {
        "id": "p1",
        "readingProgressPercent": 100,
        "readingProgressAnchorIndex": 0,
    }


def test_mark_page_as_read_missing_result(settings, mock_transport):
    with pytest.raises(ApiError, match="saveArticleReadingProgress"):
        graphql_api_service.mark_page_as_read(settings, "tok", "p1")


def test_send_notification_uses_configured_title(settings, mock_transport, recorded_requests):
    mock_transport["responder"] = lambda request: httpx.Response(
        200, json={"data": {"sendNotification": {"success": True}}}
    )
    graphql_api_service.send_notification(settings, "tok", "hello")
    assert _body(recorded_requests[0])["variables"] == {
        "input": {"title": settings.notification_title, "body": "hello"}
    }
