from unittest.mock import MagicMock, patch

import pytest
import requests

from gmail_triage.auth import MailboxSession
from gmail_triage.config import AppConfig
from gmail_triage.exceptions import AuthError, RemoteError
from gmail_triage.gmail_client import GmailClient, header_value


def _client(session=None) -> GmailClient:
    return GmailClient(AppConfig(), session or MailboxSession("tok"))


def _response(status: int = 200, payload=None, text: str = "") -> MagicMock:
    response = MagicMock()
    response.status_code = status
    response.ok = 200 <= status < 300
    response.text = text
    response.content = b"{}" if payload is not None else b""
    response.json.return_value = payload
    return response


def test_list_message_ids_sends_query_and_cap() -> None:
    """Ensure the query and result cap are passed to messages.list."""

    client = _client()
    client._make_request = MagicMock(
        return_value={"messages": [{"id": "a", "threadId": "t"}, {"id": "b", "threadId": "t"}]}
    )

    ids = client.list_message_ids("category:promotions", 2)

    assert ids == ["a", "b"]
    args, kwargs = client._make_request.call_args
    assert args == ("GET", "messages")
    assert kwargs["params"] == {"maxResults": 2, "q": "category:promotions"}


def test_list_message_ids_blank_query_is_omitted() -> None:
    """Ensure a blank query lists all mail instead of sending q=''."""

    client = _client()
    client._make_request = MagicMock(return_value={})

    assert client.list_message_ids("   ", 5) == []
    _, kwargs = client._make_request.call_args
    assert kwargs["params"] == {"maxResults": 5}


def test_list_message_ids_never_exceeds_cap() -> None:
    """Ensure extra ids in a response are cut to max_results."""

    client = _client()
    client._make_request = MagicMock(
        return_value={"messages": [{"id": str(i)} for i in range(5)]}
    )

    assert client.list_message_ids("q", 3) == ["0", "1", "2"]


def test_get_message_meta_requests_metadata_headers_only() -> None:
    """Ensure only From/To/Subject/Date metadata is requested."""

    client = _client()
    client._make_request = MagicMock(
        return_value={
            "id": "m1",
            "snippet": "Save 20% &amp; more",
            "payload": {
                "headers": [
                    {"name": "from", "value": "Shop <deals@shop.com>"},
                    {"name": "Subject", "value": "Sale"},
                    {"name": "Date", "value": "Mon, 1 Jan 2024"},
                ]
            },
        }
    )

    meta = client.get_message_meta("m1")

    args, kwargs = client._make_request.call_args
    assert args == ("GET", "messages/m1")
    assert kwargs["params"] == [
        ("format", "metadata"),
        ("metadataHeaders", "From"),
        ("metadataHeaders", "To"),
        ("metadataHeaders", "Subject"),
        ("metadataHeaders", "Date"),
    ]
    assert meta.from_header == "Shop <deals@shop.com>"
    assert meta.sender == "deals@shop.com"
    assert meta.to == ""
    assert meta.subject == "Sale"
    assert meta.snippet == "Save 20% & more"


def test_message_ids_are_url_encoded() -> None:
    """Ensure ids with reserved characters are encoded in the path."""

    client = _client()
    client._make_request = MagicMock(return_value={})

    client.trash_message("a/b+c=")

    args, _ = client._make_request.call_args
    assert args == ("POST", "messages/a%2Fb%2Bc%3D/trash")


def test_header_value_missing_payload() -> None:
    """Ensure a message without headers yields empty values."""

    assert header_value({}, "From") == ""
    assert header_value({"payload": {"headers": None}}, "From") == ""


def test_make_request_sends_bearer_token_and_timeout() -> None:
    """Ensure requests carry the session token and configured timeout."""

    client = _client(MailboxSession("secret-token"))

    with patch("gmail_triage.gmail_client.requests.request") as request:
        request.return_value = _response(200, {"messages": []})
        client.list_message_ids("q", 1)

    kwargs = request.call_args.kwargs
    assert kwargs["method"] == "GET"
    assert kwargs["url"] == "https://gmail.googleapis.com/gmail/v1/users/me/messages"
    assert kwargs["headers"]["Authorization"] == "Bearer secret-token"
    assert kwargs["timeout"] == 30


def test_trash_empty_response_returns_empty_dict() -> None:
    """Ensure an empty success body is not decoded."""

    client = _client()

    with patch("gmail_triage.gmail_client.requests.request") as request:
        request.return_value = _response(204)
        assert client._make_request("POST", "messages/m1/trash") == {}


def test_non_2xx_raises_remote_error_with_status_and_body() -> None:
    """Ensure HTTP failures surface status and body."""

    client = _client()

    with patch("gmail_triage.gmail_client.requests.request") as request:
        request.return_value = _response(403, text='{"error": "insufficientPermissions"}')
        with pytest.raises(RemoteError) as excinfo:
            client.trash_message("m1")

    assert excinfo.value.status == 403
    assert "insufficientPermissions" in str(excinfo.value)


def test_transport_failure_raises_remote_error_without_status() -> None:
    """Ensure connection errors become RemoteError(None)."""

    client = _client()

    with patch("gmail_triage.gmail_client.requests.request") as request:
        request.side_effect = requests.ConnectionError("boom")
        with pytest.raises(RemoteError) as excinfo:
            client.list_message_ids("q", 1)

    assert excinfo.value.status is None


def test_no_session_raises_auth_error_before_any_call() -> None:
    """Ensure calls without a session never reach the network."""

    client = GmailClient(AppConfig(), None)

    with patch("gmail_triage.gmail_client.requests.request") as request:
        with pytest.raises(AuthError):
            client.list_message_ids("q", 1)

    request.assert_not_called()


def test_invalidated_session_raises_auth_error() -> None:
    """Ensure a disconnected session behaves like no session."""

    session = MailboxSession("tok")
    session.invalidate()
    client = _client(session)

    with patch("gmail_triage.gmail_client.requests.request") as request:
        with pytest.raises(AuthError):
            client.trash_message("m1")

    request.assert_not_called()


def test_invalid_json_body_raises_remote_error() -> None:
    """Ensure an undecodable success body becomes RemoteError."""

    client = _client()
    response = _response(200, {})
    response.text = "<html>oops</html>"
    response.json.side_effect = ValueError("Expecting value")

    with patch("gmail_triage.gmail_client.requests.request") as request:
        request.return_value = response
        with pytest.raises(RemoteError) as excinfo:
            client.get_message_meta("m1")

    assert excinfo.value.status == 200
    assert "oops" in str(excinfo.value)


def test_list_message_ids_follows_page_tokens() -> None:
    """Ensure caps above one page are filled from later pages."""

    client = _client()
    client._make_request = MagicMock(
        side_effect=[
            {"messages": [{"id": f"a{i}"} for i in range(500)], "nextPageToken": "p2"},
            {"messages": [{"id": f"b{i}"} for i in range(100)], "nextPageToken": "p3"},
        ]
    )

    ids = client.list_message_ids("q", 600)

    assert len(ids) == 600
    assert ids[500] == "b0"
    first, second = [c.kwargs["params"] for c in client._make_request.call_args_list]
    assert first == {"maxResults": 500, "q": "q"}
    assert second == {"maxResults": 100, "q": "q", "pageToken": "p2"}


def test_list_message_ids_stops_without_next_page() -> None:
    """Ensure listing stops when Gmail has no more pages."""

    client = _client()
    client._make_request = MagicMock(return_value={"messages": [{"id": "a"}]})

    assert client.list_message_ids("q", 1000) == ["a"]
    client._make_request.assert_called_once()
