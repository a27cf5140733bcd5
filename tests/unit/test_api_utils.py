"""Unit tests for the API utilities module."""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import httplib2
import pytest
import requests
from googleapiclient.errors import HttpError

from cms_migrator.utils.api import (
    ApiClient,
    backoff_delay,
    is_retryable_error,
    is_retryable_upload_error,
    retry,
    retry_call,
    status_of_error,
)

RETRY = SimpleNamespace(max_attempts=3, base_delay=5.0, max_delay=60.0)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_http_error(status: int, reason: str = "error") -> HttpError:
    """Create an HttpError with the given status code."""
    resp = httplib2.Response({"status": status})
    resp.reason = reason
    return HttpError(resp, b"error body")


def _make_requests_error(status: int) -> requests.HTTPError:
    response = requests.Response()
    response.status_code = status
    return requests.HTTPError(f"{status} error", response=response)


def _json_response(status: int, body=None, text=None) -> MagicMock:
    response = MagicMock()
    response.status_code = status
    if text is not None:
        response.content = text.encode()
        response.text = text
        response.json.side_effect = ValueError("not json")
    elif body is not None:
        response.content = b"{}"
        response.json.return_value = body
    else:
        response.content = b""
    return response


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------


class TestStatusOfError:
    def test_google_http_error(self):
        assert status_of_error(_make_http_error(503)) == 503

    def test_requests_http_error(self):
        assert status_of_error(_make_requests_error(404)) == 404

    def test_requests_error_without_response(self):
        assert status_of_error(requests.HTTPError("boom")) is None

    def test_plain_exception(self):
        assert status_of_error(ValueError("x")) is None


class TestIsRetryableError:
    @pytest.mark.parametrize("status", [429, 500, 502, 503, 504])
    def test_transient_statuses(self, status):
        assert is_retryable_error(_make_requests_error(status))
        assert is_retryable_error(_make_http_error(status))

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 409, 422])
    def test_client_errors_are_fatal(self, status):
        assert not is_retryable_error(_make_requests_error(status))

    def test_timeouts_and_resets(self):
        assert is_retryable_error(requests.Timeout())
        assert is_retryable_error(requests.ConnectionError())
        assert is_retryable_error(ConnectionResetError())
        assert is_retryable_error(TimeoutError())

    def test_malformed_payload_is_fatal(self):
        assert not is_retryable_error(ValueError("bad json"))


class TestIsRetryableUploadError:
    def test_client_error_not_retried(self):
        assert not is_retryable_upload_error(_make_http_error(403))

    def test_rate_limit_retried(self):
        assert is_retryable_upload_error(_make_http_error(429))

    def test_server_error_retried(self):
        assert is_retryable_upload_error(_make_http_error(500))

    def test_network_error_retried(self):
        assert is_retryable_upload_error(OSError("socket closed"))


class TestBackoffDelay:
    def test_doubles_per_attempt(self):
        assert backoff_delay(1, 5.0, 60.0) == 5.0
        assert backoff_delay(2, 5.0, 60.0) == 10.0
        assert backoff_delay(3, 5.0, 60.0) == 20.0

    def test_capped_at_max(self):
        assert backoff_delay(10, 5.0, 60.0) == 60.0


# ---------------------------------------------------------------------------
# retry_call
# ---------------------------------------------------------------------------


class TestRetryCall:
    @patch("cms_migrator.utils.api.time.sleep")
    def test_success_first_try(self, mock_sleep):
        assert retry_call(lambda: "ok") == "ok"
        mock_sleep.assert_not_called()

    @patch("cms_migrator.utils.api.time.sleep")
    def test_retries_transient_then_succeeds(self, mock_sleep):
        op = MagicMock(side_effect=[_make_requests_error(503), _make_requests_error(429), "ok"])
        assert retry_call(op, max_attempts=3, base_delay=5.0) == "ok"
        assert op.call_count == 3
        assert [c.args[0] for c in mock_sleep.call_args_list] == [5.0, 10.0]

    @patch("cms_migrator.utils.api.time.sleep")
    def test_non_retryable_raises_immediately(self, mock_sleep):
        error = _make_requests_error(404)
        op = MagicMock(side_effect=error)
        with pytest.raises(requests.HTTPError) as exc_info:
            retry_call(op, max_attempts=3)
        assert exc_info.value is error
        assert op.call_count == 1
        mock_sleep.assert_not_called()

    @patch("cms_migrator.utils.api.time.sleep")
    def test_exhausted_raises_last_error(self, mock_sleep):
        errors = [requests.Timeout("t1"), requests.Timeout("t2"), requests.Timeout("t3")]
        op = MagicMock(side_effect=errors)
        with pytest.raises(requests.Timeout, match="t3"):
            retry_call(op, max_attempts=3, base_delay=1.0)
        assert op.call_count == 3
        assert mock_sleep.call_count == 2

    @patch("cms_migrator.utils.api.time.sleep")
    def test_custom_predicate(self, mock_sleep):
        op = MagicMock(side_effect=[KeyError("x"), "ok"])
        assert retry_call(op, should_retry=lambda e: isinstance(e, KeyError)) == "ok"

    @patch("cms_migrator.utils.api.time.sleep")
    def test_zero_attempts_still_runs_once(self, mock_sleep):
        op = MagicMock(return_value=1)
        assert retry_call(op, max_attempts=0) == 1
        op.assert_called_once()


class TestRetryDecorator:
    @patch("cms_migrator.utils.api.time.sleep")
    def test_reads_config_from_instance(self, mock_sleep):
        class Client:
            retry_config = SimpleNamespace(max_attempts=2, base_delay=3.0, max_delay=10.0)
            calls = 0

            @retry("flaky call")
            def fetch(self):
                Client.calls += 1
                if Client.calls == 1:
                    raise requests.ConnectionError("reset")
                return "done"

        assert Client().fetch() == "done"
        mock_sleep.assert_called_once_with(3.0)


# ---------------------------------------------------------------------------
# ApiClient
# ---------------------------------------------------------------------------


class TestApiClient:
    def _client(self, session, **kwargs):
        return ApiClient("https://api.example/", RETRY, session=session, **kwargs)

    def test_sets_auth_and_extra_headers(self):
        session = MagicMock()
        session.request.return_value = _json_response(200, {"ok": True})
        client = self._client(session, token="tok", headers={"accept-version": "1.0.0"})

        assert client.get("items", params={"limit": 1}) == {"ok": True}
        _, kwargs = session.request.call_args
        assert kwargs["headers"]["Authorization"] == "Bearer tok"
        assert kwargs["headers"]["accept-version"] == "1.0.0"
        assert kwargs["timeout"] == 30.0
        assert session.request.call_args.args[:2] == ("GET", "https://api.example/items")

    def test_no_auth_header_without_token(self):
        client = self._client(MagicMock())
        assert "Authorization" not in client.headers

    def test_post_sends_json(self):
        session = MagicMock()
        session.request.return_value = _json_response(201, {"id": "1"})
        self._client(session).post("/things", {"a": 1})
        assert session.request.call_args.kwargs["json"] == {"a": 1}

    def test_empty_body_returns_empty_dict(self):
        session = MagicMock()
        session.request.return_value = _json_response(204)
        assert self._client(session).put("things/1", {}) == {}

    def test_client_error_raises_without_retry(self):
        session = MagicMock()
        session.request.return_value = _json_response(404, {"error": "not found"})
        with pytest.raises(requests.HTTPError, match="not found") as exc_info:
            self._client(session).get("missing")
        assert exc_info.value.response.status_code == 404
        assert session.request.call_count == 1

    @patch("cms_migrator.utils.api.time.sleep")
    def test_server_error_retries(self, mock_sleep):
        session = MagicMock()
        session.request.side_effect = [
            _json_response(503, text="unavailable"),
            _json_response(200, {"ok": True}),
        ]
        assert self._client(session).get("items") == {"ok": True}
        mock_sleep.assert_called_once_with(5.0)

    def test_non_json_success_is_error(self):
        session = MagicMock()
        session.request.return_value = _json_response(200, text="<html>")
        with pytest.raises(ValueError, match="Expected a JSON response"):
            self._client(session).get("items")

    def test_list_error_body_does_not_crash(self):
        session = MagicMock()
        session.request.return_value = _json_response(400, ["bad"])
        with pytest.raises(requests.HTTPError):
            self._client(session).get("items")

    def test_thread_local_session_when_not_injected(self):
        client = ApiClient("https://api.example", RETRY)
        assert client.session is client.session
        assert isinstance(client.session, requests.Session)
