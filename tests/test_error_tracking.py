import sys
import os
import threading
import pytest
import requests
from unittest.mock import patch, MagicMock, AsyncMock

# Add the project root to the Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from jd_builder.error_tracking import ErrorTracker


@pytest.fixture
def tracker():
    tracker = ErrorTracker(webhook_url=None)
    yield tracker
    tracker.uninstall()


def test_capture_error_builds_record(tracker):
    try:
        raise RuntimeError("PDF worker crashed")
    except RuntimeError as e:
        record = tracker.capture_error(e, {"source": "test"}, user_email="hr@example.com")

    assert record["error_message"] == "PDF worker crashed"
    assert "RuntimeError" in record["error_stack"]
    assert record["context"] == {"source": "test"}
    assert record["user_email"] == "hr@example.com"
    assert record["created_at"] is not None


def test_capture_error_accepts_plain_message(tracker):
    record = tracker.capture_error("Client-side failure")
    assert record["error_message"] == "Client-side failure"
    assert record["error_stack"] is None
    assert record["context"] == {}


def test_install_and_uninstall_restore_hooks(tracker):
    original_hook = sys.excepthook
    original_threading_hook = threading.excepthook

    tracker.install()
    assert tracker.installed
    assert sys.excepthook is not original_hook
    assert threading.excepthook is not original_threading_hook

    tracker.uninstall()
    assert not tracker.installed
    assert sys.excepthook is original_hook
    assert threading.excepthook is original_threading_hook


def test_uncaught_thread_exception_is_captured(tracker):
    previous = MagicMock()
    with patch('threading.excepthook', previous):
        tracker.install()
        with patch.object(tracker, 'capture_error') as mock_capture:
            thread = threading.Thread(target=lambda: 1 / 0, name="crashing-worker")
            thread.start()
            thread.join()
        tracker.uninstall()

    mock_capture.assert_called_once()
    error, context = mock_capture.call_args.args
    assert isinstance(error, ZeroDivisionError)
    assert context["thread"] == "crashing-worker"
    previous.assert_called_once()


def test_webhook_notification():
    tracker = ErrorTracker(webhook_url="https://hooks.example.com/errors")
    with patch('jd_builder.error_tracking.requests.Session') as mock_session:
        mock_session.return_value.post.return_value.raise_for_status.return_value = None
        tracker.capture_error("Boom", {"source": "api"})

    mock_session.return_value.post.assert_called_once()
    payload = mock_session.return_value.post.call_args.kwargs["json"]
    assert payload["error_message"] == "Boom"
    assert isinstance(payload["created_at"], str)


def test_webhook_failure_is_logged_not_raised():
    tracker = ErrorTracker(webhook_url="https://hooks.example.com/errors")
    with patch('jd_builder.error_tracking.requests.Session') as mock_session:
        mock_session.return_value.post.side_effect = requests.exceptions.ConnectionError("down")
        record = tracker.capture_error("Boom")
        assert tracker.notify(record) is False


@pytest.mark.asyncio
async def test_store_inserts_record():
    collection = MagicMock()
    collection.insert_one = AsyncMock(return_value=MagicMock(inserted_id="abc123"))
    tracker = ErrorTracker(collection=collection, webhook_url=None)

    record = tracker.capture_error("Stored failure")
    assert await tracker.store(record) == "abc123"
    collection.insert_one.assert_awaited_once()


@pytest.mark.asyncio
async def test_store_without_collection():
    tracker = ErrorTracker(webhook_url=None)
    assert await tracker.store(tracker.capture_error("x")) is None
