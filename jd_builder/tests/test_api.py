
import pytest
from fastapi.testclient import TestClient
from unittest.mock import patch, AsyncMock, MagicMock
import os
import sys

# Add project root to path to allow imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', '..')))

from jd_builder.backend import main
from jd_builder.backend.main import app, get_current_user, get_password_hash
from jd_builder.circuit_breaker import CircuitBreaker
from jd_builder.exceptions import AIServiceError, ConfigurationError, NoKeyAvailableError
from jd_builder.key_manager import KeyManager
from jd_builder.workers.pool import WorkerPool
from jd_builder.workers.document_parser_worker import DocumentParserWorker
from jd_builder.workers.text_processor_worker import TextProcessorWorker

TEST_USER = {"_id": "test_user_123", "email": "test@example.com"}


async def override_get_current_user():
    return TEST_USER


@pytest.fixture(scope="module")
def worker_pools():
    document_pool = WorkerPool(lambda: DocumentParserWorker(yield_interval=0), size=2, name="documents")
    text_pool = WorkerPool(lambda: TextProcessorWorker(yield_interval=0), size=2, name="text")
    yield document_pool, text_pool
    document_pool.shutdown()
    text_pool.shutdown()


@pytest.fixture
def client(worker_pools):
    app.state.key_manager = KeyManager(["AIzaSyTestKeyNumberOne", "AIzaSyTestKeyNumberTwo"])
    app.state.circuit_breaker = CircuitBreaker("gemini")
    app.state.document_pool, app.state.text_pool = worker_pools
    app.dependency_overrides[get_current_user] = override_get_current_user
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_read_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json() == {"message": "Welcome to the JD Builder API"}
    assert "no-store" in response.headers["Cache-Control"]


# --- Auth ---

def test_signup_creates_user_with_hashed_password(client):
    with patch('jd_builder.backend.main.users_collection') as mock_users:
        mock_users.find_one = AsyncMock(return_value=None)
        mock_users.insert_one = AsyncMock()
        response = client.post("/api/auth/signup", json={"email": "new@example.com", "password": "longenough",
                                                          "metadata": {"full_name": "New Hire"}})

    assert response.status_code == 201
    assert response.json()["success"] is True
    document = mock_users.insert_one.call_args.args[0]
    assert document["email"] == "new@example.com"
    assert document["metadata"] == {"full_name": "New Hire"}
    assert document["hashed_password"] != "longenough"
    assert main.verify_password("longenough", document["hashed_password"])


def test_signup_existing_email(client):
    with patch('jd_builder.backend.main.users_collection') as mock_users:
        mock_users.find_one = AsyncMock(return_value={"email": "test@example.com"})
        mock_users.insert_one = AsyncMock()
        response = client.post("/api/auth/signup", json={"email": "test@example.com", "password": "longenough"})

    assert response.status_code == 400
    assert response.json()["detail"] == "Email already registered"
    mock_users.insert_one.assert_not_called()


def test_signup_rejects_short_password(client):
    response = client.post("/api/auth/signup", json={"email": "new@example.com", "password": "short"})
    assert response.status_code == 422


def test_signin_sets_cookie(client):
    user = {"email": "test@example.com", "hashed_password": get_password_hash("secret")}
    with patch('jd_builder.backend.main.users_collection') as mock_users:
        mock_users.find_one = AsyncMock(return_value=user)
        response = client.post("/api/auth/signin", data={"username": "test@example.com", "password": "secret"})

    assert response.status_code == 200
    assert response.json()["token_type"] == "bearer"
    assert "access_token" in response.cookies


def test_signin_wrong_password(client):
    user = {"email": "test@example.com", "hashed_password": get_password_hash("secret")}
    with patch('jd_builder.backend.main.users_collection') as mock_users:
        mock_users.find_one = AsyncMock(return_value=user)
        response = client.post("/api/auth/signin", data={"username": "test@example.com", "password": "nope"})

    assert response.status_code == 401


def test_me_requires_token(client):
    app.dependency_overrides.clear()
    response = client.get("/api/auth/me")
    assert response.status_code == 401


def test_me_with_bearer_token(client):
    app.dependency_overrides.clear()
    token = main.create_access_token({"sub": "test@example.com"})
    with patch('jd_builder.backend.main.users_collection') as mock_users:
        mock_users.find_one = AsyncMock(return_value=TEST_USER)
        response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 200
    assert response.json() == {"email": "test@example.com"}


# --- Job descriptions ---

def test_save_new_job_description(client):
    stored = {"id": "jd-1", "title": "Data Analyst", "user_email": "test@example.com", "status": "draft"}
    with patch('jd_builder.backend.main.jd_collection') as mock_jds, \
         patch('jd_builder.backend.main.history_collection') as mock_history:
        mock_jds.insert_one = AsyncMock()
        mock_jds.find_one = AsyncMock(return_value=stored)
        mock_history.insert_one = AsyncMock()

        response = client.post("/api/jd/save", json={"title": "Data Analyst", "content": {"overview": "..."}})

    assert response.status_code == 200
    assert response.json()["data"] == stored
    inserted = mock_jds.insert_one.call_args.args[0]
    assert inserted["user_email"] == "test@example.com"
    assert inserted["status"] == "draft"
    assert mock_history.insert_one.call_args.args[0]["action"] == "create"


def test_update_job_description_owned_by_someone_else(client):
    with patch('jd_builder.backend.main.jd_collection') as mock_jds, \
         patch('jd_builder.backend.main.history_collection'):
        mock_jds.update_one = AsyncMock(return_value=MagicMock(matched_count=0))
        response = client.post("/api/jd/save", json={"id": "jd-9", "title": "Nurse"})

    assert response.status_code == 404


def test_read_job_description(client):
    with patch('jd_builder.backend.main.jd_collection') as mock_jds:
        mock_jds.find_one = AsyncMock(return_value={"id": "jd-1", "user_email": "other@example.com",
                                                    "is_public": True})
        response = client.get("/api/jd/jd-1")
    assert response.status_code == 200
    assert response.json()["data"]["id"] == "jd-1"


def test_read_private_job_description_of_other_user(client):
    with patch('jd_builder.backend.main.jd_collection') as mock_jds:
        mock_jds.find_one = AsyncMock(return_value={"id": "jd-1", "user_email": "other@example.com",
                                                    "is_public": False})
        response = client.get("/api/jd/jd-1")
    assert response.status_code == 404


def test_delete_job_description(client):
    with patch('jd_builder.backend.main.jd_collection') as mock_jds, \
         patch('jd_builder.backend.main.history_collection') as mock_history:
        mock_jds.delete_one = AsyncMock(return_value=MagicMock(deleted_count=1))
        mock_history.insert_one = AsyncMock()
        response = client.post("/api/jd/delete", json={"id": "jd-1"})

    assert response.status_code == 200
    mock_jds.delete_one.assert_awaited_once_with({"id": "jd-1", "user_email": "test@example.com"})


def test_read_history(client):
    with patch('jd_builder.backend.main.jd_collection') as mock_jds:
        cursor = mock_jds.find.return_value.sort.return_value.limit.return_value
        cursor.to_list = AsyncMock(return_value=[{"id": "jd-1"}, {"id": "jd-2"}])
        response = client.get("/api/history/all")

    assert response.status_code == 200
    assert [jd["id"] for jd in response.json()["data"]] == ["jd-1", "jd-2"]
    mock_jds.find.return_value.sort.assert_called_once_with("updated_at", -1)


# --- Documents and text processing ---

def test_parse_text_upload(client):
    files = {"file": ("jd.txt", b"Senior Data Analyst", "text/plain")}
    response = client.post("/api/documents/parse", files=files)
    assert response.status_code == 200
    assert response.json() == {"filename": "jd.txt", "text": "Senior Data Analyst"}


def test_parse_unsupported_upload(client):
    files = {"file": ("photo.png", b"\x89PNG", "image/png")}
    response = client.post("/api/documents/parse", files=files)
    assert response.status_code == 400
    assert "Unsupported file type" in response.json()["detail"]


def test_parse_oversized_upload(client):
    with patch('jd_builder.backend.main.MAX_UPLOAD_SIZE', 4):
        response = client.post("/api/documents/parse", files={"file": ("jd.txt", b"too long", "text/plain")})
    assert response.status_code == 400


def test_parse_failure_returns_generic_error(client):
    files = {"file": ("jd.txt", b"\xff\xfe\xfa", "text/plain")}
    response = client.post("/api/documents/parse", files=files)
    assert response.status_code == 422
    assert response.json()["detail"] == "Failed to parse text file"


def test_process_job_description(client):
    response = client.post("/api/jd/process", json={"text": "We leverage a very robust stack.", "options": {}})
    assert response.status_code == 200
    assert response.json()["result"] == "We use a strong stack."


def test_sharpness_report(client):
    response = client.post("/api/jd/sharpness", json={"text": "Responsible for billing and payroll."})
    assert response.status_code == 200
    report = response.json()
    assert report["processed"] == "own and lead billing and payroll."
    assert 1 <= report["sharpness_score"] <= 5
    assert "diff-old" in report["diff_html"]


# --- AI ---

def test_enhance_success(client):
    with patch('jd_builder.backend.main.enhance_job_description', return_value="Sharper.") as mock_enhance:
        response = client.post("/api/jd/enhance", json={"text": "Old.", "instruction": "Shorter"})
    assert response.status_code == 200
    assert response.json() == {"result": "Sharper."}
    assert mock_enhance.call_args.args[1] is app.state.key_manager


def test_enhance_when_all_keys_cooling_down(client):
    with patch('jd_builder.backend.main.enhance_job_description', side_effect=NoKeyAvailableError()):
        response = client.post("/api/jd/enhance", json={"text": "Old."})
    assert response.status_code == 503
    assert "try again" in response.json()["detail"]


def test_enhance_when_circuit_open(client):
    app.state.circuit_breaker = CircuitBreaker("gemini", failure_threshold=1)
    app.state.circuit_breaker.record_failure()
    with patch('jd_builder.gemini_services.genai') as mock_genai:
        response = client.post("/api/jd/enhance", json={"text": "Old."})
    assert response.status_code == 503
    assert response.headers["Retry-After"] == "30"
    assert "temporarily unavailable" in response.json()["detail"]
    mock_genai.configure.assert_not_called()


def test_ai_endpoints_share_the_app_breaker(client):
    with patch('jd_builder.backend.main.analyze_job_description', return_value={}) as mock_analyze:
        client.post("/api/jd/analyze", json={"text": "A JD."})
    assert mock_analyze.call_args.kwargs["breaker"] is app.state.circuit_breaker


def test_generate_upstream_failure(client):
    with patch('jd_builder.backend.main.generate_job_description', side_effect=AIServiceError()):
        response = client.post("/api/jd/generate", json={"title": "Engineer"})
    assert response.status_code == 502


def test_generate_success(client):
    jd = {"title": "Engineer", "sections": {"overview": "Build things."}}
    with patch('jd_builder.backend.main.generate_job_description', return_value=jd) as mock_generate:
        response = client.post("/api/jd/generate", json={"title": "Engineer", "skills": ["Python"]})
    assert response.status_code == 200
    assert response.json()["data"] == jd
    assert mock_generate.call_args.args[0]["skills"] == ["Python"]


def test_analyze_success(client):
    with patch('jd_builder.backend.main.analyze_job_description', return_value={"clarity_score": 9}):
        response = client.post("/api/jd/analyze", json={"text": "A JD."})
    assert response.json()["data"]["clarity_score"] == 9


# --- Operations ---

def test_keys_status_is_redacted(client):
    response = client.get("/api/keys/status")
    assert response.status_code == 200
    keys = response.json()["keys"]
    assert [k["key_prefix"] for k in keys] == ["AIzaSyTe...", "AIzaSyTe..."]
    assert "AIzaSyTestKeyNumberOne" not in response.text


def test_keys_status_includes_circuit(client):
    circuit = client.get("/api/keys/status").json()["circuit"]
    assert circuit["name"] == "gemini"
    assert circuit["state"] == "closed"


def test_workers_status(client):
    response = client.get("/api/workers/status")
    assert response.status_code == 200
    status = response.json()
    assert status["documents"]["workers"]["total"] == 2
    assert status["text"]["tasks"] == {"queued": 0, "running": 0}


def test_report_client_error(client):
    with patch.object(main.error_tracker, 'store', AsyncMock(return_value="err-1")) as mock_store:
        response = client.post("/api/error", json={"errorMessage": "Render failed", "errorStack": "at x",
                                                   "context": {"page": "editor"}})
    assert response.status_code == 200
    assert response.json() == {"success": True, "id": "err-1"}
    record = mock_store.call_args.args[0]
    assert record["error_stack"] == "at x"
    assert record["context"] == {"page": "editor", "source": "client"}


def test_unhandled_error_is_tracked(worker_pools):
    app.dependency_overrides[get_current_user] = override_get_current_user
    try:
        with patch('jd_builder.backend.main.jd_service.get_user_jds', side_effect=RuntimeError("db exploded")), \
             patch.object(main.error_tracker, 'store', AsyncMock(return_value="err-2")) as mock_store:
            response = TestClient(app, raise_server_exceptions=False).get("/api/history/all")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 500
    assert "db exploded" not in response.text
    assert mock_store.call_args.args[0]["error_message"] == "db exploded"


def test_db_check(client):
    with patch('jd_builder.backend.main.db') as mock_db:
        mock_db.command = AsyncMock(return_value={"ok": 1})
        assert client.get("/api/db/check").json() == {"status": "ok"}

        mock_db.command = AsyncMock(side_effect=Exception("timeout"))
        response = client.get("/api/db/check")
    assert response.status_code == 503


# --- Lifecycle ---

def test_startup_and_shutdown(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "AIzaSyLifecycleKey")
    with TestClient(app):
        assert len(app.state.key_manager) >= 1
        assert app.state.document_pool.get_status()["workers"]["total"] >= 1
        assert main.error_tracker.installed
        document_pool = app.state.document_pool

    assert not main.error_tracker.installed
    assert not any(thread.is_alive() for thread in document_pool._dispatchers)


def test_startup_fails_without_keys():
    with patch('jd_builder.backend.main.create_key_manager', side_effect=ConfigurationError("No API keys")):
        with pytest.raises(ConfigurationError):
            with TestClient(app):
                pass
    main.error_tracker.uninstall()
