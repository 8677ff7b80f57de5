import json
import os
import stat
import threading

import pytest

from subsync_app.sync.adapters.hubspot import HubSpotTokenError, HubSpotTokenStore
from subsync_app.sync.adapters.hubspot.tokens import read_token_file


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload or {}
        self.text = json.dumps(self._payload)

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    def json(self):
        return self._payload


class CountingSession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.posts = []
        self._lock = threading.Lock()

    def post(self, url, *, data=None, headers=None, timeout=None):
        with self._lock:
            self.posts.append({"url": url, "data": data})
            return self.responses.pop(0)


def _store(token_file, session, **kwargs):
    options = {"client_id": "client-id", "client_secret": "client-secret"}
    options.update(kwargs)
    return HubSpotTokenStore(token_file=token_file, session=session, **options)


def test_access_token_loaded_from_file(token_file):
    store = _store(token_file, CountingSession())

    assert store.access_token == "access-1"
    assert store.has_refresh_token


def test_missing_token_file_has_no_access_token(tmp_path):
    store = _store(tmp_path / "missing.json", CountingSession())

    with pytest.raises(HubSpotTokenError):
        store.access_token
    with pytest.raises(HubSpotTokenError):
        store.refresh()


def test_refresh_persists_new_tokens_with_owner_only_permissions(token_file):
    session = CountingSession(FakeResponse(200, {"access_token": "access-2", "refresh_token": "refresh-2"}))
    store = _store(token_file, session)

    assert store.refresh("access-1") == "access-2"

    saved = json.loads(token_file.read_text())
    assert saved["access_token"] == "access-2"
    assert saved["refresh_token"] == "refresh-2"
    assert "updated_at" in saved
    assert session.posts[0]["data"] == {
        "grant_type": "refresh_token",
        "refresh_token": "refresh-1",
        "client_id": "client-id",
        "client_secret": "client-secret",
    }
    if os.name == "posix":
        assert stat.S_IMODE(os.stat(token_file).st_mode) == 0o600


def test_concurrent_refreshes_converge_on_one_request(token_file):
    session = CountingSession(FakeResponse(200, {"access_token": "access-2"}))
    store = _store(token_file, session)
    results = []

    def refresh():
        results.append(store.refresh("access-1"))

    threads = [threading.Thread(target=refresh) for _ in range(5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert results == ["access-2"] * 5
    assert len(session.posts) == 1


def test_refresh_rejection_raises_token_error(token_file):
    store = _store(token_file, CountingSession(FakeResponse(400, {"message": "BAD_REFRESH_TOKEN"})))

    with pytest.raises(HubSpotTokenError):
        store.refresh("access-1")
    assert store.access_token == "access-1"


def test_exchange_code_stores_tokens(tmp_path):
    token_file = tmp_path / "nested" / "tokens.json"
    session = CountingSession(
        FakeResponse(200, {"access_token": "new-access", "refresh_token": "new-refresh", "expires_in": 1800})
    )
    store = _store(token_file, session, redirect_uri="http://localhost:5000/oauth/callback")

    tokens = store.exchange_code("auth-code")

    assert tokens["access_token"] == "new-access"
    assert read_token_file(token_file)["refresh_token"] == "new-refresh"
    assert session.posts[0]["data"]["grant_type"] == "authorization_code"
    assert session.posts[0]["data"]["redirect_uri"] == "http://localhost:5000/oauth/callback"


def test_exchange_requires_client_credentials(tmp_path):
    store = _store(tmp_path / "tokens.json", CountingSession(), client_id=None)

    with pytest.raises(HubSpotTokenError):
        store.exchange_code("auth-code")


def test_malformed_token_file_is_ignored(tmp_path):
    path = tmp_path / "tokens.json"
    path.write_text("{not json", encoding="utf-8")

    assert read_token_file(path) is None
