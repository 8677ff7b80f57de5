import json

import pytest
import requests

from subsync_app.sync.adapters.hubspot import HubSpotClient, HubSpotRemoteError, HubSpotTokenStore
from subsync_app.sync.adapters.hubspot.client import DEFAULT_ASSOCIATION_TYPE_ID


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload
        self.text = "" if payload is None else json.dumps(payload)

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    def json(self):
        return self._payload


class FakeSession:
    """Replays queued responses and records every request."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.requests = []
        self.posts = []

    def request(self, method, url, *, headers=None, json=None, timeout=None):
        self.requests.append({"method": method, "url": url, "headers": headers, "json": json})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def post(self, url, *, data=None, headers=None, timeout=None):
        self.posts.append({"url": url, "data": data})
        return self.responses.pop(0)


@pytest.fixture
def token_store(token_file):
    def _factory(session=None):
        return HubSpotTokenStore(
            token_file=token_file,
            client_id="client-id",
            client_secret="client-secret",
            session=session or FakeSession(),
        )

    return _factory


def _client(session, tokens, **kwargs):
    options = {"lookup_delay": 0.0}
    options.update(kwargs)
    return HubSpotClient(tokens=tokens, accounts_object_type="2-123456", session=session, **options)


def test_search_chunks_values_and_follows_paging(token_store):
    sleeps = []
    session = FakeSession(
        [
            FakeResponse(
                200,
                {"results": [{"id": "1", "properties": {"id": "U1"}}], "paging": {"next": {"after": "cursor-1"}}},
            ),
            FakeResponse(200, {"results": [{"id": "2", "properties": {"id": "U2"}}]}),
            FakeResponse(200, {"results": [{"id": "3", "properties": {"id": "U3"}}]}),
        ]
    )
    client = _client(session, token_store(), lookup_chunk_size=2, lookup_delay=0.25, sleep_fn=sleeps.append)

    records = client.search_accounts_by_ids(["U1", "U2", "U2", "U3", ""])

    assert [record.id for record in records] == ["1", "2", "3"]
    bodies = [request["json"] for request in session.requests]
    assert bodies[0]["filterGroups"][0]["filters"][0] == {"propertyName": "id", "operator": "IN", "values": ["U1", "U2"]}
    assert "after" not in bodies[0]
    assert bodies[1]["after"] == "cursor-1"
    assert bodies[2]["filterGroups"][0]["filters"][0]["values"] == ["U3"]
    assert session.requests[0]["url"].endswith("/crm/v3/objects/2-123456/search")
    assert session.requests[0]["headers"]["Authorization"] == "Bearer access-1"
    assert sleeps == [0.25]


def test_search_with_no_values_makes_no_request(token_store):
    session = FakeSession()

    assert _client(session, token_store()).search_contacts_by_emails([]) == []
    assert session.requests == []


def test_batch_create_posts_inputs(token_store):
    session = FakeSession([FakeResponse(201, {"results": [{"id": "9", "properties": {"email": "a@b.com"}}]})])
    client = _client(session, token_store())

    result = client.batch_create_contacts([{"email": "a@b.com"}])

    assert result.records[0].id == "9"
    assert result.error_count == 0
    assert session.requests[0]["url"].endswith("/crm/v3/objects/contacts/batch/create")
    assert session.requests[0]["json"] == {"inputs": [{"properties": {"email": "a@b.com"}}]}


def test_batch_update_sends_remote_ids(token_store):
    session = FakeSession([FakeResponse(200, {"results": [{"id": "5", "properties": {}}]})])
    client = _client(session, token_store())

    client.batch_update_accounts([("5", {"active_subscription": "false"})])

    assert session.requests[0]["url"].endswith("/crm/v3/objects/2-123456/batch/update")
    assert session.requests[0]["json"] == {"inputs": [{"id": "5", "properties": {"active_subscription": "false"}}]}


def test_batch_reports_per_input_errors(token_store):
    session = FakeSession(
        [
            FakeResponse(
                207,
                {
                    "status": "COMPLETE",
                    "results": [{"id": "7", "properties": {"id": "U1"}}],
                    "errors": [{"status": "error", "category": "VALIDATION_ERROR", "message": "Property values were not valid"}],
                },
            )
        ]
    )
    client = _client(session, token_store())

    result = client.batch_create_accounts([{"id": "U1"}, {"id": "U2"}])

    assert [record.id for record in result.records] == ["7"]
    assert result.error_count == 1
    assert result.errors[0]["category"] == "VALIDATION_ERROR"


def test_empty_batch_makes_no_request(token_store):
    session = FakeSession()

    result = _client(session, token_store()).batch_update_contacts([])

    assert result.records == ()
    assert result.error_count == 0
    assert session.requests == []


def test_malformed_success_body_raises_remote_error(token_store):
    response = FakeResponse(200, {})
    response.text = "<html>gateway</html>"
    response.json = lambda: json.loads(response.text)
    client = _client(FakeSession([response]), token_store(), association_type_id=3)

    with pytest.raises(HubSpotRemoteError) as excinfo:
        client.create_association("11", "22")

    assert "malformed body" in str(excinfo.value)
    assert excinfo.value.status_code == 200


def test_batch_rejects_more_than_limit(token_store):
    client = _client(FakeSession(), token_store())

    with pytest.raises(ValueError):
        client.batch_create_accounts([{"id": str(i)} for i in range(101)])


def test_unauthorized_refreshes_token_and_retries_once(token_store, token_file):
    token_session = FakeSession([FakeResponse(200, {"access_token": "access-2", "expires_in": 1800})])
    session = FakeSession([FakeResponse(401, {"message": "expired"}), FakeResponse(200, {"results": []})])
    client = _client(session, token_store(token_session))

    assert client.search_contacts_by_emails(["a@b.com"]) == []

    assert [r["headers"]["Authorization"] for r in session.requests] == ["Bearer access-1", "Bearer access-2"]
    assert token_session.posts[0]["data"]["grant_type"] == "refresh_token"
    assert json.loads(token_file.read_text())["access_token"] == "access-2"


def test_second_unauthorized_raises(token_store):
    token_session = FakeSession([FakeResponse(200, {"access_token": "access-2"})])
    session = FakeSession([FakeResponse(401, {}), FakeResponse(401, {})])
    client = _client(session, token_store(token_session))

    with pytest.raises(HubSpotRemoteError) as excinfo:
        client.batch_create_contacts([{"email": "a@b.com"}])

    assert excinfo.value.status_code == 401
    assert len(session.requests) == 2


def test_server_error_and_transport_error_raise_remote_error(token_store):
    session = FakeSession([FakeResponse(500, {"message": "boom"}), requests.ConnectionError("down")])
    client = _client(session, token_store())

    with pytest.raises(HubSpotRemoteError) as excinfo:
        client.batch_create_contacts([{"email": "a@b.com"}])
    assert excinfo.value.status_code == 500

    with pytest.raises(HubSpotRemoteError):
        client.batch_create_contacts([{"email": "a@b.com"}])


def test_association_uses_discovered_user_defined_type(token_store):
    session = FakeSession(
        [
            FakeResponse(
                200,
                {"results": [{"category": "HUBSPOT_DEFINED", "typeId": 279}, {"category": "USER_DEFINED", "typeId": 42}]},
            ),
            FakeResponse(200, {}),
            FakeResponse(204),
        ]
    )
    client = _client(session, token_store())

    client.create_association("201", "101")
    client.create_association("202", "102")

    assert session.requests[0]["url"].endswith("/crm/v4/associations/contacts/2-123456/labels")
    assert session.requests[1]["method"] == "PUT"
    assert session.requests[1]["url"].endswith("/crm/v4/objects/contacts/201/associations/2-123456/101")
    assert session.requests[1]["json"] == [{"associationCategory": "USER_DEFINED", "associationTypeId": 42}]
    # Discovery happens once per client.
    assert len(session.requests) == 3


def test_association_type_falls_back_when_discovery_fails(token_store):
    session = FakeSession([FakeResponse(404, {"message": "no labels"})])
    client = _client(session, token_store())

    assert client.get_association_type_id() == DEFAULT_ASSOCIATION_TYPE_ID


def test_configured_association_type_skips_discovery(token_store):
    session = FakeSession()
    client = _client(session, token_store(), association_type_id=7)

    assert client.get_association_type_id() == 7
    assert session.requests == []
