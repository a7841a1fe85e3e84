"""
Brief: Tests for zonesync.membership token lookup and the REST client.

Inputs:
  - None

Outputs:
  - None
"""

import ipaddress

import pytest
import requests

from zonesync.errors import ConfigError, MembershipError
from zonesync.membership import (
    TOKEN_ENV_VAR,
    CentralClient,
    MemberRecord,
    StaticMembershipSource,
    central_token,
)
from zonesync.resync import ResyncLoop
from zonesync.zone import ZoneBuilder, ZoneStore

NETWORK = "8056c2e21c000001"


class FakeResponse:
    def __init__(self, payload=None, status=200, bad_json=False):
        self._payload = payload
        self.status_code = status
        self._bad_json = bad_json

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError("%d error" % self.status_code)

    def json(self):
        if self._bad_json:
            raise ValueError("Expecting value")
        return self._payload


class FakeSession:
    """Brief: Minimal stand-in for requests.Session keyed by URL suffix.

    Inputs:
      - routes: mapping of URL suffix to FakeResponse or exception instance.
    """

    def __init__(self, routes):
        self.routes = routes
        self.headers = {}
        self.calls = []
        self.closed = False

    def get(self, url, timeout=None):
        self.calls.append((url, timeout))
        for suffix, response in self.routes.items():
            if url.endswith(suffix):
                if isinstance(response, Exception):
                    raise response
                return response
        return FakeResponse(status=404)

    def close(self):
        self.closed = True


def _client(routes, **kwargs):
    session = FakeSession(routes)
    return CentralClient(NETWORK, "sekrit", session=session, **kwargs), session


def _network(rfc4193=False, sixplane=False):
    return FakeResponse({"config": {"v6AssignMode": {"rfc4193": rfc4193, "6plane": sixplane}}})


def test_fetch_members_parses_records():
    """
    Brief: Member JSON is normalized into MemberRecords.

    Inputs:
      - None

    Outputs:
      - None: Asserts fields, request URLs and headers
    """
    members = [
        {
            "nodeId": "abcdef0123",
            "name": "islay",
            "config": {"authorized": True, "ipAssignments": ["10.147.17.5"]},
        },
        {"nodeId": "0000000001", "name": None, "config": {"authorized": False}},
    ]
    client, session = _client(
        {
            "/network/%s" % NETWORK: _network(),
            "/network/%s/member" % NETWORK: FakeResponse(members),
        },
        base_url="https://central.example/api/v1/",
        timeout=3,
    )

    records = client.fetch_members()

    assert records == [
        MemberRecord("abcdef0123", "islay", ("10.147.17.5",), True),
        MemberRecord("0000000001", None, (), False),
    ]
    assert session.headers["Authorization"] == "token sekrit"
    assert [c[0] for c in session.calls] == [
        "https://central.example/api/v1/network/%s" % NETWORK,
        "https://central.example/api/v1/network/%s/member" % NETWORK,
    ]
    assert all(c[1] == 3.0 for c in session.calls)


def test_fetch_members_adds_derived_ipv6():
    """
    Brief: Enabled v6 assignment modes append the derived addresses.

    Inputs:
      - None

    Outputs:
      - None: Asserts derived addresses follow assigned ones
    """
    members = [
        {
            "nodeId": "abcdef0123",
            "config": {"authorized": True, "ipAssignments": ["10.147.17.5"]},
        },
        {"nodeId": "bogus", "config": {"authorized": True}},
    ]
    client, _ = _client(
        {
            "/network/%s" % NETWORK: _network(rfc4193=True, sixplane=True),
            "/member": FakeResponse(members),
        }
    )
    good, bogus = client.fetch_members()
    assert good.addresses == (
        "10.147.17.5",
        "fd80:56c2:e21c:0:199:93ab:cdef:123",
        "fc9c:56c2:e3ab:cdef:123::1",
    )
    assert bogus.addresses == ()


@pytest.mark.parametrize(
    "routes",
    [
        {"/network/%s" % NETWORK: requests.ConnectionError("refused")},
        {"/network/%s" % NETWORK: FakeResponse(status=401)},
        {"/network/%s" % NETWORK: FakeResponse(bad_json=True)},
        {"/network/%s" % NETWORK: FakeResponse(["not", "an", "object"])},
        {"/network/%s" % NETWORK: FakeResponse({"config": "nope"})},
        {"/network/%s" % NETWORK: _network(), "/member": FakeResponse({"not": "a list"})},
        {"/network/%s" % NETWORK: _network(), "/member": FakeResponse(bad_json=True)},
        {"/network/%s" % NETWORK: _network(), "/member": FakeResponse(status=500)},
    ],
)
def test_fetch_members_errors_raise_membership_error(routes):
    """
    Brief: Transport failures and unexpected payload shapes raise MembershipError.

    Inputs:
      - routes: fake responses

    Outputs:
      - None: Asserts MembershipError
    """
    client, _ = _client(routes)
    with pytest.raises(MembershipError):
        client.fetch_members()


def test_malformed_entries_are_skipped_not_fatal(domain):
    """
    Brief: Bad member entries are left out; the rest of the network publishes.

    Inputs:
      - domain: zombocom

    Outputs:
      - None: Asserts surviving records, skipped count and a published zone
    """
    members = [
        {
            "nodeId": "aaaaaaaaaa",
            "name": "good",
            "config": {"authorized": True, "ipAssignments": ["10.147.17.1"]},
        },
        {"name": "entry-without-id"},
        "not-an-object",
        {"nodeId": "bbbbbbbbbb", "config": "nope"},
        {"nodeId": "cccccccccc", "config": {"authorized": True, "ipAssignments": "x"}},
    ]
    client, _ = _client(
        {"/network/%s" % NETWORK: _network(), "/member": FakeResponse(members)}
    )

    records = client.fetch_members()
    assert [r.member_id for r in records] == ["aaaaaaaaaa"]
    assert client.skipped == 4

    loop = ResyncLoop(client, ZoneBuilder(domain), ZoneStore(domain))
    result = loop.run_once()
    assert result.ok
    assert result.records == 1 and result.dropped == 4
    assert loop.store.lookup_forward("good.zombocom") == (
        ipaddress.ip_address("10.147.17.1"),
    )


def test_close_closes_session():
    client, session = _client({})
    client.close()
    assert session.closed


def test_static_source_returns_copies():
    records = [MemberRecord("abcdef0123", "a", ("10.0.0.1",))]
    source = StaticMembershipSource(records)
    fetched = source.fetch_members()
    fetched.clear()
    assert source.fetch_members() == records
    source.close()


def test_central_token_from_env_and_file(tmp_path):
    """
    Brief: The token comes from a file when given, otherwise the environment.

    Inputs:
      - tmp_path: temporary directory

    Outputs:
      - None: Asserts token values and errors
    """
    assert central_token(environ={TOKEN_ENV_VAR: "  abc \n"}) == "abc"

    token_file = tmp_path / "token"
    token_file.write_text("from-file\n")
    assert central_token(str(token_file), environ={TOKEN_ENV_VAR: "env"}) == "from-file"

    with pytest.raises(ConfigError):
        central_token(environ={})
    with pytest.raises(ConfigError):
        central_token(str(tmp_path / "missing"))
    empty = tmp_path / "empty"
    empty.write_text("   \n")
    with pytest.raises(ConfigError):
        central_token(str(empty))
