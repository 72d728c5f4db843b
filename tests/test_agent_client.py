"""
Tests for agent_client.py and cache_client.py

HTTP is mocked with a MagicMock session.
"""

import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import requests

sys.path.insert(0, str(Path(__file__).parent.parent))

from autofill.agent_client import AgentClient
from autofill.cache_client import RemoteMappingCache
from autofill.errors import UpstreamAgentError
from autofill.models import FormFieldDescriptor
from autofill.profile import Profile


def _response(data=None, error=None):
    resp = MagicMock()
    if error is not None:
        resp.raise_for_status.side_effect = error
    if isinstance(data, Exception):
        resp.json.side_effect = data
    else:
        resp.json.return_value = data
    return resp


def _agent(resp):
    session = MagicMock()
    session.post.return_value = resp
    return AgentClient(url="http://agent/fill", api_key="k", timeout=5, session=session), session


FIELDS = [FormFieldDescriptor(field_id="field_0", name="email")]


# ============ Agent Tests ============

class TestAgentClient:
    """Tests for AgentClient.fill_fields."""

    def test_unavailable_without_key(self):
        """Should not be available without a key, and refuse to call."""
        client = AgentClient(url="http://agent/fill", api_key="", session=MagicMock())
        assert not client.available
        with pytest.raises(UpstreamAgentError):
            client.fill_fields(FIELDS, Profile())

    def test_request_payload(self):
        """Should post fields, profile and page URL."""
        client, session = _agent(_response({"results": []}))
        client.fill_fields(FIELDS, Profile({"email": "a@b.com"}), page_url="https://x")

        kwargs = session.post.call_args.kwargs
        assert kwargs["json"]["fields"][0]["field_id"] == "field_0"
        assert kwargs["json"]["profile"] == {"email": "a@b.com"}
        assert kwargs["json"]["page_url"] == "https://x"
        assert kwargs["timeout"] == 5

    def test_parses_results(self):
        """Should build decisions and drop malformed items."""
        client, _ = _agent(_response({"results": [
            {"field_id": "field_0", "action": "fill", "value": "a@b.com", "confidence": 0.9},
            {"action": "fill"},
            {"field_id": "field_1", "action": "explode"},
        ]}))
        decisions = client.fill_fields(FIELDS, Profile())
        assert [d.field_id for d in decisions] == ["field_0"]
        assert decisions[0].confidence == 0.9

    def test_transport_failure(self):
        """Should wrap request errors."""
        session = MagicMock()
        session.post.side_effect = requests.ConnectionError("down")
        client = AgentClient(url="http://agent/fill", api_key="k", session=session)
        with pytest.raises(UpstreamAgentError):
            client.fill_fields(FIELDS, Profile())

    def test_bad_status(self):
        """Should wrap HTTP errors."""
        client, _ = _agent(_response(error=requests.HTTPError("500")))
        with pytest.raises(UpstreamAgentError):
            client.fill_fields(FIELDS, Profile())

    def test_invalid_json(self):
        """Should wrap JSON decode errors."""
        client, _ = _agent(_response(ValueError("no json")))
        with pytest.raises(UpstreamAgentError):
            client.fill_fields(FIELDS, Profile())

    def test_missing_results(self):
        """Should reject a body without a results list."""
        client, _ = _agent(_response({"answer": "x"}))
        with pytest.raises(UpstreamAgentError):
            client.fill_fields(FIELDS, Profile())


# ============ Remote Cache Tests ============

class TestRemoteMappingCache:
    """Tests for RemoteMappingCache."""

    def _cache(self, *responses):
        session = MagicMock()
        session.request.side_effect = list(responses)
        return RemoteMappingCache(base_url="http://cache/", session=session), session

    def test_trusted_hit(self):
        """Should reuse a trusted remote entry without computing."""
        entry = {"page_signature": "form_x", "mappings": [{"canonical": "email"}], "confirmation_rate": 0.9}
        cache, session = self._cache(_response({"entry": entry, "trusted": True}))
        compute = MagicMock()

        result = cache.get_or_compute("form_x", compute)

        assert result.cached
        assert result.mappings == [{"canonical": "email"}]
        compute.assert_not_called()
        assert session.request.call_args.args == ("POST", "http://cache/v1/mapping/cache/lookup")

    def test_miss_stores(self):
        """Should compute and PUT the mapping on a miss."""
        stored = {"page_signature": "form_x", "mappings": [], "confirmation_rate": 0.5}
        cache, session = self._cache(_response({"entry": None, "trusted": False}),
                                     _response({"ok": True, "entry": stored}))
        result = cache.get_or_compute("form_x", MagicMock(return_value=[]), url="https://x")

        assert not result.cached
        assert result.confidence == 0.5
        method, url = session.request.call_args.args
        assert (method, url) == ("PUT", "http://cache/v1/mapping/cache/form_x")

    def test_unreachable_server_degrades(self):
        """Should compute locally when the server is down."""
        cache, _ = self._cache(requests.ConnectionError("down"))
        result = cache.get_or_compute("form_x", MagicMock(return_value=[{"canonical": "email"}]))
        assert not result.cached
        assert result.mappings == [{"canonical": "email"}]

    def test_confirm(self):
        """Should return the server's new rate, or None on failure."""
        cache, _ = self._cache(_response({"ok": True, "new_rate": 0.65}), requests.Timeout("slow"))
        assert cache.confirm("form_x", True) == 0.65
        assert cache.confirm("form_x", True) is None
