"""
Client for the AI field-fill service.

Sends the collected field descriptors and the profile, receives one
FillDecision per field it could answer. Building the model prompt is the
service's job; this client only speaks the request/response contract:

    POST {fields: [...], profile: {...}, page_url: "...", api_key: "..."}
    ->   {results: [{field_id, action, value, confidence, reasoning}, ...]}
"""

import logging
from typing import List, Optional

import requests

from .config import AGENT_CONFIG
from .errors import UpstreamAgentError
from .models import FillDecision, FormFieldDescriptor
from .profile import Profile

logger = logging.getLogger(__name__)


class AgentClient:
    """HTTP client for the AI field-fill service."""

    def __init__(self, url: Optional[str] = None, api_key: Optional[str] = None,
                 timeout: Optional[float] = None, session: Optional[requests.Session] = None):
        self.url = url if url is not None else AGENT_CONFIG["url"]
        self.api_key = api_key if api_key is not None else AGENT_CONFIG["api_key"]
        self.timeout = timeout or AGENT_CONFIG["timeout"]
        self.session = session or requests.Session()

    @property
    def available(self) -> bool:
        """Only usable with both an endpoint and a key."""
        return bool(self.url and self.api_key)

    def fill_fields(self, descriptors: List[FormFieldDescriptor], profile: Profile,
                    page_url: str = "") -> List[FillDecision]:
        """
        Ask the service for fill decisions.

        Raises:
            UpstreamAgentError: transport failure, bad status, or a body without a results list
        """
        if not self.available:
            raise UpstreamAgentError("AI service is not configured")

        payload = {
            "fields": [d.to_dict() for d in descriptors],
            "profile": profile.to_dict(),
            "page_url": page_url,
            "api_key": self.api_key,
        }
        try:
            resp = self.session.post(self.url, json=payload, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except requests.RequestException as e:
            raise UpstreamAgentError(f"AI service request failed: {e}") from e
        except ValueError as e:
            raise UpstreamAgentError(f"AI service returned invalid JSON: {e}") from e

        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, list):
            raise UpstreamAgentError("AI service response has no results list")

        decisions = []
        for raw in results:
            try:
                decisions.append(FillDecision.from_dict(raw))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"[Agent] Dropping malformed result {raw!r}: {e}")
        logger.info(f"[Agent] {len(decisions)} decisions for {len(descriptors)} fields")
        return decisions
