# bouncer/core/decisions/lapi.py
import logging
from typing import List, Optional, Sequence

import requests
from pydantic import ValidationError

from schemas.decision import Decision, DecisionAction, DecisionStreamResponse, LapiDecision
from utils.errors import ErrorCode
from utils.exceptions import BouncerError

logger = logging.getLogger(f"bouncer.{__name__}")

SUPPORTED_SCOPES = ("ip", "range")


class LapiClient:
    """
    Minimal CrowdSec Local API client for bouncers.
    Only the stream endpoint is used: the first call asks for the full set
    (startup=true), later calls return the delta since the previous one.
    """
    def __init__(self,
                 url: str,
                 api_key: str,
                 origins: Optional[Sequence[str]] = None,
                 timeout: float = 30.0,
                 user_agent: str = "cs-unifi-bouncer",
                 session: Optional[requests.Session] = None):
        self.url = url.rstrip("/")
        self.origins = list(origins or [])
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers["X-Api-Key"] = api_key
        self.session.headers["User-Agent"] = user_agent

    def fetch(self, startup: bool = False) -> DecisionStreamResponse:
        """
        Fetches one stream delta.
        Raises:
            BouncerError: On transport errors, non-2xx responses or an unparseable body.
        """
        params = {"startup": "true" if startup else "false"}
        if self.origins:
            params["origins"] = ",".join(self.origins)
        url = f"{self.url}/v1/decisions/stream"
        logger.debug(f"Fetching decisions from {url} with params {params}")

        try:
            resp = self.session.get(url, params=params, timeout=self.timeout)
            resp.raise_for_status()
            body = resp.json() if resp.content else {}
            return DecisionStreamResponse.model_validate(body or {})
        except (requests.exceptions.RequestException, ValueError, ValidationError) as e:
            raise BouncerError(ErrorCode.STREAM_REQUEST_FAILED, details={"url": url, "startup": startup},
                               override_message=f"Failed to fetch decisions from {url}: {e}") from e


def to_decisions(response: DecisionStreamResponse) -> List[Decision]:
    """
    Converts a stream delta into decisions, deletions first.
    Non-ban types, unsupported scopes and malformed values are skipped.
    """
    decisions: List[Decision] = []
    for action, items in ((DecisionAction.REMOVE, response.deleted), (DecisionAction.ADD, response.new)):
        for raw in items or []:
            try:
                item = LapiDecision.model_validate(raw)
            except ValidationError as e:
                logger.warning(f"Skipping malformed {action.value} decision {raw!r}: {e.error_count()} validation error(s)")
                continue
            if item.type.lower() != "ban":
                logger.debug(f"Skipping decision {item.value} with type '{item.type}'")
                continue
            if item.scope.lower() not in SUPPORTED_SCOPES:
                logger.debug(f"Skipping decision {item.value} with scope '{item.scope}'")
                continue
            decision = Decision.from_value(item.value, action, origin=item.origin, scenario=item.scenario,
                                           scope=item.scope, duration=item.duration)
            if decision is None:
                logger.warning(f"Skipping {action.value} decision with malformed address {item.value!r} "
                               f"(origin: {item.origin}, scenario: {item.scenario})")
                continue
            decisions.append(decision)
    return decisions
