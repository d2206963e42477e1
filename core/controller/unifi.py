# bouncer/core/controller/unifi.py
import base64
import json
import time
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

import requests

from schemas.decision import AddressFamily
from schemas.firewall import FirewallGroupInfo, FirewallPolicyInfo, FirewallRuleInfo, ZoneInfo
from utils.errors import ErrorCode
from utils.exceptions import ControllerError
from .base import IFirewallController

logger = logging.getLogger(f"bouncer.{__name__}")

GROUP_TYPES: Dict[AddressFamily, str] = {
    AddressFamily.IPV4: "address-group",
    AddressFamily.IPV6: "ipv6-address-group",
}
IP_VERSIONS: Dict[AddressFamily, str] = {
    AddressFamily.IPV4: "IPV4",
    AddressFamily.IPV6: "IPV6",
}
ZONE_BASED_FEATURE = "ZONE_BASED_FIREWALL"


class UnifiController(IFirewallController):
    """
    UniFi Network controller client.
    Legacy objects (groups, rules) live under /proxy/network/api/s/{site}/rest,
    zone-based objects (zones, policies) under /proxy/network/v2/api/site/{site}.
    Authenticates with an API key (X-API-KEY) or a username/password session.
    """
    CONTROLLER_NAME = "unifi"

    # HTTP status codes that should trigger retry with backoff
    RETRYABLE_STATUS_CODES = {429, 502, 503, 504}

    def __init__(self,
                 host: str,
                 site: str = "default",
                 api_key: str = "",
                 username: str = "",
                 password: str = "",
                 verify_ssl: bool = True,
                 timeout: float = 30.0,
                 max_retries: int = 3,
                 initial_backoff: float = 1.0,
                 max_backoff: float = 30.0,
                 user_agent: str = "cs-unifi-bouncer",
                 session: Optional[requests.Session] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.host = host.rstrip("/")
        self.site = site
        self._api_key = api_key
        self._username = username
        self._password = password
        self.timeout = timeout
        self.max_retries = max(0, max_retries)
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self._sleep = sleep

        self.session = session or requests.Session()
        self.session.verify = verify_ssl
        self.session.headers["User-Agent"] = user_agent
        self.session.headers["Accept"] = "application/json"
        if api_key:
            self.session.headers["X-API-KEY"] = api_key

    # --- URL helpers ---
    def _api_url(self, endpoint: str) -> str:
        return f"{self.host}/proxy/network/api/s/{self.site}/{endpoint}"

    def _v2_url(self, endpoint: str) -> str:
        return f"{self.host}/proxy/network/v2/api/site/{self.site}/{endpoint}"

    # --- transport ---
    def _send(self, method: str, url: str, **kwargs) -> requests.Response:
        """Executes a request with exponential backoff for retryable errors."""
        backoff = self.initial_backoff
        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
            except requests.exceptions.RequestException as e:
                if attempt >= attempts:
                    raise ControllerError(ErrorCode.CONTROLLER_UNREACHABLE,
                                          details={"method": method, "url": url},
                                          override_message=f"{method} {url} failed after {attempts} attempts: {e}") from e
                logger.warning(f"UniFi {method} {url} failed: {e}; retrying in {backoff:.1f}s (attempt {attempt}/{attempts})")
            else:
                if resp.status_code not in self.RETRYABLE_STATUS_CODES or attempt >= attempts:
                    return resp
                logger.warning(f"UniFi {method} {url} returned {resp.status_code}; retrying in {backoff:.1f}s "
                               f"(attempt {attempt}/{attempts})")
            self._sleep(backoff)
            backoff = min(backoff * 2, self.max_backoff)
        raise RuntimeError("Unexpected retry loop exit")

    def _request(self, method: str, url: str, payload: Optional[Any] = None) -> Any:
        kwargs: Dict[str, Any] = {}
        if payload is not None:
            kwargs["json"] = payload
        resp = self._send(method, url, **kwargs)

        if resp.status_code == 401 and not self._api_key and self._username:
            logger.warning("UniFi session expired, re-authenticating...")
            self._login()
            resp = self._send(method, url, **kwargs)

        if resp.status_code >= 400:
            error = ErrorCode.CONTROLLER_AUTH_FAILED if resp.status_code in (401, 403) else ErrorCode.CONTROLLER_REQUEST_FAILED
            raise ControllerError(error,
                                  details={"method": method, "url": url, "body": resp.text[:200]},
                                  override_message=f"{method} {url} -> {resp.status_code}: {resp.text[:200]}",
                                  status_code=resp.status_code)
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError:
            return {}

    @staticmethod
    def _data(body: Any) -> List[Dict[str, Any]]:
        """Unwraps the legacy {"meta": ..., "data": [...]} envelope; v2 endpoints return bare lists."""
        if isinstance(body, list):
            return body
        if isinstance(body, dict):
            data = body.get("data")
            if isinstance(data, list):
                return data
        return []

    # --- authentication ---
    def _login(self) -> None:
        url = f"{self.host}/api/auth/login"
        resp = self._send("POST", url, json={"username": self._username, "password": self._password})
        if resp.status_code != 200:
            raise ControllerError(ErrorCode.CONTROLLER_AUTH_FAILED,
                                  override_message=f"UniFi login failed: {resp.status_code} - {resp.text[:200]}",
                                  status_code=resp.status_code)
        csrf_token = resp.headers.get("X-CSRF-Token") or self._csrf_from_cookie()
        if csrf_token:
            self.session.headers["X-CSRF-Token"] = csrf_token
        logger.info(f"Logged in to UniFi controller at {self.host}")

    def _csrf_from_cookie(self) -> Optional[str]:
        """Reads csrfToken out of the JWT stored in the TOKEN cookie."""
        token = self.session.cookies.get("TOKEN")
        if not token:
            return None
        parts = token.split(".")
        if len(parts) < 2:
            return None
        try:
            padded = parts[1] + "=" * (-len(parts[1]) % 4)
            return json.loads(base64.urlsafe_b64decode(padded)).get("csrfToken")
        except (ValueError, TypeError) as e:
            logger.debug(f"Could not extract CSRF token from TOKEN cookie: {e}")
            return None

    def connect(self) -> None:
        if self._api_key:
            # API keys are stateless; one cheap read proves the key and the site
            self._request("GET", self._api_url("rest/firewallgroup"))
            logger.info(f"Connected to UniFi controller at {self.host} (site: {self.site}) with API key")
            return
        self._login()

    def is_zone_based(self) -> bool:
        try:
            features = self._data(self._request("GET", self._v2_url("site-feature-migration")))
        except ControllerError as e:
            if e.status_code == 404:
                return False
            raise
        return any(item.get("feature") == ZONE_BASED_FEATURE for item in features)

    # --- address groups ---
    def list_groups(self, family: AddressFamily) -> List[FirewallGroupInfo]:
        groups = []
        for item in self._data(self._request("GET", self._api_url("rest/firewallgroup"))):
            if item.get("group_type") != GROUP_TYPES[family]:
                continue
            groups.append(FirewallGroupInfo(
                id=item["_id"],
                name=item.get("name", ""),
                family=family,
                members=list(item.get("group_members") or []),
            ))
        return groups

    def create_group(self, name: str, family: AddressFamily, members: Sequence[str]) -> FirewallGroupInfo:
        payload = {"name": name, "group_type": GROUP_TYPES[family], "group_members": list(members)}
        created = self._data(self._request("POST", self._api_url("rest/firewallgroup"), payload))
        if not created:
            raise ControllerError(override_message=f"UniFi returned no data creating group '{name}'")
        logger.info(f"Created firewall group '{name}' with {len(members)} member(s)")
        return FirewallGroupInfo(id=created[0]["_id"], name=name, family=family, members=list(members))

    def update_group(self, group_id: str, name: str, family: AddressFamily, members: Sequence[str]) -> None:
        payload = {"_id": group_id, "name": name, "group_type": GROUP_TYPES[family], "group_members": list(members)}
        self._request("PUT", self._api_url(f"rest/firewallgroup/{group_id}"), payload)
        logger.info(f"Updated firewall group '{name}' with {len(members)} member(s)")

    # --- legacy rules ---
    def list_rules(self, family: AddressFamily) -> List[FirewallRuleInfo]:
        rules = []
        for item in self._data(self._request("GET", self._api_url("rest/firewallrule"))):
            ruleset = item.get("ruleset", "")
            if ("v6" in ruleset) != (family == AddressFamily.IPV6):
                continue
            rules.append(FirewallRuleInfo(
                id=item["_id"],
                name=item.get("name", ""),
                ruleset=ruleset,
                rule_index=int(item.get("rule_index", 0)),
                group_ids=list(item.get("src_firewallgroup_ids") or []),
            ))
        return rules

    def create_rule(self, name: str, family: AddressFamily, ruleset: str, rule_index: int,
                    group_id: str, logging: bool = False) -> FirewallRuleInfo:
        network_type = "NETv6" if family == AddressFamily.IPV6 else "NETv4"
        payload = {
            "enabled": True,
            "name": name,
            "action": "drop",
            "protocol": "all",
            "protocol_match_excepted": False,
            "logging": logging,
            "state_established": False,
            "state_invalid": False,
            "state_new": False,
            "state_related": False,
            "ruleset": ruleset,
            "rule_index": rule_index,
            "src_firewallgroup_ids": [group_id],
            "src_mac_address": "",
            "src_address": "",
            "src_networkconf_id": "",
            "src_networkconf_type": network_type,
            "dst_firewallgroup_ids": [],
            "dst_address": "",
            "dst_networkconf_id": "",
            "dst_networkconf_type": network_type,
            "ipsec": "",
            "icmp_typename": "",
            "setting_preference": "manual",
        }
        if family == AddressFamily.IPV6:
            payload["protocol_v6"] = "all"
        created = self._data(self._request("POST", self._api_url("rest/firewallrule"), payload))
        if not created:
            raise ControllerError(override_message=f"UniFi returned no data creating rule '{name}'")
        logger.info(f"Created firewall rule '{name}' ({ruleset}, index {rule_index})")
        return FirewallRuleInfo(id=created[0]["_id"], name=name, ruleset=ruleset,
                                rule_index=rule_index, group_ids=[group_id])

    # --- zone-based policies ---
    def list_zones(self) -> List[ZoneInfo]:
        return [
            ZoneInfo(id=item["_id"], name=item.get("name", ""), zone_key=item.get("zone_key"))
            for item in self._data(self._request("GET", self._v2_url("firewall/zone")))
        ]

    def list_policies(self) -> List[FirewallPolicyInfo]:
        policies = []
        for item in self._data(self._request("GET", self._v2_url("firewall-policies"))):
            source = item.get("source") or {}
            destination = item.get("destination") or {}
            ip_version = item.get("ip_version")
            family = next((f for f, v in IP_VERSIONS.items() if v == ip_version), None)
            policies.append(FirewallPolicyInfo(
                id=item["_id"],
                name=item.get("name", ""),
                family=family,
                source_zone_id=source.get("zone_id", ""),
                destination_zone_id=destination.get("zone_id", ""),
                group_id=source.get("ip_group_id"),
                index=item.get("index"),
                predefined=bool(item.get("predefined", False)),
            ))
        return policies

    def create_policy(self, name: str, family: AddressFamily, group_id: str, source_zone_id: str,
                      destination_zone_id: str, logging: bool = False) -> FirewallPolicyInfo:
        payload = {
            "name": name,
            "enabled": True,
            "action": "BLOCK",
            "ip_version": IP_VERSIONS[family],
            "protocol": "all",
            "logging": logging,
            "create_allow_respond": False,
            "connection_state_type": "ALL",
            "schedule": {"mode": "ALWAYS"},
            "source": {
                "zone_id": source_zone_id,
                "matching_target": "IP",
                "matching_target_type": "OBJECT",
                "ip_group_id": group_id,
                "port_matching_type": "ANY",
            },
            "destination": {
                "zone_id": destination_zone_id,
                "matching_target": "ANY",
                "port_matching_type": "ANY",
            },
        }
        created = self._request("POST", self._v2_url("firewall-policies"), payload)
        if isinstance(created, list):
            created = created[0] if created else {}
        if not isinstance(created, dict) or "_id" not in created:
            raise ControllerError(override_message=f"UniFi returned no data creating policy '{name}'")
        logger.info(f"Created firewall policy '{name}'")
        return FirewallPolicyInfo(id=created["_id"], name=name, family=family, source_zone_id=source_zone_id,
                                  destination_zone_id=destination_zone_id, group_id=group_id,
                                  index=created.get("index"))

    def reorder_policies(self, source_zone_id: str, destination_zone_id: str, policy_ids: Sequence[str]) -> None:
        payload = {
            "source_zone_id": source_zone_id,
            "destination_zone_id": destination_zone_id,
            "before_predefined_ids": list(policy_ids),
            "after_predefined_ids": [],
        }
        self._request("PUT", self._v2_url("firewall-policies/batch-reorder"), payload)
        logger.info(f"Reordered {len(policy_ids)} firewall policies ahead of predefined ones "
                    f"({source_zone_id} -> {destination_zone_id})")
