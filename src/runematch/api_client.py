"""HTTP client for the RuneAlytics matchmaking API.

Every operation posts a JSON object and gets back one of three shapes: a
JSON object, a bare primitive (``true``, ``0``...) or opaque text. The body
is classified once into a tagged response and then turned into an
ApiResult, so nothing downstream ever re-parses it.
"""

import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Union

import requests

from runematch.observer import ItemStack
from runematch.session import MatchSession, Participant, Rally, Winner

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://runealytics.com/api"
DEFAULT_TIMEOUT = 10.0

MATCHMAKING_BASE = "/matchmaking/runelite"
GET_MATCH_PATH = MATCHMAKING_BASE + "/get-match"
ACCEPT_MATCH_PATH = MATCHMAKING_BASE + "/accept"
BEGIN_MATCH_PATH = MATCHMAKING_BASE + "/begin-match"
REPORT_MATCH_PATH = MATCHMAKING_BASE + "/report-match"
REPORT_ITEMS_PATH = MATCHMAKING_BASE + "/report-items"

_PRIMITIVE_PREFIXES = (("true", True), ("false", False), ("1", True), ("0", False))


@dataclass(frozen=True)
class StructuredResponse:
    """Body parsed to a JSON object."""
    payload: dict[str, Any]


@dataclass(frozen=True)
class PrimitiveResponse:
    """Bare boolean/number/string body (or an empty one)."""
    success: bool
    message: str = ""


@dataclass(frozen=True)
class RawResponse:
    """Body that could not be parsed as JSON at all."""
    success: bool
    message: str = ""


ParsedResponse = Union[StructuredResponse, PrimitiveResponse, RawResponse]


@dataclass(frozen=True)
class ApiResult:
    """Normalised outcome of one matchmaking call.

    A failed result never carries a session.
    """
    session: Optional[MatchSession]
    message: str = ""
    raw_response: str = ""
    success: bool = False
    token_refresh: bool = False

    @classmethod
    def failure(cls, message: str, raw_response: str = "") -> "ApiResult":
        return cls(None, message or "", raw_response, False, False)


# Response classification


def _starts_with_primitive(lowered: str) -> Optional[bool]:
    for prefix, value in _PRIMITIVE_PREFIXES:
        if lowered.startswith(prefix):
            return value
    return None


def _is_likely_primitive(body: str) -> bool:
    if not body or body[0] in "{[\"":
        return False
    return _starts_with_primitive(body.lower()) is not None


def _from_raw(body: str) -> ParsedResponse:
    success = _starts_with_primitive(body.lower())
    if success is None:
        return RawResponse(False, body)
    return RawResponse(success, "")


def _to_json_text(value: Any) -> str:
    """Compact JSON text for non-primitive values."""
    return json.dumps(value, separators=(",", ":"))


def _number_to_int(value: float) -> int:
    """Truncate a JSON number; NaN and infinities count as 0."""
    if isinstance(value, float) and not math.isfinite(value):
        return 0
    return int(value)


def _from_json_value(value: Any) -> ParsedResponse:
    if isinstance(value, (dict, list)):
        # Objects are handled by the caller; arrays carry no status
        return PrimitiveResponse(False, _to_json_text(value))
    if isinstance(value, bool):
        return PrimitiveResponse(value, "")
    if isinstance(value, (int, float)):
        return PrimitiveResponse(_number_to_int(value) != 0, "")
    if isinstance(value, str):
        return PrimitiveResponse(value.strip().lower() == "true", value)
    return PrimitiveResponse(False, "")


def parse_response_body(body: Optional[str]) -> ParsedResponse:
    """Classify a raw response body.

    Args:
        body: Response text exactly as received.

    Returns:
        StructuredResponse for JSON objects, PrimitiveResponse for bare
        primitives (including the empty body), RawResponse when the body
        is not JSON.
    """
    if body is None:
        return PrimitiveResponse(False, "")

    trimmed = body.strip()
    if not trimmed:
        return PrimitiveResponse(False, "")

    if _is_likely_primitive(trimmed):
        return PrimitiveResponse(bool(_starts_with_primitive(trimmed.lower())), "")

    try:
        # raw_decode reads the first JSON value and tolerates trailing text
        value, _ = json.JSONDecoder().raw_decode(trimmed)
    except ValueError as e:
        logger.debug(f"Failed to parse matchmaking response: {e}")
        return _from_raw(trimmed)

    if value is None:
        return PrimitiveResponse(False, "")
    if isinstance(value, dict):
        return StructuredResponse(value)

    logger.debug(f"Matchmaking response was not a JSON object: {trimmed[:200]}")
    return _from_json_value(value)


# Lenient field accessors: missing or null never raise


def _get_string(data: Optional[dict], key: str) -> str:
    if not isinstance(data, dict):
        return ""
    value = data.get(key)
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return _to_json_text(value)
    return str(value)


def _get_bool(data: Optional[dict], key: str) -> bool:
    if not isinstance(data, dict):
        return False
    value = data.get(key)
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return False


def _get_int(data: Optional[dict], key: str) -> int:
    if not isinstance(data, dict):
        return 0
    value = data.get(key)
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return _number_to_int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return 0
    return 0


def _get_object(data: dict, key: str) -> Optional[dict]:
    value = data.get(key)
    return value if isinstance(value, dict) else None


def _stringify(value: Any) -> str:
    """Gear rules may arrive as an object, array or string; keep it opaque."""
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return _to_json_text(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _parse_participant(data: dict, prefix: str) -> Participant:
    token = (
        _get_string(data, f"{prefix}_authentication_token")
        or _get_string(data, f"{prefix}_token")
    )
    return Participant(
        rsn=_get_string(data, f"{prefix}_osrs_username"),
        joined=_get_bool(data, f"{prefix}_joined"),
        ready_to_fight=_get_bool(data, f"{prefix}_ready_to_fight"),
        token=token,
    )


def parse_match_session(data: dict, match_code: str, osrs_rsn: str) -> MatchSession:
    """Build a MatchSession from a structured response.

    ``match_code`` and ``osrs_rsn`` come from the request, not the response.
    """
    rally = None
    rally_obj = _get_object(data, "rally")
    if rally_obj is not None:
        rally = Rally(
            x=_get_int(rally_obj, "x"),
            y=_get_int(rally_obj, "y"),
            plane=_get_int(rally_obj, "plane"),
        )

    winner = None
    winner_obj = _get_object(data, "winner")
    if winner_obj is not None:
        winner = Winner(
            osrs_rsn=_get_string(winner_obj, "osrs_rsn"),
            combat_level=_get_int(winner_obj, "combat_level"),
            elo=_get_int(winner_obj, "elo"),
        )

    auth = _get_object(data, "authentication")

    return MatchSession(
        match_code=match_code,
        local_rsn=osrs_rsn,
        participants=(
            _parse_participant(data, "player1"),
            _parse_participant(data, "player2"),
        ),
        world=_get_int(data, "world"),
        zone=_get_string(data, "zone"),
        status=_get_string(data, "status"),
        risk=_get_string(data, "risk"),
        gear_rules=_stringify(data.get("gear_rules")),
        rally=rally,
        winner=winner,
        token=_get_string(auth, "token"),
        token_expires_at=_get_string(auth, "expires_at"),
    )


def build_result(
    body: Optional[str],
    http_ok: bool,
    match_code: str,
    osrs_rsn: str,
) -> ApiResult:
    """Turn a response body and HTTP outcome into an ApiResult."""
    raw = body or ""
    parsed = parse_response_body(raw)

    if isinstance(parsed, StructuredResponse):
        data = parsed.payload
        message = _get_string(data, "message")
        token_refresh = _get_bool(data, "token_refresh") or _get_bool(data, "refresh_token")
        if http_ok:
            session = parse_match_session(data, match_code, osrs_rsn)
            return ApiResult(session, message, raw, True, token_refresh)
        return ApiResult(None, message, raw, False, token_refresh)

    success = http_ok and parsed.success
    return ApiResult(None, parsed.message, raw, success, False)


def build_item_payload(items: Optional[Iterable[ItemStack]]) -> list[dict[str, int]]:
    """Serialise an item container, skipping empty slots."""
    payload: list[dict[str, int]] = []
    if not items:
        return payload
    for item in items:
        if item is not None and item.id > 0 and item.quantity > 0:
            payload.append({"id": item.id, "qty": item.quantity})
    return payload


class MatchmakingApiClient:
    """Client for the matchmaking endpoints.

    Holds no per-call state; safe to share between worker threads as long
    as the underlying requests.Session is.

    Example:
        client = MatchmakingApiClient("https://runealytics.com/api")
        result = client.get_match("ABC123", "M-42", "Zezima")
        if result.success and result.session:
            print(result.session.status)
    """

    def __init__(
        self,
        api_url: str = DEFAULT_API_URL,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_url: Base API URL; matchmaking paths are appended to it.
            timeout: Per-request timeout in seconds.
            session: Optional requests.Session to reuse connections.
        """
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "User-Agent": "RuneMatch/0.1",
            "Accept": "application/json",
        })

    @staticmethod
    def _base_payload(verification_code: str, match_code: str, osrs_rsn: str) -> dict[str, Any]:
        return {
            "verification_code": verification_code,
            "match_code": match_code,
            "osrs_rsn": osrs_rsn,
        }

    def get_match(self, verification_code: str, match_code: str, osrs_rsn: str) -> ApiResult:
        payload = self._base_payload(verification_code, match_code, osrs_rsn)
        return self._execute(GET_MATCH_PATH, payload, match_code, osrs_rsn)

    def accept_match(
        self,
        verification_code: str,
        match_code: str,
        osrs_rsn: str,
        authentication_token: str,
    ) -> ApiResult:
        payload = self._base_payload(verification_code, match_code, osrs_rsn)
        payload["authentication_token"] = authentication_token
        return self._execute(ACCEPT_MATCH_PATH, payload, match_code, osrs_rsn)

    def begin_match(
        self,
        verification_code: str,
        match_code: str,
        osrs_rsn: str,
        authentication_token: str,
    ) -> ApiResult:
        payload = self._base_payload(verification_code, match_code, osrs_rsn)
        payload["authentication_token"] = authentication_token
        return self._execute(BEGIN_MATCH_PATH, payload, match_code, osrs_rsn)

    def report_match(
        self,
        verification_code: str,
        match_code: str,
        osrs_rsn: str,
        authentication_token: str,
        death_rsn: str,
    ) -> ApiResult:
        """Report the match result; ``death_rsn`` is the losing player."""
        payload = self._base_payload(verification_code, match_code, osrs_rsn)
        payload["authentication_token"] = authentication_token
        payload["osrs_rsn_death"] = death_rsn
        return self._execute(REPORT_MATCH_PATH, payload, match_code, osrs_rsn)

    def report_items(
        self,
        verification_code: str,
        match_code: str,
        osrs_rsn: str,
        authentication_token: str,
        player_inventory: list[dict[str, int]],
        player_gear: list[dict[str, int]],
    ) -> ApiResult:
        """Report what the local player brought into the fight.

        Args:
            player_inventory: Output of build_item_payload for the inventory.
            player_gear: Output of build_item_payload for worn equipment.
        """
        payload = self._base_payload(verification_code, match_code, osrs_rsn)
        payload["authentication_token"] = authentication_token
        payload["player_inventory"] = player_inventory
        payload["player_gear"] = player_gear
        return self._execute(REPORT_ITEMS_PATH, payload, match_code, osrs_rsn)

    def _execute(
        self,
        path: str,
        payload: dict[str, Any],
        match_code: str,
        osrs_rsn: str,
    ) -> ApiResult:
        url = f"{self.api_url}{path}"
        logger.debug(f"POST {url} (match={match_code})")

        try:
            response = self.session.post(url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning(f"Matchmaking request to {path} failed: {e}")
            return ApiResult.failure(str(e))

        body = response.text or ""
        http_ok = 200 <= response.status_code < 300
        if not http_ok:
            logger.debug(f"Matchmaking request failed: {response.status_code} {body[:500]}")

        return build_result(body, http_ok, match_code, osrs_rsn)
