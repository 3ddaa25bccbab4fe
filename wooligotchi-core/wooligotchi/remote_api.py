"""
HTTP clients for the remote lives and reward (WOOL) authorities.

Both authorities are plain JSON endpoints; every call opens a short-lived
``aiohttp`` session with a bounded timeout.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from .local_store import normalise_owner
from .signed_request import CollectionRequest

logger = logging.getLogger(__name__)

DEFAULT_WOOL_API_BASE = "https://wooligotchi-wool-api.wooligotchi.workers.dev"
DEFAULT_TIMEOUT_SECONDS = 20.0


class RewardApiError(Exception):
    """Transport or HTTP-level failure talking to the reward authority."""


def _coerce_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class CollectResponse:
    accepted: bool
    day_count: Optional[int] = None
    total: Optional[int] = None
    capped: bool = False
    day_key: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_payload(cls, data: Any) -> "CollectResponse":
        if not isinstance(data, dict):
            # An empty 2xx body counts as an acceptance without counters.
            return cls(accepted=True)
        if "accepted" in data:
            accepted = bool(data.get("accepted"))
        else:
            accepted = bool(data.get("ok", True))
        day_key = data.get("dayKey") or data.get("ymd")
        return cls(
            accepted=accepted,
            day_count=_coerce_int(data.get("dayCount")),
            total=_coerce_int(data.get("total")),
            capped=data.get("capped") is True,
            day_key=str(day_key) if day_key else None,
            error=str(data["error"]) if data.get("error") else None,
        )


@dataclass(frozen=True)
class RemoteLedgerView:
    total: Optional[int]
    day_key: Optional[str]
    day_count: Optional[int]


async def _request_json(
    method: str,
    url: str,
    *,
    timeout: float,
    params: Optional[Dict[str, Any]] = None,
    body: Optional[Dict[str, Any]] = None,
) -> Tuple[int, Any, str]:
    client_timeout = aiohttp.ClientTimeout(total=timeout)
    async with aiohttp.ClientSession(timeout=client_timeout) as session:
        async with session.request(method, url, params=params, json=body) as resp:
            text = await resp.text()
            payload: Any = None
            if text:
                try:
                    payload = json.loads(text)
                except ValueError:
                    payload = None
            return resp.status, payload, text


class RewardAuthorityClient:
    """Signed write / bootstrap read endpoints of the WOOL authority."""

    def __init__(
        self,
        base_url: str = DEFAULT_WOOL_API_BASE,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        logger_: Optional[logging.Logger] = None,
    ) -> None:
        self.base_url = (base_url or DEFAULT_WOOL_API_BASE).rstrip("/")
        self._timeout = float(timeout)
        self._logger = logger_ or logger

    async def collect(self, request: CollectionRequest) -> CollectResponse:
        """POST a signed collection attempt; raises ``RewardApiError`` on failure."""
        url = f"{self.base_url}/collect"
        self._logger.info(
            "[WOOL] → POST %s request=%s day=%s",
            url,
            request.request_id,
            request.day_key,
        )
        try:
            status, payload, text = await _request_json(
                "POST", url, timeout=self._timeout, body=request.to_payload()
            )
        except Exception as exc:
            raise RewardApiError(f"collect transport error: {exc}") from exc
        self._logger.info("[WOOL] ← %s %s", status, payload if payload is not None else text)
        if status >= 400:
            detail = payload.get("error") if isinstance(payload, dict) else None
            raise RewardApiError(detail or f"collect failed: {status} {text}")
        return CollectResponse.from_payload(payload)

    async def fetch_ledger(self, owner: str, network_id: int) -> Optional[RemoteLedgerView]:
        """Read the authority's view of an owner's ledger; ``None`` on failure."""
        url = f"{self.base_url}/ledger"
        params = {"address": normalise_owner(owner), "chainId": str(int(network_id))}
        try:
            status, payload, text = await _request_json(
                "GET", url, timeout=self._timeout, params=params
            )
        except Exception as exc:
            self._logger.warning("[WOOL] ledger read failed: %s", exc)
            return None
        if status >= 400 or not isinstance(payload, dict):
            self._logger.warning("[WOOL] ledger read rejected: %s %s", status, text)
            return None
        day_key = payload.get("dayKey") or payload.get("ymd")
        return RemoteLedgerView(
            total=_coerce_int(payload.get("total")),
            day_key=str(day_key) if day_key else None,
            day_count=_coerce_int(payload.get("dayCount")),
        )

    async def leaderboard(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Return ``[{address, total}, ...]`` rows; raises on failure."""
        url = f"{self.base_url}/leaderboard"
        try:
            status, payload, text = await _request_json(
                "GET", url, timeout=self._timeout, params={"limit": str(int(limit))}
            )
        except Exception as exc:
            raise RewardApiError(f"leaderboard transport error: {exc}") from exc
        if status >= 400:
            raise RewardApiError(f"leaderboard failed: {status} {text}")
        rows = payload.get("rows") if isinstance(payload, dict) else None
        result: List[Dict[str, Any]] = []
        for row in rows or []:
            if not isinstance(row, dict):
                continue
            total = _coerce_int(row.get("total"))
            if not row.get("address") or total is None:
                continue
            result.append({"address": str(row["address"]), "total": total})
        return result


class LivesAuthorityClient:
    """Read endpoint reporting the lives granted to ``(network, owner)``."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        logger_: Optional[logging.Logger] = None,
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self._timeout = float(timeout)
        self._logger = logger_ or logger

    @property
    def is_enabled(self) -> bool:
        return bool(self.base_url)

    async def fetch_lives(self, network_id: int, owner: str) -> Optional[int]:
        """Return the authoritative life count, or ``None`` when unreachable."""
        if not self.is_enabled:
            return None
        url = f"{self.base_url}/lives"
        params = {"chainId": str(int(network_id)), "address": normalise_owner(owner)}
        try:
            status, payload, text = await _request_json(
                "GET", url, timeout=self._timeout, params=params
            )
        except Exception as exc:
            self._logger.warning("Lives poll failed for %s: %s", params["address"], exc)
            return None
        if status >= 400:
            self._logger.warning("Lives poll rejected: %s %s", status, text)
            return None
        if isinstance(payload, dict):
            value = _coerce_int(payload.get("lives"))
        else:
            value = _coerce_int(payload)
        if value is None or value < 0:
            self._logger.warning("Lives poll returned malformed payload: %s", text)
            return None
        return value
