import logging
from typing import Any, Dict, List, Optional

import httpx

from mas_hedging.core.config import get_settings

logger = logging.getLogger(__name__)


class MetalsApiClient:
    """Lightweight client for a spot metals price API."""

    def __init__(self, timeout: Optional[float] = None, transport: Optional[httpx.BaseTransport] = None):
        self.settings = get_settings()
        self.base_url = self.settings.live_feed_url
        self.timeout = timeout or self.settings.live_feed_timeout_sec
        headers = {"Accept": "application/json"}
        if self.settings.live_feed_api_key:
            headers["Authorization"] = f"Bearer {self.settings.live_feed_api_key}"
        self._client = httpx.Client(timeout=self.timeout, headers=headers, transport=transport)

    def _get(self, params: Optional[Dict[str, Any]] = None) -> Any:
        resp = self._client.get(self.base_url, params=params)
        resp.raise_for_status()
        return resp.json()

    def spot_prices(self, metals: List[str]) -> Dict[str, Dict[str, Any]]:
        """Return ``{metal: {"price": ..., "volume": ...}}`` for the requested metals.

        The upstream answers with a list of ``{"symbol", "price", "volume"}``
        records; unknown symbols are ignored. Any other shape raises ValueError.
        """
        payload = self._get({"symbols": ",".join(metals)})
        if not isinstance(payload, list):
            raise ValueError(f"expected a list of quotes, got {type(payload).__name__}")
        wanted = {metal.lower() for metal in metals}
        result: Dict[str, Dict[str, Any]] = {}
        for item in payload:
            if not isinstance(item, dict):
                raise ValueError(f"expected a quote record, got {type(item).__name__}")
            symbol = str(item.get("symbol") or item.get("metal") or "").lower()
            if symbol not in wanted or item.get("price") is None:
                continue
            try:
                price = float(item["price"])
                volume = float(item["volume"]) if item.get("volume") is not None else None
            except (TypeError, ValueError) as exc:
                raise ValueError(f"malformed quote for {symbol}: {exc}") from exc
            result[symbol] = {"price": price, "volume": volume}
        return result

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "MetalsApiClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
