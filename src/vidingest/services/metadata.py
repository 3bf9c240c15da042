"""Video metadata store updates over a PostgREST-compatible HTTP API."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class MetadataStoreClient:
    """Opportunistic updates of video records.

    Every failure is logged and reported as ``False``; callers never fail an
    upload because of it.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        table: str = "videos",
        timeout: float = 5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.table = table
        self.timeout = timeout
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Prefer": "return=minimal"}
        if self.api_key:
            headers["apikey"] = self.api_key
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def update_record(self, record_id: str, fields: Dict[str, Any]) -> bool:
        """PATCH ``fields`` onto the row whose id is ``record_id``.

        Returns:
            True if the store acknowledged the update
        """
        if not self.enabled:
            logger.info("Metadata store not configured, skipping update", extra={"record_id": record_id})
            return False

        payload = {**fields, "updated_at": datetime.now(timezone.utc).isoformat()}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.patch(
                    f"{self.base_url}/rest/v1/{self.table}",
                    params={"id": f"eq.{record_id}"},
                    headers=self._headers(),
                    json=payload,
                )
                response.raise_for_status()

            logger.info("Metadata record updated", extra={"record_id": record_id, "fields": sorted(fields)})
            return True

        except httpx.TimeoutException:
            logger.warning(
                "Metadata update timeout (non-critical)",
                extra={"record_id": record_id, "timeout": self.timeout},
            )
            return False

        except httpx.HTTPError as e:
            logger.warning(
                "Metadata update failed (non-critical)",
                extra={
                    "record_id": record_id,
                    "error": str(e),
                    "status_code": getattr(getattr(e, "response", None), "status_code", None),
                },
            )
            return False
