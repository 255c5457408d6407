"""NetSuite item RESTlet client.

Two surfaces are used. The OPMS -> NetSuite item sync upserts item records
(ErpClient.push_item). The NetSuite -> OPMS pricing pull reads item records
back (ErpItemSource). HttpErpClient implements both over httpx with a
bearer token; tests drive the services with fakes.

Failure classification:
    - Timeouts, connection errors and 5xx responses raise TransientError
      (the dispatcher retries them with backoff).
    - 4xx responses and RESTlet bodies with success=false return an
      unsuccessful ErpPushResult (permanent).
"""

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from opms_sync.errors import SyncError, TransientError
from opms_sync.services.payloads import ItemPushFields

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_FETCH_LIMIT = 100


@dataclass
class ErpPushResult:
    """Outcome of one item push.

    Attributes:
        success: Whether NetSuite accepted the record.
        external_id: NetSuite internal id of the upserted record.
        error: Rejection message when success is False.
        response: Parsed response body, if any.
    """

    success: bool
    external_id: str | None = None
    error: str | None = None
    response: dict[str, Any] | None = None


class ErpClient(Protocol):
    """What the item sync needs from NetSuite."""

    def push_item(self, fields: ItemPushFields) -> ErpPushResult: ...


class ErpItemSource(Protocol):
    """What the pricing pull needs from NetSuite.

    Item records are dicts shaped like a webhook ``itemData`` object.
    """

    def fetch_updated_items(
        self, modified_since: str | None = None, limit: int = DEFAULT_FETCH_LIMIT
    ) -> list[dict[str, Any]]: ...

    def get_item(self, item_code: str) -> dict[str, Any] | None: ...


class HttpErpClient:
    """ErpClient and ErpItemSource over the NetSuite item RESTlet.

    Example usage:
        client = HttpErpClient(base_url="https://erp.example.com/restlet", token="...")
        result = client.push_item(fields)
        items = client.fetch_updated_items(modified_since="2026-10-01T00:00:00Z")
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: RESTlet URL items are posted to and read from.
            token: Bearer token sent in the Authorization header.
            timeout_seconds: Request timeout.
            transport: Optional httpx transport (tests use MockTransport).
        """
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.Client(
            base_url=base_url,
            headers=headers,
            timeout=timeout_seconds,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "HttpErpClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _send(self, method: str, **kwargs: Any) -> tuple[httpx.Response, dict[str, Any]]:
        """Send one RESTlet request and parse the body into a dict.

        Raises:
            TransientError: On timeout, connection failure or a 5xx response.
        """
        try:
            response = self._client.request(method, "", **kwargs)
        except httpx.TimeoutException as e:
            raise TransientError(f"NetSuite request timed out: {e}") from e
        except httpx.RequestError as e:
            raise TransientError(f"NetSuite request failed: {e}") from e

        if response.status_code >= 500:
            raise TransientError(
                f"NetSuite returned {response.status_code} {response.reason_phrase}"
            )

        try:
            body = response.json()
        except ValueError:
            body = {"raw": response.text}
        if not isinstance(body, dict):
            body = {"raw": body}
        return response, body

    def push_item(self, fields: ItemPushFields) -> ErpPushResult:
        """Upsert one item record in NetSuite.

        Args:
            fields: Mapped item fields.

        Returns:
            ErpPushResult. Unsuccessful for 4xx or a RESTlet-reported failure.

        Raises:
            TransientError: On timeout, connection failure or a 5xx response.
        """
        response, body = self._send("POST", json=fields.to_payload())

        if response.status_code >= 400:
            message = body.get("error") or f"{response.status_code} {response.reason_phrase}"
            logger.warning("NetSuite rejected item %s: %s", fields.itemId, message)
            return ErpPushResult(success=False, error=str(message), response=body)

        if body.get("success") is False:
            message = body.get("error") or "RESTlet reported failure"
            logger.warning("NetSuite rejected item %s: %s", fields.itemId, message)
            return ErpPushResult(success=False, error=str(message), response=body)

        external_id = body.get("id")
        return ErpPushResult(
            success=True,
            external_id=str(external_id) if external_id is not None else None,
            response=body,
        )

    def fetch_updated_items(
        self, modified_since: str | None = None, limit: int = DEFAULT_FETCH_LIMIT
    ) -> list[dict[str, Any]]:
        """Active inventory items, optionally only those modified after a time.

        Raises:
            TransientError: On timeout, connection failure or a 5xx response.
            SyncError: E-3002 when NetSuite rejects the search.
        """
        params: dict[str, Any] = {"limit": limit}
        if modified_since:
            params["modifiedSince"] = modified_since
        response, body = self._send("GET", params=params)
        if response.status_code >= 400 or body.get("success") is False:
            message = body.get("error") or f"{response.status_code} {response.reason_phrase}"
            raise SyncError.from_code("E-3002", message=str(message))
        items = body.get("items") or []
        return [item for item in items if isinstance(item, dict)]

    def get_item(self, item_code: str) -> dict[str, Any] | None:
        """One item record by itemid, or None when NetSuite has no such item.

        Raises:
            TransientError: On timeout, connection failure or a 5xx response.
            SyncError: E-3002 when NetSuite rejects the lookup.
        """
        response, body = self._send("GET", params={"itemid": item_code})
        if response.status_code == 404:
            return None
        if response.status_code >= 400 or body.get("success") is False:
            message = body.get("error") or f"{response.status_code} {response.reason_phrase}"
            raise SyncError.from_code("E-3002", message=str(message))
        item = body.get("item")
        return item if isinstance(item, dict) else None
