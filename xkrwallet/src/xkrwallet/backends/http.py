"""
HTTP/JSON daemon backend.

Talks to the daemon's REST interface (the `/info`, `/fee`, `/sync`,
`/indexes`, `/transaction/status` and `/sendrawtransaction` endpoints).
"""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger
from pydantic import ValidationError

from xkrcore.models import (
    GlobalIndexes,
    NodeFee,
    NodeInfo,
    RandomOutputs,
    SendTransactionResult,
    WalletSyncData,
    WalletSyncResponse,
)
from xkrwallet.backends.base import DaemonBackend
from xkrwallet.errors import DaemonRequestError


class HttpDaemonBackend(DaemonBackend):
    """
    Daemon backend over HTTP.

    Every request goes through _api_call, so callers only ever see
    DaemonRequestError, never an httpx or pydantic exception.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 11898,
        ssl: bool = False,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize HTTP daemon backend.

        Args:
            host: Daemon hostname or IP
            port: Daemon REST port
            ssl: Use https instead of http
            timeout: Per-request timeout in seconds
            client: Pre-built client, mainly for tests
        """
        scheme = "https" if ssl else "http"
        self.daemon_url = f"{scheme}://{host}:{port}"
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def _api_call(
        self,
        method: str,
        endpoint: str,
        data: Any = None,
    ) -> Any:
        """Make an API call to the daemon."""
        if method not in ("GET", "POST"):
            raise ValueError(f"Unsupported HTTP method: {method}")

        url = f"{self.daemon_url}/{endpoint}"

        try:
            if method == "GET":
                response = await self.client.get(url)
            else:
                response = await self.client.post(url, json=data)

            response.raise_for_status()
            return response.json()

        except httpx.HTTPError as e:
            logger.error(f"Daemon API call failed: {endpoint} - {e}")
            raise DaemonRequestError(endpoint, str(e)) from e
        except ValueError as e:
            logger.error(f"Daemon returned invalid JSON: {endpoint} - {e}")
            raise DaemonRequestError(endpoint, f"invalid JSON: {e}") from e

    @staticmethod
    def _parse(endpoint: str, model: Any, payload: Any) -> Any:
        try:
            return model.model_validate(payload)
        except ValidationError as e:
            logger.error(f"Unexpected response from {endpoint}: {e}")
            raise DaemonRequestError(endpoint, f"unexpected response: {e}") from e

    async def get_info(self) -> NodeInfo:
        result = await self._api_call("GET", "info")
        return self._parse("info", NodeInfo, result)

    async def get_fee(self) -> NodeFee:
        result = await self._api_call("GET", "fee")
        return self._parse("fee", NodeFee, result)

    async def get_wallet_sync_data(self, request: WalletSyncData) -> WalletSyncResponse:
        result = await self._api_call("POST", "sync", data=request.model_dump(by_alias=True))
        response = self._parse("sync", WalletSyncResponse, result)
        logger.debug(
            f"Fetched {len(response.items)} blocks "
            f"(synced={response.synced}, checkpoints={len(request.block_hash_checkpoints)})"
        )
        return response

    async def get_global_indexes_for_range(
        self, start_height: int, end_height: int
    ) -> list[GlobalIndexes]:
        endpoint = f"indexes/{start_height}/{end_height}"
        result = await self._api_call("GET", endpoint)
        if not isinstance(result, list):
            raise DaemonRequestError(endpoint, "expected a list of indexes")
        return [self._parse(endpoint, GlobalIndexes, item) for item in result]

    async def get_transaction_status(self, transaction_hashes: list[str]) -> list[str]:
        result = await self._api_call("POST", "transaction/status", data=transaction_hashes)
        if not isinstance(result, dict):
            raise DaemonRequestError("transaction/status", "expected an object")
        return list(result.get("notFound") or [])

    async def get_random_outputs(self, amounts: list[int], count: int) -> list[RandomOutputs]:
        result = await self._api_call(
            "POST", "indexes/random", data={"amounts": amounts, "count": count}
        )
        if not isinstance(result, list):
            raise DaemonRequestError("indexes/random", "expected a list of outputs")
        return [self._parse("indexes/random", RandomOutputs, item) for item in result]

    async def send_raw_transaction(self, raw_transaction: str) -> SendTransactionResult:
        result = await self._api_call(
            "POST", "sendrawtransaction", data={"tx_as_hex": raw_transaction}
        )
        send_result = self._parse("sendrawtransaction", SendTransactionResult, result)
        if send_result.success:
            logger.info("Transaction relayed to daemon")
        else:
            logger.warning(f"Daemon rejected transaction: {send_result.error}")
        return send_result

    async def is_reachable(self) -> bool:
        try:
            response = await self.client.get(f"{self.daemon_url}/info")
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.debug(f"Daemon unreachable: {e}")
            return False

    async def close(self) -> None:
        await self.client.aclose()
