"""EVM JSON-RPC chain reader over httpx."""

import itertools
import logging
from typing import Any, Optional

import httpx

from stablewallet.chain.base import ChainReader, LogEntry, Receipt
from stablewallet.errors import ConfigurationError, RpcError

logger = logging.getLogger(__name__)


def _to_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    return int(value, 16)


def parse_log(raw: dict) -> LogEntry:
    """Convert a JSON-RPC log object to a LogEntry."""
    return LogEntry(
        address=raw["address"].lower(),
        topics=[t.lower() for t in raw.get("topics", [])],
        data=raw.get("data") or "0x",
        block_number=_to_int(raw["blockNumber"]),
        tx_hash=raw["transactionHash"].lower(),
        log_index=_to_int(raw.get("logIndex", 0)),
    )


def parse_receipt(raw: dict) -> Receipt:
    """Convert a JSON-RPC receipt object to a Receipt."""
    return Receipt(
        tx_hash=raw["transactionHash"].lower(),
        block_number=_to_int(raw["blockNumber"]),
        status=_to_int(raw.get("status", "0x0")),
        from_address=(raw.get("from") or "").lower() or None,
        to_address=(raw.get("to") or "").lower() or None,
        logs=[parse_log(log) for log in raw.get("logs", [])],
    )


class JsonRpcChain(ChainReader):
    """Chain reader talking to an EVM node.

    Every call is bounded by ``timeout``; transport failures, HTTP errors and
    JSON-RPC error objects all surface as RpcError.
    """

    def __init__(
        self,
        rpc_url: Optional[str],
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the reader.

        Args:
            rpc_url: JSON-RPC endpoint
            timeout: Per-call timeout in seconds
            transport: Optional httpx transport (tests)

        Raises:
            ConfigurationError: If rpc_url is not set
        """
        if not rpc_url:
            raise ConfigurationError("RPC_URL is not configured")
        self.rpc_url = rpc_url
        self.timeout = timeout
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._ids = itertools.count(1)

    async def _call(self, method: str, params: list) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": next(self._ids),
        }
        try:
            resp = await self._client.post(self.rpc_url, json=payload)
            resp.raise_for_status()
            body = resp.json()
        except httpx.TimeoutException as e:
            raise RpcError(f"{method} timed out after {self.timeout}s: {e}")
        except httpx.HTTPError as e:
            raise RpcError(f"{method} failed: {e}")
        except ValueError as e:
            raise RpcError(f"{method} returned invalid JSON: {e}")

        if not isinstance(body, dict):
            raise RpcError(f"{method} returned unexpected payload")
        if body.get("error"):
            error = body["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise RpcError(f"{method} error: {message}")
        if "result" not in body:
            raise RpcError(f"{method} returned no result")
        return body["result"]

    async def get_block_number(self) -> int:
        return _to_int(await self._call("eth_blockNumber", []))

    async def get_chain_id(self) -> int:
        return _to_int(await self._call("eth_chainId", []))

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Receipt]:
        raw = await self._call("eth_getTransactionReceipt", [tx_hash])
        if raw is None:
            return None
        return parse_receipt(raw)

    async def get_logs(
        self,
        address: str,
        topics: list[Optional[str]],
        from_block: int,
        to_block: int,
    ) -> list[LogEntry]:
        params = {
            "address": address,
            "topics": topics,
            "fromBlock": hex(from_block),
            "toBlock": hex(to_block),
        }
        raw_logs = await self._call("eth_getLogs", [params])
        logs = [parse_log(raw) for raw in raw_logs or [] if not raw.get("removed")]
        logger.debug(f"eth_getLogs {address[:10]}... [{from_block}, {to_block}] -> {len(logs)} logs")
        return logs

    async def close(self) -> None:
        await self._client.aclose()


def get_chain_reader() -> JsonRpcChain:
    """Create a reader from settings.

    Raises:
        ConfigurationError: If RPC_URL is not set
    """
    from stablewallet.config import get_settings

    settings = get_settings()
    return JsonRpcChain(settings.rpc_url, timeout=settings.rpc_timeout_seconds)
