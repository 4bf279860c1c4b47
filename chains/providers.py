"""
chains/providers.py - RPC provider management with failover.

Provides reliable RPC access with:
- Multiple endpoint failover
- Request timeout handling
- Connection pooling
- Latency tracking

Contract reverts are returned to the caller immediately; trying the
next endpoint only helps with transport and node failures.
"""

import time
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from core.exceptions import InfraError, RPCError, RPCTimeoutError
from core.logging import get_logger

logger = get_logger(__name__)

_REVERT_MARKERS = ("execution reverted", "revert", "vm exception")


@dataclass
class RPCStats:
    """Statistics for an RPC endpoint."""
    url: str
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    total_latency_ms: int = 0
    last_error: str | None = None
    last_success_ts: int | None = None

    @property
    def avg_latency_ms(self) -> int:
        if self.successful_requests == 0:
            return 0
        return self.total_latency_ms // self.successful_requests

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.successful_requests / self.total_requests


@dataclass
class RPCResponse:
    """Response from an RPC call."""
    result: Any
    latency_ms: int
    endpoint_used: str


def _is_revert(error: dict) -> bool:
    message = str(error.get("message", "")).lower()
    return error.get("code") == 3 or any(m in message for m in _REVERT_MARKERS)


class RPCProvider:
    """
    JSON-RPC provider with failover support.

    Tries endpoints in order until one succeeds. Tracks statistics per
    endpoint for monitoring.
    """

    def __init__(
        self,
        chain_id: int,
        rpc_urls: list[str],
        timeout_seconds: int = 10,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.chain_id = chain_id
        self.timeout_seconds = timeout_seconds
        self.rpc_urls = [url for url in rpc_urls if url]
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._request_id = 0

        self.stats: dict[str, RPCStats] = {
            url: RPCStats(url=url) for url in self.rpc_urls
        }

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_seconds),
                limits=httpx.Limits(max_connections=20),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _next_request_id(self) -> int:
        self._request_id += 1
        return self._request_id

    async def call(self, method: str, params: list | None = None) -> RPCResponse:
        """
        Make an RPC call with failover.

        Raises:
            RPCError: The node reported a contract revert (no failover)
            InfraError: All endpoints failed
        """
        if not self.rpc_urls:
            raise InfraError(
                "No RPC endpoints configured",
                details={"chain_id": self.chain_id},
            )

        client = await self._get_client()
        last_error: Exception | None = None

        for url in self.rpc_urls:
            stats = self.stats[url]
            stats.total_requests += 1

            payload = {
                "jsonrpc": "2.0",
                "method": method,
                "params": params or [],
                "id": self._next_request_id(),
            }

            start_ms = int(time.time() * 1000)

            try:
                resp = await client.post(url, json=payload)
                latency_ms = int(time.time() * 1000) - start_ms
                resp.raise_for_status()
                body = resp.json()
            except httpx.TimeoutException:
                latency_ms = int(time.time() * 1000) - start_ms
                stats.failed_requests += 1
                stats.last_error = f"Timeout after {latency_ms}ms"
                last_error = RPCTimeoutError(
                    f"{method} timed out after {latency_ms}ms",
                    details={"url": url, "method": method},
                )
                logger.debug(f"RPC timeout for {url}: {latency_ms}ms")
                continue
            except (httpx.HTTPError, ValueError) as e:
                stats.failed_requests += 1
                stats.last_error = str(e)
                last_error = e
                logger.debug(f"RPC failed for {url}: {e}")
                continue

            error = body.get("error") if isinstance(body, dict) else None
            if error:
                error_msg = error.get("message", str(error)) if isinstance(error, dict) else str(error)
                if isinstance(error, dict) and _is_revert(error):
                    # The endpoint worked; the contract said no.
                    stats.successful_requests += 1
                    stats.total_latency_ms += latency_ms
                    raise RPCError(
                        f"{method} reverted: {error_msg}",
                        details={
                            "url": url,
                            "method": method,
                            "reverted": True,
                            "data": error.get("data"),
                        },
                    )
                stats.failed_requests += 1
                stats.last_error = error_msg
                last_error = RPCError(
                    f"RPC error: {error_msg}",
                    details={"url": url, "method": method},
                )
                logger.debug(f"RPC error from {url}: {error_msg}")
                continue

            stats.successful_requests += 1
            stats.total_latency_ms += latency_ms
            stats.last_success_ts = int(time.time() * 1000)

            return RPCResponse(
                result=body.get("result"),
                latency_ms=latency_ms,
                endpoint_used=url,
            )

        raise InfraError(
            f"All RPC endpoints failed for chain {self.chain_id}",
            details={
                "chain_id": self.chain_id,
                "method": method,
                "endpoints_tried": len(self.rpc_urls),
                "last_error": str(last_error),
            },
        )

    # =========================================================================
    # READS
    # =========================================================================

    async def get_chain_id(self) -> int:
        """Get chain ID from RPC."""
        response = await self.call("eth_chainId")
        return int(response.result, 16)

    async def get_block_number(self) -> tuple[int, int]:
        """
        Get latest block number.

        Returns:
            (block_number, latency_ms)
        """
        response = await self.call("eth_blockNumber")
        return int(response.result, 16), response.latency_ms

    async def get_gas_price(self) -> int:
        """Get current gas price in wei."""
        response = await self.call("eth_gasPrice")
        return int(response.result, 16)

    async def get_balance(self, address: str, block: str = "latest") -> int:
        """Native balance in wei."""
        response = await self.call("eth_getBalance", [address, block])
        return int(response.result, 16)

    async def get_code(self, address: str, block: str = "latest") -> str:
        """Deployed bytecode ("0x" when nothing is deployed)."""
        response = await self.call("eth_getCode", [address, block])
        return response.result or "0x"

    async def eth_call(self, to: str, data: str, block: str = "latest") -> RPCResponse:
        """
        Make eth_call.

        Args:
            to: Contract address
            data: Encoded call data (0x-prefixed hex)
            block: Block number or "latest"
        """
        return await self.call("eth_call", [{"to": to, "data": data}, block])

    async def estimate_gas(self, tx: dict) -> int:
        """Gas units the node expects tx to consume."""
        response = await self.call("eth_estimateGas", [tx])
        return int(response.result, 16)

    # =========================================================================
    # WRITES
    # =========================================================================

    async def send_transaction(self, tx: dict) -> str:
        """
        Submit a transaction signed by a node-managed account.

        Returns:
            Transaction hash
        """
        response = await self.call("eth_sendTransaction", [tx])
        return response.result

    async def get_transaction_receipt(self, tx_hash: str) -> dict | None:
        """Receipt dict, or None while the transaction is pending."""
        response = await self.call("eth_getTransactionReceipt", [tx_hash])
        return response.result

    def get_stats_summary(self) -> dict:
        """Get statistics summary for all endpoints."""
        return {
            url: {
                "total_requests": s.total_requests,
                "success_rate": round(s.success_rate, 3),
                "avg_latency_ms": s.avg_latency_ms,
                "last_error": s.last_error,
            }
            for url, s in self.stats.items()
        }


def build_provider(chain_config: dict, transport: Optional[httpx.AsyncBaseTransport] = None) -> RPCProvider:
    """Create a provider from a chains.yaml entry."""
    return RPCProvider(
        chain_id=int(chain_config["chain_id"]),
        rpc_urls=list(chain_config.get("rpc_urls") or []),
        timeout_seconds=int(chain_config.get("rpc_timeout_seconds", 10)),
        transport=transport,
    )
