"""
Multi-endpoint JSON-RPC client for Solana
HTTP calls with priority-ordered failover and per-endpoint failure tracking
"""

import asyncio
import base64
import time
import aiohttp
from typing import Dict, List, Optional, Any, Tuple
from dataclasses import dataclass

from solders.hash import Hash

from pumpswap_trader.core.config import RPCEndpoint, RPCConfig
from pumpswap_trader.core.errors import TraderError
from pumpswap_trader.core.logger import get_logger
from pumpswap_trader.core.metrics import get_metrics, LatencyTimer


logger = get_logger(__name__)
metrics = get_metrics()


class RPCError(TraderError):
    """JSON-RPC call failed on every endpoint"""


@dataclass
class EndpointState:
    """Failure bookkeeping for one endpoint"""
    endpoint: RPCEndpoint
    consecutive_failures: int = 0
    total_requests: int = 0
    total_errors: int = 0
    last_successful_call: Optional[float] = None


class RPCManager:
    """
    Calls Solana JSON-RPC over HTTP with automatic failover

    Endpoints are tried in priority order. An endpoint whose consecutive
    failures reach the failover threshold is moved behind healthy ones
    until it answers again.

    Usage:
        rpc = RPCManager(bot_config.rpc_config)
        await rpc.start()
        lamports = await rpc.get_balance(str(wallet.pubkey))
        await rpc.stop()
    """

    def __init__(self, config: RPCConfig):
        """
        Initialize RPC manager

        Args:
            config: RPC configuration
        """
        self.config = config
        self.endpoints: Dict[str, EndpointState] = {
            ep.label: EndpointState(endpoint=ep) for ep in config.endpoints
        }
        self._http_session: Optional[aiohttp.ClientSession] = None

        logger.info(
            "rpc_manager_initialized",
            endpoint_count=len(self.endpoints),
            endpoints=[ep.label for ep in config.endpoints]
        )

    async def start(self) -> None:
        """Open the shared HTTP session"""
        if self._http_session is not None:
            logger.warning("rpc_manager_already_running")
            return

        self._http_session = aiohttp.ClientSession()
        logger.info("rpc_manager_started")

    async def stop(self) -> None:
        """Close the shared HTTP session"""
        if self._http_session is None:
            return

        await self._http_session.close()
        self._http_session = None
        logger.info("rpc_manager_stopped")

    def _ordered_endpoints(self) -> List[EndpointState]:
        threshold = self.config.failover_threshold_errors
        return sorted(
            self.endpoints.values(),
            key=lambda s: (s.consecutive_failures >= threshold, s.endpoint.priority)
        )

    async def call_http_rpc(
        self,
        method: str,
        params: List[Any],
        timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        """
        Make an HTTP RPC call with automatic failover

        Args:
            method: JSON-RPC method name
            params: Method parameters
            timeout: Request timeout in seconds (defaults to the endpoint's)

        Returns:
            RPC response dict

        Raises:
            RPCError: If all endpoints fail
        """
        if not self._http_session:
            raise RPCError("HTTP session not initialized. Call start() first.")

        last_error = None

        for state in self._ordered_endpoints():
            endpoint = state.endpoint
            state.total_requests += 1
            request_timeout = timeout if timeout is not None else endpoint.timeout_ms / 1000

            try:
                with LatencyTimer(metrics, "http_rpc_call", {"endpoint": endpoint.label, "method": method}):
                    payload = {
                        "jsonrpc": "2.0",
                        "id": int(time.time() * 1000000),
                        "method": method,
                        "params": params
                    }

                    async def _make_request():
                        async with self._http_session.post(endpoint.url, json=payload) as response:
                            return await response.json()

                    result = await asyncio.wait_for(_make_request(), timeout=request_timeout)

                    if "error" in result:
                        error_msg = result["error"].get("message", str(result["error"]))
                        raise RPCError(f"RPC error: {error_msg}")

                state.consecutive_failures = 0
                state.last_successful_call = time.time()
                return result

            except Exception as e:
                logger.warning(
                    "http_rpc_call_failed",
                    endpoint=endpoint.label,
                    method=method,
                    error=str(e)
                )
                state.consecutive_failures += 1
                state.total_errors += 1
                metrics.increment_counter("http_rpc_errors", labels={"endpoint": endpoint.label})
                last_error = e

                if state.consecutive_failures == self.config.failover_threshold_errors:
                    logger.error(
                        "http_rpc_endpoint_failing_over",
                        endpoint=endpoint.label,
                        failures=state.consecutive_failures
                    )

        raise RPCError(f"All HTTP RPC endpoints failed. Last error: {last_error}")

    # ------------------------------------------------------------------
    # Typed helpers
    # ------------------------------------------------------------------

    async def get_balance(self, address: str) -> int:
        """Native balance in lamports"""
        response = await self.call_http_rpc(
            "getBalance", [address, {"commitment": self.config.commitment}]
        )
        return int(response["result"]["value"])

    async def get_account_data(self, address: str, commitment: Optional[str] = None) -> Optional[bytes]:
        """Raw account data, or None if the account does not exist"""
        response = await self.call_http_rpc(
            "getAccountInfo",
            [address, {"encoding": "base64", "commitment": commitment or self.config.commitment}]
        )
        value = response.get("result", {}).get("value")
        if not value:
            return None
        return base64.b64decode(value["data"][0])

    async def get_token_account_balance(self, address: str, commitment: Optional[str] = None) -> Optional[int]:
        """
        Raw token amount held by a token account

        Returns:
            Amount in base units, or None if the account is not found
        """
        try:
            response = await self.call_http_rpc(
                "getTokenAccountBalance",
                [address, {"commitment": commitment or self.config.commitment}]
            )
        except RPCError as e:
            if "could not find account" in str(e).lower():
                return None
            raise
        value = response.get("result", {}).get("value")
        if value is None:
            return None
        return int(value["amount"])

    async def get_token_supply(self, mint: str) -> Tuple[int, int]:
        """(raw supply, decimals) of a mint"""
        response = await self.call_http_rpc("getTokenSupply", [mint])
        value = response["result"]["value"]
        return int(value["amount"]), int(value["decimals"])

    async def get_latest_blockhash(self) -> Hash:
        response = await self.call_http_rpc(
            "getLatestBlockhash", [{"commitment": self.config.commitment}]
        )
        return Hash.from_string(response["result"]["value"]["blockhash"])

    def get_health_stats(self) -> Dict[str, Dict[str, Any]]:
        """Per-endpoint failure counters"""
        return {
            label: {
                "priority": state.endpoint.priority,
                "is_healthy": state.consecutive_failures < self.config.failover_threshold_errors,
                "consecutive_failures": state.consecutive_failures,
                "total_requests": state.total_requests,
                "total_errors": state.total_errors,
                "last_successful_call": state.last_successful_call
            }
            for label, state in self.endpoints.items()
        }
