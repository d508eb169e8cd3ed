# dexarb/rpc.py
import asyncio
import base64
import binascii
import itertools
import logging
from decimal import Decimal
from typing import Any, List, Optional, Type

import aiohttp

from .errors import ArbError

LAMPORTS_PER_SOL = Decimal(10) ** 9


class SolanaRpc:
    """
    Thin JSON-RPC client over a shared aiohttp session.
    Also runs the startup diagnostic and owns the session lifecycle.
    """
    def __init__(self, rpc_url: str, logger: logging.Logger, timeout: float = 5.0,
                 session: Optional[aiohttp.ClientSession] = None):
        self.rpc_url = rpc_url
        self.logger = logger
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None
        self._ids = itertools.count(1)

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def call(self, method: str, params: Optional[list] = None,
                   error_cls: Type[ArbError] = ArbError) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params or []}
        try:
            async with self.session.post(self.rpc_url, json=payload, timeout=self.timeout) as resp:
                resp.raise_for_status()
                body = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise error_cls(f"RPC {method} failed: {e}") from e
        if body.get("error"):
            raise error_cls(f"RPC {method} error: {body['error'].get('message', body['error'])}")
        return body.get("result")

    async def initialize(self) -> bool:
        self.logger.info("TESTING RPC CONNECTION...")
        try:
            status = await self.call("getHealth")
        except ArbError as e:
            self.logger.critical(f"   RPC UNREACHABLE: {e}")
            return False
        if status != "ok":
            self.logger.error(f"   RPC UNHEALTHY: {status}")
            return False
        self.logger.info(f"   RPC {self.rpc_url} | Health: OK")
        return True

    async def get_balance(self, owner: str, error_cls: Type[ArbError] = ArbError) -> Decimal:
        result = await self.call("getBalance", [owner, {"commitment": "confirmed"}], error_cls)
        return Decimal(result["value"]) / LAMPORTS_PER_SOL

    async def get_token_balance(self, owner: str, mint: str, error_cls: Type[ArbError] = ArbError) -> Decimal:
        """Sum over every token account the owner holds for `mint`; zero when none exist."""
        result = await self.call(
            "getTokenAccountsByOwner",
            [owner, {"mint": mint}, {"encoding": "jsonParsed", "commitment": "confirmed"}],
            error_cls,
        )
        total = Decimal(0)
        for acc in result.get("value", []):
            amount = acc["account"]["data"]["parsed"]["info"]["tokenAmount"]
            total += Decimal(amount.get("uiAmountString") or "0")
        return total

    async def get_account_data(self, address: str, error_cls: Type[ArbError] = ArbError) -> bytes:
        result = await self.call("getAccountInfo", [address, {"encoding": "base64", "commitment": "confirmed"}], error_cls)
        value = (result or {}).get("value")
        if not value:
            raise error_cls(f"Account {address} not found")
        try:
            return base64.b64decode(value["data"][0])
        except (KeyError, IndexError, TypeError, binascii.Error) as e:
            raise error_cls(f"Account {address} has unreadable data: {e}") from e

    async def get_recent_prioritization_fees(self, error_cls: Type[ArbError] = ArbError) -> List[int]:
        result = await self.call("getRecentPrioritizationFees", [], error_cls)
        return [int(r.get("prioritizationFee", 0)) for r in result or []]

    async def shutdown(self):
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None
