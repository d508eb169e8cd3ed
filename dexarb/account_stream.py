# dexarb/account_stream.py
import asyncio
import json
import logging
from typing import Callable, List, Optional, Sequence

import aiohttp

from .models import Venue


class PoolStream:
    """accountSubscribe on one pool account; every notification is a 'something changed' ping."""
    def __init__(self, venue: Venue, callback: Callable[[str], None], commitment: str = "processed"):
        self.venue = venue
        self.callback = callback
        self.commitment = commitment
        self.ws = None
        self.subscription_id: Optional[int] = None

    def subscribe_message(self) -> dict:
        return {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "accountSubscribe",
            "params": [self.venue.pool_address, {"encoding": "base64", "commitment": self.commitment}],
        }

    def handle_message(self, data):
        if not isinstance(data, dict):
            return
        if data.get("id") == 1 and "result" in data:
            self.subscription_id = data["result"]
        elif data.get("method") == "accountNotification":
            self.callback(self.venue.id)

    async def connect(self, session: aiohttp.ClientSession, ws_url: str):
        async with session.ws_connect(ws_url, heartbeat=30) as ws:
            self.ws = ws
            await ws.send_json(self.subscribe_message())
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self.handle_message(json.loads(msg.data))
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    break


class AccountChangeStream:
    def __init__(self, ws_url: str, venues: Sequence[Venue], on_change: Callable[[str], None],
                 logger: logging.Logger):
        self.ws_url = ws_url
        self.streams: List[PoolStream] = [PoolStream(v, on_change) for v in venues]
        self.logger = logger
        self.running = False
        self._session: Optional[aiohttp.ClientSession] = None
        self.tasks: List[asyncio.Task] = []

    async def start(self):
        self.running = True
        self._session = aiohttp.ClientSession()
        self.logger.info(f"CONNECTING {len(self.streams)} POOL STREAMS...")
        self.tasks = [asyncio.create_task(self._run_stream_forever(s)) for s in self.streams]

    async def _run_stream_forever(self, stream: PoolStream):
        while self.running:
            try:
                await stream.connect(self._session, self.ws_url)
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                self.logger.error(f"WS Error ({stream.venue.label}): {e}")
            if self.running:
                await asyncio.sleep(2)

    async def shutdown(self):
        self.running = False
        for t in self.tasks:
            t.cancel()
        await asyncio.gather(*self.tasks, return_exceptions=True)
        if self._session:
            await self._session.close()
