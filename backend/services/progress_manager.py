"""Progress manager for WebSocket-based scan progress updates."""

import asyncio
import concurrent.futures
import json
from typing import Any, Callable, Dict, List, Optional

from fastapi import WebSocket

from logging_config import get_api_logger
from services.blueprint.models import ScanMark

logger = get_api_logger()


def log_send_failure(future: concurrent.futures.Future) -> None:
    """Done-callback for scheduled sends; reports failures instead of dropping them."""
    if future.cancelled():
        logger.warning("progress send cancelled")
        return
    exc = future.exception()
    if exc is not None:
        logger.warning("progress send failed: %s", exc)


class ProgressManager:
    """Manages WebSocket connections and broadcasts progress updates."""

    def __init__(self):
        self.clients: List[WebSocket] = []

    def add_client(self, websocket: WebSocket):
        """Add a WebSocket client."""
        self.clients.append(websocket)

    def remove_client(self, websocket: WebSocket):
        """Remove a WebSocket client."""
        if websocket in self.clients:
            self.clients.remove(websocket)

    async def broadcast(self, message: Dict[str, Any]):
        """Broadcast a message to all connected clients."""
        disconnected = []

        for client in list(self.clients):
            try:
                await client.send_text(json.dumps(message))
            except Exception:
                disconnected.append(client)

        # Clean up disconnected clients
        for client in disconnected:
            self.remove_client(client)

    async def send_progress(self, step: str, percent: float, message: str):
        """Send a progress update to all clients."""
        await self.broadcast({
            "type": "progress",
            "step": step,
            "percent": percent,
            "message": message,
        })

    async def send_scan_mark(self, doc_id: str, mark: ScanMark, expected: int):
        """Send one serpentine scan mark with overall progress."""
        percent = round(100.0 * (mark.i + 1) / expected, 2) if expected else None
        await self.broadcast({
            "type": "scan",
            "step": doc_id,
            "mark": mark.to_dict(),
            "percent": percent,
        })

    async def send_complete(self, step: str, result: Any = None):
        """Send a completion message."""
        await self.broadcast({
            "type": "complete",
            "step": step,
            "result": result,
        })

    async def send_error(self, step: str, error: str):
        """Send an error message."""
        await self.broadcast({
            "type": "error",
            "step": step,
            "error": error,
        })

    def scan_tick_callback(
        self,
        loop: asyncio.AbstractEventLoop,
        doc_id: str,
        expected: int,
        every: int = 1,
    ) -> Optional[Callable[[ScanMark], None]]:
        """Thread-safe ``on_tick`` for scans running in an executor.

        Only every ``every``-th mark (and the last one) is broadcast. Returns
        None when nobody is listening.
        """
        if not self.clients:
            return None
        every = max(1, int(every))

        def on_tick(mark: ScanMark) -> None:
            if mark.i % every == 0 or mark.i + 1 == expected:
                future = asyncio.run_coroutine_threadsafe(self.send_scan_mark(doc_id, mark, expected), loop)
                future.add_done_callback(log_send_failure)

        return on_tick


# Global instance
_progress_manager: Optional[ProgressManager] = None


def get_progress_manager() -> ProgressManager:
    """Get the global progress manager instance."""
    global _progress_manager
    if _progress_manager is None:
        _progress_manager = ProgressManager()
    return _progress_manager
