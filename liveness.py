import asyncio
from typing import Optional

from constants import HEARTBEAT_INTERVAL_SECONDS, WS_CLOSE_TIMEOUT_CODE
from logging_config import get_logger
from registry import ConnectionRegistry
from sessions import SessionTable

logger = get_logger(__name__)

TIMEOUT_REASON = "Connection timed out."


class LivenessMonitor:
    """Periodic dead-peer sweep.

    Each tick drops connections left unacknowledged since the previous tick,
    then clears the flag on the rest and probes them; a probe the transport
    acknowledges sets the flag again. A dead peer is torn down between one
    and two intervals after it stops acknowledging.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        sessions: SessionTable,
        interval: float = HEARTBEAT_INTERVAL_SECONDS,
    ):
        self.registry = registry
        self.sessions = sessions
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> int:
        """Run one sweep; returns how many connections were dropped."""
        dropped = 0
        probing = []
        for connection in self.registry.snapshot():
            if not connection.alive:
                logger.info(f"Connection {connection.id} missed its liveness probe, terminating")
                self.registry.unregister(connection)
                await self.sessions.detach(connection, TIMEOUT_REASON)
                await connection.close(WS_CLOSE_TIMEOUT_CODE, "timeout")
                dropped += 1
                continue

            connection.alive = False
            probing.append(connection)

        if probing:
            acknowledged = await asyncio.gather(*(connection.probe() for connection in probing))
            for connection, ack in zip(probing, acknowledged):
                if ack:
                    self.registry.mark_alive(connection)
        logger.debug(f"Liveness tick: probed {len(probing)} connections, dropped {dropped}")
        return dropped

    async def run(self) -> None:
        logger.info(f"Liveness monitor started (interval: {self.interval}s)")
        try:
            while True:
                await asyncio.sleep(self.interval)
                try:
                    await self.tick()
                except Exception as e:
                    logger.error(f"Liveness tick failed: {e}", exc_info=True)
        except asyncio.CancelledError:
            logger.info("Liveness monitor stopped")
            raise

    def start(self) -> asyncio.Task:
        if not self.running:
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
