"""Live preview-server discovery for end-to-end runs."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from .settings import RuntimeSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreviewServer:
    project_id: str
    port: int
    host: str = "127.0.0.1"

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"


class PreviewRegistry:
    """In-process record of preview servers started for projects."""

    def __init__(self) -> None:
        self._servers: dict[str, PreviewServer] = {}

    def register(self, project_id: str, port: int, host: str = "127.0.0.1") -> PreviewServer:
        server = PreviewServer(project_id=project_id, port=port, host=host)
        self._servers[project_id] = server
        logger.info("Registered preview server for %s at %s", project_id, server.url)
        return server

    def unregister(self, project_id: str) -> None:
        self._servers.pop(project_id, None)

    def get(self, project_id: str) -> PreviewServer | None:
        return self._servers.get(project_id)


async def is_port_open(host: str, port: int, timeout_ms: int) -> bool:
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout_ms / 1000)
    except (OSError, asyncio.TimeoutError):
        return False
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


async def find_live_preview(
    project_id: str,
    registry: PreviewRegistry,
    settings: RuntimeSettings,
) -> PreviewServer | None:
    """Return a reachable preview server for ``project_id``.

    The registry entry is checked first; when it is missing or no longer
    accepting connections the configured candidate ports are probed in order.
    """
    registered = registry.get(project_id)
    if registered is not None:
        if await is_port_open(registered.host, registered.port, settings.preview_probe_timeout_ms):
            return registered
        logger.warning("Registered preview for %s on port %d is not reachable", project_id, registered.port)

    for port in settings.preview_probe_ports:
        if await is_port_open(settings.preview_host, port, settings.preview_probe_timeout_ms):
            logger.info("Found live preview server for %s on port %d", project_id, port)
            return PreviewServer(project_id=project_id, port=port, host=settings.preview_host)
    return None
