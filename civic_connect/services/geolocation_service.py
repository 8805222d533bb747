import asyncio
import logging
from typing import Optional, Protocol

from civic_connect.core.exceptions import GeolocationUnavailable
from civic_connect.models.issue_model import Coordinate

logger = logging.getLogger(__name__)


class GeolocationProvider(Protocol):
    async def locate(self) -> Coordinate:
        """Return the viewer's position or raise GeolocationUnavailable."""
        ...


class StaticGeolocation:
    """A position known up front, e.g. from request query parameters."""

    def __init__(self, coordinate: Optional[Coordinate] = None):
        self.coordinate = coordinate

    async def locate(self) -> Coordinate:
        if self.coordinate is None:
            raise GeolocationUnavailable("No coordinate supplied")
        return self.coordinate


class DeferredGeolocation:
    """
    A position the client reports later, e.g. over a websocket after the
    browser's permission prompt. locate() waits until resolve() or deny().
    """

    def __init__(self):
        self._future: "asyncio.Future[Coordinate]" = asyncio.get_running_loop().create_future()

    def resolve(self, coordinate: Coordinate) -> None:
        if not self._future.done():
            self._future.set_result(coordinate)

    def deny(self, reason: str = "Location permission denied") -> None:
        if not self._future.done():
            self._future.set_exception(GeolocationUnavailable(reason))

    async def locate(self) -> Coordinate:
        return await asyncio.shield(self._future)
