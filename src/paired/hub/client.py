"""One-shot request/response exchange with the hub."""

from __future__ import annotations

import time
from typing import Any

from websockets.exceptions import InvalidHandshake, InvalidURI, WebSocketException
from websockets.sync.client import connect

from paired.errors import HubConnectionError, HubProtocolError, HubTimeout
from paired.hub.protocol import decode, encode

CLOSE_TIMEOUT_SECONDS = 0.5


class HubClient:
    """Opens a fresh connection per request; holds no connection state."""

    def __init__(self, *, host: str = "127.0.0.1", port: int = 7890) -> None:
        self.host = host
        self.port = port

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.port}"

    def request(
        self,
        message: dict[str, Any],
        *,
        timeout_seconds: float,
        expect_type: str | None = None,
    ) -> dict[str, Any]:
        """Send ``message`` and return the first reply before the deadline.

        With ``expect_type`` set, frames of other types are skipped until the
        expected one arrives or time runs out.
        """

        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        deadline = time.monotonic() + timeout_seconds
        try:
            with connect(
                self.url,
                open_timeout=timeout_seconds,
                close_timeout=CLOSE_TIMEOUT_SECONDS,
                proxy=None,
            ) as connection:
                connection.send(encode(message))
                while True:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise HubTimeout(f"No reply from hub within {timeout_seconds:.1f}s")
                    reply = decode(connection.recv(timeout=remaining))
                    if expect_type is None or reply.get("type") == expect_type:
                        return reply
        except TimeoutError as error:
            raise HubTimeout(f"No reply from hub within {timeout_seconds:.1f}s") from error
        except HubProtocolError:
            raise
        except (InvalidHandshake, InvalidURI) as error:
            raise HubProtocolError(f"Handshake with {self.url} failed: {error}") from error
        except (OSError, WebSocketException) as error:
            raise HubConnectionError(f"Cannot reach hub at {self.url}: {error}") from error
