"""Tenant connections and the in-memory token store."""

from dataclasses import dataclass
from enum import Enum
from typing import Any

import structlog

from qbo_bridge.config.settings import FlatSettings

logger = structlog.get_logger(__name__)


class ConnectionSlot(str, Enum):
    """Named connection slots held by the bridge."""

    MAIN = "main"
    FROM = "from"
    TO = "to"

    @property
    def oauth_state(self) -> str:
        """OAuth ``state`` value used to route a callback back to this slot."""
        return f"qbo_{self.value}"

    @classmethod
    def parse(cls, value: "str | ConnectionSlot | None") -> "ConnectionSlot":
        """Resolve a slot name; an empty name means MAIN.

        Raises:
            ValueError: If the name is not one of main, from or to.
        """
        if isinstance(value, cls):
            return value
        wanted = str(value or "main").strip().lower() or "main"
        for slot in cls:
            if slot.value == wanted:
                return slot
        raise ValueError(f"Unknown connection slot: {value!r}")

    @classmethod
    def from_state(cls, state: str | None) -> "ConnectionSlot":
        """Map an OAuth callback ``state`` (qbo_from / qbo_to / qbo_main) to a slot."""
        for slot in cls:
            if state == slot.oauth_state:
                return slot
        return cls.MAIN


class ConnectionNotConfiguredError(Exception):
    """A required connection slot has no usable token or realm id."""

    def __init__(self, slot: ConnectionSlot):
        label = slot.value.upper()
        super().__init__(
            f"{label} company not connected. Please connect the {label} company first."
        )
        self.slot = slot


@dataclass(frozen=True)
class Connection:
    """OAuth tokens and identity of one connected company."""

    access_token: str = ""
    refresh_token: str = ""
    realm_id: str = ""
    company_name: str = ""

    @property
    def is_usable(self) -> bool:
        return bool(self.access_token and self.realm_id)

    def status(self) -> dict[str, Any]:
        return {
            "connected": self.is_usable,
            "realm_id": self.realm_id or None,
            "company_name": self.company_name or None,
        }


class ConnectionStore:
    """Process-memory holder for the MAIN, FROM and TO connections.

    Callers take a snapshot with :meth:`require` at the start of an operation
    and pass the returned :class:`Connection` down explicitly, so a reconnect
    or disconnect during a run never changes the connection that run uses.
    """

    def __init__(self, connections: dict[ConnectionSlot, Connection] | None = None):
        self._connections: dict[ConnectionSlot, Connection] = {
            slot: Connection() for slot in ConnectionSlot
        }
        if connections:
            self._connections.update(connections)

    @classmethod
    def from_settings(cls, settings: FlatSettings) -> "ConnectionStore":
        """Seed the store from pre-authorized tokens in the environment."""
        return cls(
            {
                ConnectionSlot.MAIN: Connection(
                    access_token=settings.main_access_token,
                    refresh_token=settings.main_refresh_token,
                    realm_id=settings.main_realm_id,
                ),
                ConnectionSlot.FROM: Connection(
                    access_token=settings.from_access_token,
                    refresh_token=settings.from_refresh_token,
                    realm_id=settings.from_realm_id,
                ),
                ConnectionSlot.TO: Connection(
                    access_token=settings.to_access_token,
                    refresh_token=settings.to_refresh_token,
                    realm_id=settings.to_realm_id,
                ),
            }
        )

    def get(self, slot: ConnectionSlot | str) -> Connection:
        return self._connections[ConnectionSlot.parse(slot)]

    def set(self, slot: ConnectionSlot | str, connection: Connection) -> None:
        slot = ConnectionSlot.parse(slot)
        self._connections[slot] = connection
        logger.info(
            "connection_set",
            slot=slot.value,
            realm_id=connection.realm_id,
            company_name=connection.company_name,
        )

    def disconnect(self, slot: ConnectionSlot | str) -> ConnectionSlot:
        slot = ConnectionSlot.parse(slot)
        self._connections[slot] = Connection()
        logger.info("connection_cleared", slot=slot.value)
        return slot

    def require(self, slot: ConnectionSlot) -> Connection:
        """Return the slot's connection or raise if it is not usable."""
        connection = self._connections[slot]
        if not connection.is_usable:
            raise ConnectionNotConfiguredError(slot)
        return connection

    def status(self) -> dict[str, dict[str, Any]]:
        return {slot.value: conn.status() for slot, conn in self._connections.items()}
