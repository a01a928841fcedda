"""Interface between a session and the chat client that owns it."""

from abc import ABC, abstractmethod


class SessionHandler(ABC):
    """
    Receives the inbound side of a session.

    The owning chat client implements this to look like a normal socket
    connection to the rest of the application.
    """

    @abstractmethod
    def on_connected(self) -> None:
        """The session was created; lines can be sent from now on."""
        pass

    @abstractmethod
    def on_line_received(self, line: str) -> None:
        """An IRC line arrived from the network, in server order."""
        pass

    @abstractmethod
    def on_connection_lost(self, reason: str) -> None:
        """
        The session ended because of a permanent error.

        The handler may apply its own reconnect policy by connecting again.
        """
        pass
