"""Protocol definitions for dependency inversion.

These abstract interfaces define contracts that collaborators outside the
archival core must implement.
"""

from typing import Protocol


class MessageTransportProtocol(Protocol):
    """Outbound side of the messaging connection used for re-delivery."""

    async def send_text(self, chat_id: str, text: str) -> None:
        """Send a text message to a chat.

        Args:
            chat_id: Destination chat identifier
            text: Message body

        Raises:
            Exception: On transport errors
        """
        ...

    async def send_media(
        self,
        chat_id: str,
        data: bytes,
        *,
        mimetype: str,
        filename: str | None = None,
        caption: str | None = None,
    ) -> None:
        """Send an attachment to a chat.

        Args:
            chat_id: Destination chat identifier
            data: Attachment bytes
            mimetype: MIME type of the attachment
            filename: Optional file name shown to the recipient
            caption: Optional caption

        Raises:
            Exception: On transport errors
        """
        ...
