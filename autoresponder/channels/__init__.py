"""Messaging transports."""

from autoresponder.channels.base import BaseTransport, ConnectionState
from autoresponder.channels.whatsapp import WhatsAppBridgeTransport, decode_message_frame

__all__ = ["BaseTransport", "ConnectionState", "WhatsAppBridgeTransport", "decode_message_frame"]
