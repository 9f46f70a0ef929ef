"""
autoresponder - AI auto-responder for WhatsApp chats.
"""

__version__ = "0.1.0"
__logo__ = "💬"
