"""
Telegram integration for Blood Residence.

This module provides:
- Outbound messages through the Bot API (DM forwarding)
"""

from .client import TelegramAPIError, TelegramClient

__all__ = ["TelegramAPIError", "TelegramClient"]
