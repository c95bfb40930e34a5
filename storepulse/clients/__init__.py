"""Clients for external API interactions."""
from storepulse.clients.instamart_client import InstamartClient

__all__ = ["InstamartClient"]
