"""Shared utilities across the bridge."""

from signbridge.shared.logging import get_logger
from signbridge.shared.security import hash_pii, mask_token

__all__ = ["get_logger", "hash_pii", "mask_token"]
