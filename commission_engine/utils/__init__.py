"""Utility functions."""

from commission_engine.utils.audit import actor_label, get_client_ip, log_action
from commission_engine.utils.password import hash_password, verify_password

__all__ = [
    "hash_password",
    "verify_password",
    "log_action",
    "actor_label",
    "get_client_ip",
]
