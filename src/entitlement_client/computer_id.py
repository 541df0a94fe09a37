"""
Stable identifier for the computer the client runs on.
"""

from __future__ import annotations

import hashlib
import platform
import uuid


def default_computer_id(salt: str = "") -> str:
    """
    Compute an opaque identifier for this installation.

    Derived from the host name and the hardware (MAC) address, hashed so the
    raw values are never sent to the service.

    Args:
        salt: Optional application-specific salt

    Returns:
        Hex encoded SHA-256 digest
    """
    material = "|".join([salt, platform.node(), f"{uuid.getnode():012x}"])
    return hashlib.sha256(material.encode("utf-8")).hexdigest()
