"""
Per-device identity.

A participant keeps the same id across sessions so that rejoining
replaces the old record instead of adding a second one. The id and the
last display name used are stored as JSON in the config directory.

Priority:
1. Environment variable CONVOY_USER_ID (id only)
2. Identity file (config/identity.json)
3. Freshly generated id, saved for next time
"""

import json
import logging
import os
import random
import string
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

from .config import get_identity_file

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.digits + string.ascii_lowercase


def generate_user_id(rng: Optional[random.Random] = None) -> str:
    rng = rng or random.SystemRandom()
    return "user_" + "".join(rng.choice(_ID_ALPHABET) for _ in range(9))


@dataclass
class Identity:
    user_id: str
    name: str = ""


def save_identity(identity: Identity, path: Optional[Path] = None) -> bool:
    """Save identity to the config file."""
    path = path or get_identity_file()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(asdict(identity), f, indent=2)
        return True
    except OSError as e:
        logger.warning("Could not save identity file %s: %s", path, e)
        return False


def load_identity(path: Optional[Path] = None) -> Identity:
    """Load this device's identity, creating and saving one if needed."""
    path = path or get_identity_file()
    identity: Optional[Identity] = None

    if path.exists():
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if data.get("user_id"):
                identity = Identity(user_id=str(data["user_id"]), name=str(data.get("name") or ""))
        except (OSError, ValueError, AttributeError) as e:
            logger.warning("Could not load identity file %s: %s", path, e)

    env_id = os.getenv("CONVOY_USER_ID")
    if env_id:
        return Identity(user_id=env_id, name=identity.name if identity else "")

    if identity is None:
        identity = Identity(user_id=generate_user_id())
        save_identity(identity, path)
        logger.info("Generated new device identity %s", identity.user_id)
    return identity


def remember_name(identity: Identity, name: str, path: Optional[Path] = None) -> None:
    """Persist the display name used for the last successful join."""
    if identity.name == name:
        return
    identity.name = name
    save_identity(identity, path)
