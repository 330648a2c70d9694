"""
Secret lookup for the JWT signing secret and the Postgres password.

``NAME_FILE`` (a path, as mounted by Docker or Kubernetes secrets) wins over
a plain ``NAME`` environment variable.
"""
import logging
import os
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


def get_secret(name: str, default: Optional[str] = None) -> Optional[str]:
    """
    Read ``name`` from ``{name}_FILE`` if set, else from ``{name}``.

    A configured file that cannot be read raises ``OSError``; silently
    falling through to another source would hide a broken deployment.
    """
    path = os.environ.get(f"{name}_FILE")
    if path:
        value = Path(path).read_text().strip()
        logger.debug(f"Loaded {name} from {name}_FILE")
        return value

    value = os.environ.get(name)
    if value:
        return value
    return default


def mask_secret(value: str, visible_chars: int = 4) -> str:
    """Keep only the ends of ``value`` for log lines, e.g. ``coll....com``."""
    if not value or len(value) <= visible_chars * 2:
        return "***"
    return f"{value[:visible_chars]}...{value[-visible_chars:]}"
