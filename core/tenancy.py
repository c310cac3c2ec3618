from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, selectinload

from models.store import Store

LOOPBACK_HOSTS = ("localhost", "127.0.0.1", "::1")


def normalize_host(host: Optional[str]) -> Optional[str]:
    """Lowercased host without port or ``www.`` prefix. None for an empty header."""
    if not host:
        return None
    host = host.strip().lower()
    if host.startswith("["):
        # Bracketed IPv6 literal, optionally with a port
        host = host[1:].split("]", 1)[0]
    elif host.count(":") == 1:
        host = host.split(":", 1)[0]
    host = host.rstrip(".")
    if host.startswith("www."):
        host = host[4:]
    return host or None


def is_local_host(host: str) -> bool:
    return host in LOOPBACK_HOSTS or host.endswith(".local")


def find_store_by_host(db: Session, host: str) -> Optional[Store]:
    """Store whose domain or subdomain equals the normalized host, case-insensitively."""
    return (
        db.query(Store)
        .options(selectinload(Store.pages))
        .filter(or_(func.lower(Store.domain) == host, func.lower(Store.subdomain) == host))
        .order_by(Store.id)
        .first()
    )
