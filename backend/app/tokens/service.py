"""Token issuance: public one-time tokens and admin-scoped custom tokens."""

import logging
import secrets
import uuid
from datetime import timedelta
from typing import Optional, Tuple

from app.config import Settings
from app.errors import TokenExists, TokenRateLimited
from app.metadata.base import MetadataStore, TokenRecord, hash_token, utcnow
from app.tokens.models import CustomTokenCreate

log = logging.getLogger(__name__)

_MAX_GENERATE_ATTEMPTS = 5


def _six_digit_token() -> str:
    return str(100000 + secrets.randbelow(900000))


async def _unused_token(metadata: MetadataStore, generate) -> str:
    for _ in range(_MAX_GENERATE_ATTEMPTS):
        raw = generate()
        if await metadata.find_token(hash_token(raw)) is None:
            return raw
    raise TokenExists("Could not allocate a unique token, try again")


async def issue_public_token(
    metadata: MetadataStore,
    settings: Settings,
    name: str,
    purpose: str,
    ip_address: str,
) -> Tuple[str, TokenRecord]:
    """
    Issue a six-digit, single-use token valid for token_ttl_minutes.
    At most token_rate_limit_count tokens per IP within the rate-limit window.
    Returns (raw_token, record); only the hash is stored.
    """
    since = utcnow() - timedelta(minutes=settings.token_rate_limit_window_minutes)
    recent = await metadata.count_recent_tokens(ip_address, since)
    if recent >= settings.token_rate_limit_count:
        log.warning("token rate limit ip=%s recent=%d", ip_address, recent)
        raise TokenRateLimited()
    raw = await _unused_token(metadata, _six_digit_token)
    now = utcnow()
    record = TokenRecord(
        id=str(uuid.uuid4()),
        token_hash=hash_token(raw),
        name=name,
        purpose=purpose,
        permission="both",
        expires_at=now + timedelta(minutes=settings.token_ttl_minutes),
        max_uses=1,
        ip_address=ip_address,
        created_at=now,
    )
    await metadata.create_token(record)
    log.info("issued token id=%s ip=%s", record.id, ip_address)
    return raw, record


async def create_custom_token(
    metadata: MetadataStore,
    payload: CustomTokenCreate,
) -> Tuple[str, TokenRecord]:
    """Admin token with explicit permission, folder scope, use count and expiry."""
    raw: Optional[str] = payload.token
    if raw:
        if await metadata.find_token(hash_token(raw)) is not None:
            raise TokenExists()
    else:
        raw = await _unused_token(metadata, lambda: secrets.token_urlsafe(9))
    now = utcnow()
    record = TokenRecord(
        id=str(uuid.uuid4()),
        token_hash=hash_token(raw),
        name=payload.name,
        purpose=payload.purpose,
        permission=payload.permission,
        allowed_folders=list(dict.fromkeys(payload.allowed_folders)),
        expires_at=now + timedelta(minutes=payload.expires_in_minutes),
        max_uses=payload.max_uses,
        ip_address="Admin Panel",
        max_upload_size=payload.max_upload_size,
        created_at=now,
    )
    await metadata.create_token(record)
    log.info(
        "created custom token id=%s permission=%s folders=%s",
        record.id, record.permission, ",".join(record.allowed_folders) or "-",
    )
    return raw, record
