"""
Access token claims extraction.

The token is issued by the authentication layer in front of this service.
Its claims are a fast-path cache of the caller's roles and permissions and
may lag the role store until the token is reissued, so extraction is
best-effort: anything missing, expired or malformed becomes empty Claims.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

import jwt

from permission_engine.core import config
from permission_engine.utils import get_logger


log = get_logger(__name__)

# Nested objects that may carry the same claims as the payload root
METADATA_KEYS = ("app_metadata", "user_metadata")


@dataclass(frozen=True)
class Claims:
    """Transient claim set decoded from one access token."""
    subject_id: Optional[str] = None
    email: Optional[str] = None
    role_names: Tuple[str, ...] = ()
    permission_strings: Tuple[str, ...] = ()
    role_ids: Tuple[int, ...] = ()
    department_id: Optional[str] = None
    department_name: Optional[str] = None
    expires_at: Optional[datetime] = None

    @classmethod
    def empty(cls) -> "Claims":
        return cls()

    @property
    def is_empty(self) -> bool:
        return self == Claims()


def decode_token(token: str) -> Dict[str, Any]:
    """
    Decode an access token and return its payload.

    With ``JWT_SECRET`` configured the signature is verified; otherwise the
    payload is read unverified. Expiry is always checked.

    Raises:
        jwt.InvalidTokenError: if the token cannot be decoded or has expired
    """
    if config.JWT_SECRET:
        return jwt.decode(
            token,
            config.JWT_SECRET,
            algorithms=[config.JWT_ALGORITHM],
            options={"verify_aud": False},
        )
    return jwt.decode(
        token,
        options={"verify_signature": False, "verify_exp": True}
    )


def _unique(values: Iterable[Any]) -> Tuple[Any, ...]:
    seen: Dict[Any, None] = {}
    for value in values:
        seen.setdefault(value, None)
    return tuple(seen)


def _sources(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    sources = [payload]
    for key in METADATA_KEYS:
        nested = payload.get(key)
        if isinstance(nested, dict):
            sources.append(nested)
    return sources


def _collect_strings(sources: List[Dict[str, Any]], key: str) -> List[str]:
    collected: List[str] = []
    for source in sources:
        values = source.get(key)
        if isinstance(values, list):
            collected.extend(v for v in values if isinstance(v, str) and v.strip())
    return collected


def _first_scalar(sources: List[Dict[str, Any]], key: str) -> Optional[str]:
    for source in sources:
        value = source.get(key)
        if isinstance(value, bool):
            continue
        if isinstance(value, (str, int)) and str(value):
            return str(value)
    return None


def claims_from_payload(payload: Dict[str, Any]) -> Claims:
    """Build Claims from a decoded payload, ignoring entries of the wrong type."""
    sources = _sources(payload)

    roles: List[str] = []
    if isinstance(payload.get("role"), str) and payload["role"].strip():
        roles.append(payload["role"])
    roles.extend(_collect_strings(sources, "roles"))

    role_ids: List[int] = []
    for source in sources:
        values = source.get("role_ids")
        if isinstance(values, list):
            role_ids.extend(v for v in values if isinstance(v, int) and not isinstance(v, bool))

    expires_at = None
    exp = payload.get("exp")
    if isinstance(exp, (int, float)) and not isinstance(exp, bool):
        try:
            expires_at = datetime.fromtimestamp(exp, tz=timezone.utc)
        except (OverflowError, ValueError, OSError):
            log.warning("Access token expiry %r is out of range, ignoring it", exp)

    subject = payload.get("sub")
    email = payload.get("email")

    return Claims(
        subject_id=subject if isinstance(subject, str) and subject else None,
        email=email if isinstance(email, str) else None,
        role_names=_unique(roles),
        permission_strings=_unique(_collect_strings(sources, "permissions")),
        role_ids=_unique(role_ids),
        department_id=_first_scalar(sources, "department_id"),
        department_name=_first_scalar(sources, "department_name"),
        expires_at=expires_at,
    )


def extract_claims(token: Optional[str]) -> Claims:
    """
    Decode ``token`` into Claims. Never raises.

    Usage:
        claims = extract_claims(credentials.credentials)
        if claims.is_empty:
            ...  # no usable token, rely on the role store alone
    """
    if not token:
        return Claims.empty()

    try:
        payload = decode_token(token)
    except jwt.ExpiredSignatureError:
        log.warning("Access token has expired, ignoring its claims")
        return Claims.empty()
    except jwt.InvalidTokenError as e:
        log.warning("Could not decode access token claims: %s", e)
        return Claims.empty()

    if not isinstance(payload, dict):
        log.warning("Access token payload is not an object, ignoring it")
        return Claims.empty()

    return claims_from_payload(payload)
