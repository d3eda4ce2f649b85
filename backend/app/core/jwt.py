"""
JWT token utilities for operator authentication.

Tokens carry the operator ID as `sub` and one OperatorRole as `role`.
"""

from datetime import datetime, timedelta
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from backend.app.core.config import settings


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token.

    Args:
        data: Payload to encode (should include: sub, role)
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string

    Example payload:
        {
            "sub": "driver-017",
            "role": "DRIVER",
            "exp": 1234567890
        }
    """
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def create_operator_token(operator_id: str, role: str, expires_delta: Optional[timedelta] = None) -> str:
    return create_access_token({"sub": operator_id, "role": role}, expires_delta)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """Decode and validate a token; None when the signature or expiry check fails."""
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None
