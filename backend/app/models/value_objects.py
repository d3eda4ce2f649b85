"""
Immutable value objects embedded in task rows.

Each value object is stored as plain columns on its parent row and read back
as a frozen dataclass. Updates replace the whole value, never single fields.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class RouteInfo:
    """Serialized route description (JSON list of nodes) and distance."""
    route_json: Optional[str] = None
    distance_km: Optional[float] = None


@dataclass(frozen=True)
class AbnormalInfo:
    """Exception reported against a task and, once handled, its outcome."""
    abnormal_type: str
    reason: str
    handler: str
    handle_time: Optional[datetime] = None
    handle_result: Optional[str] = None


@dataclass(frozen=True)
class SignInfo:
    """Signature captured when a parcel is handed over."""
    signer_name: str
    signer_phone: str
    sign_time: Optional[datetime]
    sign_type: str
    remark: Optional[str] = None

    @property
    def is_signed(self) -> bool:
        return self.sign_time is not None
