"""
Unique ID provider.

IDs look like `<prefix><YYYYMMDDhhmmss><random suffix>`, e.g.
`KD20251201093000A1B2C3`. The suffix comes from one process-wide
cryptographic source, so concurrent calls in the same second do not share
a seed.
"""

import secrets
import string
from datetime import datetime
from typing import Callable, Optional

ID_CHARSET = string.ascii_uppercase + string.digits

PARCEL_PREFIX = "KD"
TRACE_PREFIX = "TR"
ABNORMAL_RECORD_PREFIX = "AB"
TRANSPORT_TASK_PREFIX = "TRAN"
DELIVERY_TASK_PREFIX = "DELI"


class IDProvider:
    """Generates prefixed, timestamped IDs. Uniqueness is probabilistic."""

    def __init__(self, suffix_length: int = 6, clock: Optional[Callable[[], datetime]] = None):
        if not 4 <= suffix_length <= 6:
            raise ValueError("suffix_length must be between 4 and 6")
        self.suffix_length = suffix_length
        self._clock = clock or datetime.now
        self._random = secrets.SystemRandom()

    def new_id(self, prefix: str) -> str:
        timestamp = self._clock().strftime("%Y%m%d%H%M%S")
        suffix = "".join(self._random.choice(ID_CHARSET) for _ in range(self.suffix_length))
        return f"{prefix}{timestamp}{suffix}"

    def parcel_id(self) -> str:
        return self.new_id(PARCEL_PREFIX)

    def trace_id(self) -> str:
        return self.new_id(TRACE_PREFIX)

    def abnormal_record_id(self) -> str:
        return self.new_id(ABNORMAL_RECORD_PREFIX)

    def transport_task_id(self) -> str:
        return self.new_id(TRANSPORT_TASK_PREFIX)

    def delivery_task_id(self) -> str:
        return self.new_id(DELIVERY_TASK_PREFIX)


id_provider = IDProvider()
