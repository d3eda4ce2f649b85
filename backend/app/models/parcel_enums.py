"""
Parcel-related enumerations.
"""

import enum


class ParcelStatus(str, enum.Enum):
    """
    Parcel status enumeration.

    Status flow:
        COLLECTED → SORTED → TRANSPORTING → ARRIVED → DELIVERING → DELIVERED
        ABNORMAL is set by sorting exceptions.
        TRANSPORT_ABNORMAL / DELIVERY_ABNORMAL mirror abnormal tasks.

    Parcel statuses are derived from task transitions and sorting operations;
    they are never validated against a graph of their own.
    """
    COLLECTED = "collected"
    SORTED = "sorted"
    ABNORMAL = "abnormal"
    TRANSPORTING = "transporting"
    ARRIVED = "arrived"
    DELIVERING = "delivering"
    DELIVERED = "delivered"
    TRANSPORT_ABNORMAL = "transport_abnormal"
    DELIVERY_ABNORMAL = "delivery_abnormal"


class TraceNodeType(str, enum.Enum):
    """Kind of operational event a trace entry records."""
    COLLECTION = "collection"
    SORTING = "sorting"
    TRANSPORT = "transport"
    DELIVERY = "delivery"
    SIGN = "sign"
    ABNORMAL = "abnormal"


class AbnormalRecordStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSED = "processed"
