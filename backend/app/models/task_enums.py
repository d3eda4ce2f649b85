"""
Task-related enumerations for the transport and delivery domains.
"""

import enum


class TransportTaskStatus(str, enum.Enum):
    """Transport task status enumeration."""
    PENDING = "pending"  # Created, loading parcels
    TRANSPORTING = "transporting"  # Vehicle on the road
    ARRIVED = "arrived"  # Reached the end node
    COMPLETED = "completed"  # Unloaded and closed (terminal)
    ABNORMAL = "abnormal"  # Reported exception, awaiting handling


class DeliveryTaskStatus(str, enum.Enum):
    """Delivery task status enumeration."""
    PENDING = "pending"  # Created, binding parcels
    DELIVERING = "delivering"  # Courier out for delivery
    COMPLETED = "completed"  # Every parcel signed (terminal)
    ABNORMAL = "abnormal"  # Reported exception, awaiting handling


class TransportAbnormalType(str, enum.Enum):
    ROUTE_CHANGE = "route_change"
    VEHICLE_FAULT = "vehicle_fault"
    DELAY = "delay"


class DeliveryAbnormalType(str, enum.Enum):
    RECEIVER_ABSENT = "receiver_absent"
    ADDRESS_ERROR = "address_error"
    PACKAGE_DAMAGE = "package_damage"


class SignType(str, enum.Enum):
    PERSON = "person"  # Signed by the receiver
    SIGNBOARD = "signboard"  # Parcel locker
    AGENT = "agent"  # Signed on the receiver's behalf
