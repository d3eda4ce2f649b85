"""
Operator roles enumeration.

Defines the role types carried in access tokens.
"""

import enum


class OperatorRole(str, enum.Enum):
    """
    Operator role enumeration.

    Roles:
        ADMIN: Full access, including ops endpoints
        SORTER: Station staff collecting and sorting parcels
        DISPATCHER: Creates tasks and binds parcels to them
        DRIVER: Runs transport tasks assigned to them
        COURIER: Runs delivery tasks assigned to them
    """
    ADMIN = "ADMIN"
    SORTER = "SORTER"
    DISPATCHER = "DISPATCHER"
    DRIVER = "DRIVER"
    COURIER = "COURIER"
