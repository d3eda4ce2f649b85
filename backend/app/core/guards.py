"""
Security guards for role-based and ownership-based access control.
"""

from typing import List
from fastapi import Depends, HTTPException, status
from backend.app.models.enums import OperatorRole
from backend.app.core.dependencies import get_current_operator


def require_role(allowed_roles: List[OperatorRole]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.post("/transport/tasks")
        async def create_task(operator: dict = Depends(require_role([OperatorRole.DISPATCHER]))):
            ...

    Args:
        allowed_roles: Roles allowed to call the endpoint

    Returns:
        FastAPI dependency returning the operator payload

    Raises:
        HTTPException 403 if the operator's role is missing, unknown or not allowed
    """
    async def role_checker(current_operator: dict = Depends(get_current_operator)) -> dict:
        role_str = current_operator.get("role")

        if not role_str:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Role information missing from token"
            )

        try:
            role = OperatorRole(role_str)
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Invalid role in token"
            )

        if role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {', '.join([r.value for r in allowed_roles])}"
            )

        return current_operator

    return role_checker


def operator_id(current_operator: dict) -> str:
    """Operator ID used for driver/courier ownership checks."""
    return current_operator["sub"]
