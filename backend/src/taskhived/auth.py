"""
Authentication utilities for extracting user info from Cognito tokens.
"""
from collections import namedtuple
from typing import Optional

from .errors import Forbidden, Unauthorized
from .models import UserRole


# Authenticated caller, passed explicitly into every pipeline operation
Identity = namedtuple('Identity', ['user_id', 'email', 'groups'])


def get_user_sub(event: dict) -> Optional[str]:
    """
    Extract user sub (unique ID) from Cognito authorizer claims.

    Args:
        event: API Gateway Lambda proxy event

    Returns:
        User sub string or None if not authenticated
    """
    try:
        return event['requestContext']['authorizer']['claims']['sub']
    except (KeyError, TypeError):
        return None


def get_user_email(event: dict) -> Optional[str]:
    """Extract user email from Cognito claims."""
    try:
        return event['requestContext']['authorizer']['claims']['email']
    except (KeyError, TypeError):
        return None


def get_user_groups(event: dict) -> list:
    """Extract user groups (client, worker, admin) from Cognito claims."""
    try:
        groups = event['requestContext']['authorizer']['claims'].get('cognito:groups', '')
        if isinstance(groups, str):
            return groups.split(',') if groups else []
        return groups or []
    except (KeyError, TypeError, AttributeError):
        return []


def get_identity(event: dict) -> Identity:
    """
    Build the caller identity from the request.

    Raises:
        Unauthorized: if the request carries no Cognito subject
    """
    user_id = get_user_sub(event)
    if not user_id:
        raise Unauthorized()
    return Identity(user_id, get_user_email(event), tuple(get_user_groups(event)))


def is_admin(identity: Identity) -> bool:
    """Check if user belongs to admin group."""
    return UserRole.ADMIN in identity.groups


def is_client(identity: Identity) -> bool:
    """Check if user belongs to client group."""
    return UserRole.CLIENT in identity.groups


def is_worker(identity: Identity) -> bool:
    """Check if user belongs to worker group."""
    return UserRole.WORKER in identity.groups


def require_admin(identity: Identity) -> None:
    if not is_admin(identity):
        raise Forbidden('Admin privileges required')


def require_worker(identity: Identity) -> None:
    if not is_worker(identity):
        raise Forbidden('Worker account required')


def require_client(identity: Identity) -> None:
    if not is_client(identity):
        raise Forbidden('Client account required')
