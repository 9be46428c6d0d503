"""
User roles as asserted by the identity provider.

Users themselves are owned by the external identity service; this
application only stores user ids (created_by, approved_by, ...) and
checks the role carried on each request.
"""
from enum import Enum


class UserRole(str, Enum):
    """Role names issued by the identity provider."""
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    STAFF = "STAFF"

