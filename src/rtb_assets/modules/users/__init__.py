"""
Users module - Account lookups for applicants, reviewers and recipients.
"""

from rtb_assets.modules.users.models import STAFF_ROLES, User, UserRole
from rtb_assets.modules.users.repository import UserRepository

__all__ = ["STAFF_ROLES", "User", "UserRole", "UserRepository"]
