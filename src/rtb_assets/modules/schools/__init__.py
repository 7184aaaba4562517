"""
Schools module - School directory.
"""

from rtb_assets.modules.schools.models import School, SchoolCategory, SchoolStatus
from rtb_assets.modules.schools.repository import SchoolRepository

__all__ = ["School", "SchoolCategory", "SchoolStatus", "SchoolRepository"]
