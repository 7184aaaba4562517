"""
Devices Module

The device registry and the per-school asset tag allocator:
1. Single and bulk registration (bulk items succeed or fail independently)
2. Bulk binding of devices to a school
3. Administrative edits, including unbinding
4. Asset tags CAT/DIS/SCH/NNNN issued from a locked per-school counter
"""

from .router import router

__all__ = ["router"]
