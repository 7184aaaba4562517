"""
Device Applications Module

Handles the device application lifecycle:
1. Submission by a school representative (with a PDF supporting letter)
2. Review by RTB staff (Under Review, Approved, Rejected) and eligibility
3. Assignment of devices, each bound to the school with an asset tag
4. Receipt confirmation by the applicant, or cancellation while Pending

Every status change is validated against a transition table and produces
one lifecycle event for notifications and the audit trail.
"""

from .router import router

__all__ = ["router"]
