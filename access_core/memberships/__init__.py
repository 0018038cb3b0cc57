"""Membership lifecycle: invitations, role changes, suspension and removal."""

from .service import MembershipService

__all__ = ["MembershipService"]
