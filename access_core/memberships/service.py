"""
Membership lifecycle service.

This module provides:
- Invitations, including idempotent re-invites of pending members
- Role changes, suspension, reinstatement and removal
- Invitation acceptance by the invitee
- Tenant-scoped permission overrides (grant/revoke)
- Member listings

Security Notes:
- Every mutation is authorized through the resolver before anything is read
  about the target, so an outsider learns nothing from the error it gets
- Peer protection: an actor never demotes, suspends or removes a member of
  equal or higher rank
- The last active company admin of a tenant cannot be removed, suspended or
  demoted (configurable)
- Writes are compare-and-set on the membership version; admin-reducing
  writes also compare the tenant roster version
- Denials on protected roles and the last admin are written to the audit log
  with status failure
"""

import logging
from typing import List, Optional, Union

from access_core.exceptions import (
    AccessCoreError,
    AlreadyMember,
    Conflict,
    ErrorCode,
    InvalidTransition,
    LastAdmin,
    NotFound,
    ProtectedRole,
    Unauthorized,
    ValidationError,
)
from access_core.notifications import Notifier
from access_core.rbac.catalog import is_known_permission, permissions_for_resource
from access_core.rbac.resolver import (
    AuthorizationResolver,
    EffectivePermissionSet,
    log_authorization_failure,
)
from access_core.rbac.roles import (
    ADMIN_RANK,
    SUPERADMIN_RANK,
    Role,
    get_role_rank,
    parse_role,
)
from access_core.rbac.tokens import ExactPermission, ResourceWildcard, parse_token
from access_core.realtime.hub import PropagationHub
from access_core.storage.base import TenancyStore
from access_core.audit.service import AuditLog
from access_core.types.tenancy import (
    AuditAction,
    AuditStatus,
    MemberDetails,
    Membership,
    MembershipStatus,
    RequestContext,
    Tenant,
    User,
    UserStatus,
    can_transition,
)

logger = logging.getLogger(__name__)

MEMBERS_RESOURCE = "members"
MANAGE_PERMISSION = "members.manage"
VIEW_PERMISSION = "members.view"
INVITE_PERMISSION = "tenant.manage"


class MembershipService:
    """
    Business logic for membership lifecycle operations.

    Each operation reads durable state, checks its guards and writes with a
    version comparison, so two racing requests can never both pass a guard
    against the same snapshot.
    """

    def __init__(
        self,
        store: TenancyStore,
        resolver: AuthorizationResolver,
        audit: AuditLog,
        hub: Optional[PropagationHub] = None,
        notifier: Optional[Notifier] = None,
        enforce_last_admin: bool = True,
        allow_self_demotion: bool = False,
    ):
        """
        Args:
            store: Durable tenancy store.
            resolver: Authorization resolver.
            audit: Audit log receiving one entry per mutation.
            hub: Optional propagation hub for rbac_updated pushes.
            notifier: Optional notifier for invitation emails.
            enforce_last_admin: Reject changes that leave no active admin.
            allow_self_demotion: Let an admin change their own membership.
        """
        self.store = store
        self.resolver = resolver
        self.audit = audit
        self.hub = hub
        self.notifier = notifier
        self.enforce_last_admin = enforce_last_admin
        self.allow_self_demotion = allow_self_demotion

    # =========================================================================
    # Invitations
    # =========================================================================

    async def invite(
        self,
        tenant_id: str,
        email: str,
        display_name: str,
        role: Union[Role, str],
        actor_id: str,
        context: Optional[RequestContext] = None,
    ) -> Membership:
        """
        Invite a user to a tenant.

        Reuses the user record for a known email. A pending or suspended
        membership for the pair is reset to invited with the new role instead
        of creating a second row.

        Raises:
            Unauthorized: If the actor cannot invite, or the role outranks them.
            ValidationError: If the email or role is malformed.
            NotFound: If the tenant does not exist.
            AlreadyMember: If the user is already an active member.
            ProtectedRole: If a re-invite would demote a protected member.
        """
        new_role = self._parse_role(role)
        email = (email or "").strip().lower()
        if "@" not in email:
            raise ValidationError("A valid email address is required", field="email")

        permissions = await self.resolver.resolve(actor_id, tenant_id)
        actor_rank = self._rank_of(permissions)
        if not (permissions.allows(INVITE_PERMISSION) or actor_rank >= ADMIN_RANK):
            log_authorization_failure(actor_id, tenant_id, INVITE_PERMISSION, permissions.role)
            raise Unauthorized(required_permission=INVITE_PERMISSION)
        self._require_assignable(actor_id, tenant_id, actor_rank, new_role)

        tenant = await self._get_tenant(tenant_id)
        user = await self._get_or_create_user(email, display_name)
        existing = await self.store.get_membership(user.id, tenant_id)

        if existing is not None and existing.status == MembershipStatus.ACTIVE:
            raise AlreadyMember(internal_message=f"user {user.id} active in {tenant_id}")

        if existing is not None:
            if existing.role != new_role:
                await self._check_peer(
                    tenant_id, actor_id, actor_rank, existing, AuditAction.REINVITE_USER, context
                )
            membership = await self.store.update_membership(
                existing.model_copy(update={
                    "role": new_role,
                    "status": MembershipStatus.INVITED,
                    "invited_by": actor_id,
                }),
                expected_version=existing.version,
            )
            action = AuditAction.REINVITE_USER
            changes = {
                "email": email,
                "role": new_role.value,
                "previous_role": existing.role.value,
                "previous_status": existing.status.value,
            }
        else:
            membership = await self.store.create_membership(Membership(
                user_id=user.id,
                tenant_id=tenant_id,
                role=new_role,
                status=MembershipStatus.INVITED,
                invited_by=actor_id,
            ))
            action = AuditAction.INVITE_USER
            changes = {"email": email, "role": new_role.value}

        await self.audit.record(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action=action,
            resource=MEMBERS_RESOURCE,
            resource_id=membership.id,
            changes=changes,
            context=context,
        )
        logger.info(
            f"Member invited: {action.value}",
            extra={"target_tenant_id": tenant_id, "membership_id": membership.id},
        )

        await self._send_invitation(email, new_role, tenant, user.id)
        return membership

    async def accept_invitation(
        self,
        tenant_id: str,
        user_id: str,
        context: Optional[RequestContext] = None,
    ) -> Membership:
        """
        Activate a pending membership. Called by the invitee.

        Raises:
            NotFound: If there is no membership for the pair.
            InvalidTransition: If the membership is not pending.
        """
        membership = await self._get_membership(tenant_id, user_id)
        if membership.status != MembershipStatus.INVITED:
            raise InvalidTransition(membership.status.value, MembershipStatus.ACTIVE.value)

        updated = await self.store.update_membership(
            membership.model_copy(update={"status": MembershipStatus.ACTIVE}),
            expected_version=membership.version,
        )

        user = await self.store.get_user(user_id)
        if user is not None and user.status == UserStatus.INVITED:
            await self.store.update_user(user.model_copy(update={"status": UserStatus.ACTIVE}))

        await self.audit.record(
            tenant_id=tenant_id,
            actor_id=user_id,
            action=AuditAction.ACCEPT_INVITE,
            resource=MEMBERS_RESOURCE,
            resource_id=updated.id,
            changes={"role": updated.role.value},
            context=context,
        )
        await self._propagate(user_id, tenant_id)
        return updated

    # =========================================================================
    # Role and Status Changes
    # =========================================================================

    async def update_role(
        self,
        tenant_id: str,
        target_user_id: str,
        new_role: Union[Role, str],
        actor_id: str,
        context: Optional[RequestContext] = None,
    ) -> Membership:
        """
        Change a member's role.

        Raises:
            Unauthorized: If the actor is not an admin, or the role outranks them.
            NotFound: If the tenant or membership does not exist.
            ProtectedRole: If the target ranks at or above the actor.
            LastAdmin: If this would demote the last active admin.
            Conflict: If the membership changed concurrently.
        """
        role = self._parse_role(new_role)
        actor_rank = await self._require_admin(tenant_id, actor_id)
        self._require_assignable(actor_id, tenant_id, actor_rank, role)
        await self._get_tenant(tenant_id)

        target = await self._get_membership(tenant_id, target_user_id)
        await self._check_peer(tenant_id, actor_id, actor_rank, target, AuditAction.UPDATE_ROLE, context)

        if target.role == role:
            return target

        roster_version = await self._guard_last_admin(
            target, role, target.status, actor_id, AuditAction.UPDATE_ROLE, context
        )
        updated = await self.store.update_membership(
            target.model_copy(update={"role": role}),
            expected_version=target.version,
            expected_roster_version=roster_version,
        )

        await self.audit.record(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action=AuditAction.UPDATE_ROLE,
            resource=MEMBERS_RESOURCE,
            resource_id=updated.id,
            changes={
                "target_user_id": target_user_id,
                "old_role": target.role.value,
                "new_role": role.value,
            },
            context=context,
        )
        logger.info(
            f"Member role updated: {target.role.value} -> {role.value}",
            extra={"target_tenant_id": tenant_id, "membership_id": updated.id},
        )
        await self._propagate(target_user_id, tenant_id)
        return updated

    async def remove(
        self,
        tenant_id: str,
        target_user_id: str,
        actor_id: str,
        context: Optional[RequestContext] = None,
    ) -> Membership:
        """
        Remove a member. The row is kept with status removed.

        Raises:
            Unauthorized, NotFound, ProtectedRole, LastAdmin, Conflict
        """
        return await self._change_status(
            tenant_id,
            target_user_id,
            MembershipStatus.REMOVED,
            AuditAction.REMOVE_MEMBER,
            actor_id,
            context,
        )

    async def suspend(
        self,
        tenant_id: str,
        target_user_id: str,
        actor_id: str,
        context: Optional[RequestContext] = None,
    ) -> Membership:
        """
        Temporarily lock a member out of a tenant.

        Raises:
            Unauthorized, NotFound, ProtectedRole, LastAdmin, InvalidTransition, Conflict
        """
        return await self._change_status(
            tenant_id,
            target_user_id,
            MembershipStatus.SUSPENDED,
            AuditAction.SUSPEND_MEMBER,
            actor_id,
            context,
        )

    async def reinstate(
        self,
        tenant_id: str,
        target_user_id: str,
        actor_id: str,
        context: Optional[RequestContext] = None,
    ) -> Membership:
        """
        Lift a suspension.

        Restores privileges, so peer protection does not apply, but the
        target's role must not outrank the actor.

        Raises:
            Unauthorized, NotFound, InvalidTransition, Conflict
        """
        actor_rank = await self._require_admin(tenant_id, actor_id)
        await self._get_tenant(tenant_id)
        target = await self._get_membership(tenant_id, target_user_id)
        self._require_assignable(actor_id, tenant_id, actor_rank, target.role)

        if target.status != MembershipStatus.SUSPENDED:
            raise InvalidTransition(target.status.value, MembershipStatus.ACTIVE.value)

        updated = await self.store.update_membership(
            target.model_copy(update={"status": MembershipStatus.ACTIVE}),
            expected_version=target.version,
        )
        await self.audit.record(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action=AuditAction.REINSTATE_MEMBER,
            resource=MEMBERS_RESOURCE,
            resource_id=updated.id,
            changes={"target_user_id": target_user_id, "role": updated.role.value},
            context=context,
        )
        await self._propagate(target_user_id, tenant_id)
        return updated

    async def _change_status(
        self,
        tenant_id: str,
        target_user_id: str,
        new_status: MembershipStatus,
        action: AuditAction,
        actor_id: str,
        context: Optional[RequestContext],
    ) -> Membership:
        actor_rank = await self._require_admin(tenant_id, actor_id)
        await self._get_tenant(tenant_id)

        target = await self._get_membership(tenant_id, target_user_id)
        await self._check_peer(tenant_id, actor_id, actor_rank, target, action, context)

        if not can_transition(target.status, new_status):
            raise InvalidTransition(target.status.value, new_status.value)

        roster_version = await self._guard_last_admin(
            target, target.role, new_status, actor_id, action, context
        )
        updated = await self.store.update_membership(
            target.model_copy(update={"status": new_status}),
            expected_version=target.version,
            expected_roster_version=roster_version,
        )

        await self.audit.record(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action=action,
            resource=MEMBERS_RESOURCE,
            resource_id=updated.id,
            changes={
                "target_user_id": target_user_id,
                "role": target.role.value,
                "old_status": target.status.value,
                "new_status": new_status.value,
            },
            context=context,
        )
        logger.info(
            f"Member status changed: {target.status.value} -> {new_status.value}",
            extra={"target_tenant_id": tenant_id, "membership_id": updated.id},
        )
        await self._propagate(target_user_id, tenant_id)
        return updated

    # =========================================================================
    # Permission Overrides
    # =========================================================================

    async def grant_permission(
        self,
        tenant_id: str,
        target_user_id: str,
        permission: str,
        actor_id: str,
        context: Optional[RequestContext] = None,
    ) -> Membership:
        """
        Add a tenant-scoped override to a membership.

        Only catalog tokens and resource wildcards can be granted, and only
        by an admin who holds everything being granted.

        Raises:
            ValidationError: If the token is malformed, unknown or global.
            Unauthorized: If the actor is not an admin or lacks the permission.
            NotFound: If the tenant or membership does not exist.
        """
        granted = self._parse_grantable(permission)

        await self._require_admin(tenant_id, actor_id)
        actor_permissions = await self.resolver.resolve(actor_id, tenant_id)
        if isinstance(granted, ResourceWildcard):
            covered = permissions_for_resource(granted.resource)
        else:
            covered = [permission]
        if not actor_permissions.allows_all(covered):
            log_authorization_failure(actor_id, tenant_id, permission, actor_permissions.role)
            raise Unauthorized(required_permission=permission)

        await self._get_tenant(tenant_id)
        target = await self._get_membership(tenant_id, target_user_id)
        if permission in target.permissions:
            return target

        updated = await self.store.update_membership(
            target.model_copy(update={"permissions": target.permissions + [permission]}),
            expected_version=target.version,
        )
        await self.audit.record(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action=AuditAction.GRANT_PERMISSION,
            resource=MEMBERS_RESOURCE,
            resource_id=updated.id,
            changes={"target_user_id": target_user_id, "permission": permission},
            context=context,
        )
        logger.info(f"Permission granted: {permission}", extra={"membership_id": updated.id})
        await self._propagate(target_user_id, tenant_id)
        return updated

    async def revoke_permission(
        self,
        tenant_id: str,
        target_user_id: str,
        permission: str,
        actor_id: str,
        context: Optional[RequestContext] = None,
    ) -> Membership:
        """
        Remove a tenant-scoped override from a membership.

        Revoking an override that is not held is a no-op.

        Raises:
            Unauthorized, NotFound, ProtectedRole, Conflict
        """
        actor_rank = await self._require_admin(tenant_id, actor_id)
        await self._get_tenant(tenant_id)
        target = await self._get_membership(tenant_id, target_user_id)
        await self._check_peer(
            tenant_id, actor_id, actor_rank, target, AuditAction.REVOKE_PERMISSION, context
        )

        if permission not in target.permissions:
            return target

        updated = await self.store.update_membership(
            target.model_copy(update={
                "permissions": [p for p in target.permissions if p != permission],
            }),
            expected_version=target.version,
        )
        await self.audit.record(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action=AuditAction.REVOKE_PERMISSION,
            resource=MEMBERS_RESOURCE,
            resource_id=updated.id,
            changes={"target_user_id": target_user_id, "permission": permission},
            context=context,
        )
        await self._propagate(target_user_id, tenant_id)
        return updated

    # =========================================================================
    # Queries
    # =========================================================================

    async def list_members(
        self,
        tenant_id: str,
        actor_id: str,
        include_removed: bool = False,
    ) -> List[MemberDetails]:
        """
        List a tenant's members with their profiles.

        Raises:
            Unauthorized: If the actor lacks members.view.
            NotFound: If the tenant does not exist.
        """
        await self.resolver.require(actor_id, tenant_id, VIEW_PERMISSION)
        await self._get_tenant(tenant_id)

        memberships = await self.store.list_tenant_memberships(
            tenant_id, include_removed=include_removed
        )
        members = []
        for membership in memberships:
            user = await self.store.get_user(membership.user_id)
            members.append(MemberDetails(
                membership=membership,
                email=user.email if user else "",
                display_name=user.display_name if user else "",
            ))
        return members

    async def list_user_memberships(self, user_id: str) -> List[Membership]:
        """Non-removed memberships of a user, for tenant switching."""
        return await self.store.list_user_memberships(user_id)

    # =========================================================================
    # Guards
    # =========================================================================

    @staticmethod
    def _rank_of(permissions: EffectivePermissionSet) -> int:
        if permissions.is_super_actor:
            return SUPERADMIN_RANK
        if permissions.role is None or permissions.is_empty:
            return -1
        return get_role_rank(permissions.role)

    async def _require_admin(self, tenant_id: str, actor_id: str) -> int:
        """Require company-admin rank or higher. Returns the actor's rank."""
        permissions = await self.resolver.resolve(actor_id, tenant_id)
        rank = self._rank_of(permissions)
        if rank < ADMIN_RANK:
            log_authorization_failure(actor_id, tenant_id, MANAGE_PERMISSION, permissions.role)
            raise Unauthorized(required_permission=MANAGE_PERMISSION)
        return rank

    @staticmethod
    def _require_assignable(actor_id: str, tenant_id: str, actor_rank: int, role: Role) -> None:
        if get_role_rank(role) > actor_rank:
            log_authorization_failure(actor_id, tenant_id, f"roles.assign:{role.value}", None)
            raise Unauthorized(internal_message=f"cannot assign {role.value} at rank {actor_rank}")

    async def _check_peer(
        self,
        tenant_id: str,
        actor_id: str,
        actor_rank: int,
        target: Membership,
        action: AuditAction,
        context: Optional[RequestContext],
    ) -> None:
        """Raise ProtectedRole when the actor may not change the target's membership."""
        if target.user_id == actor_id:
            if self.allow_self_demotion:
                return
            error = ProtectedRole(
                message="You cannot change your own membership",
                target_role=target.role.value,
                internal_message="self-demotion disabled",
            )
        elif get_role_rank(target.role) >= actor_rank:
            error = ProtectedRole(
                target_role=target.role.value,
                internal_message=f"target rank {get_role_rank(target.role)} >= actor rank {actor_rank}",
            )
        else:
            return

        await self._record_denial(tenant_id, actor_id, action, target, error, context)
        raise error

    async def _guard_last_admin(
        self,
        target: Membership,
        new_role: Role,
        new_status: MembershipStatus,
        actor_id: str,
        action: AuditAction,
        context: Optional[RequestContext],
    ) -> Optional[int]:
        """
        Reject a change that would leave the tenant without an active admin.

        Returns:
            The roster version to compare on write when the change reduces
            the number of active admins, else None.
        """
        was_admin = target.is_active and get_role_rank(target.role) >= ADMIN_RANK
        stays_admin = (
            new_status == MembershipStatus.ACTIVE and get_role_rank(new_role) >= ADMIN_RANK
        )
        if not self.enforce_last_admin or not was_admin or stays_admin:
            return None

        # Read the roster version first so a concurrent admin-reducing
        # write between here and our own write turns into a Conflict.
        roster_version = await self.store.get_roster_version(target.tenant_id)
        memberships = await self.store.list_tenant_memberships(target.tenant_id)
        other_admins = [
            m for m in memberships
            if m.id != target.id and m.is_active and get_role_rank(m.role) >= ADMIN_RANK
        ]
        if not other_admins:
            error = LastAdmin(internal_message=f"membership {target.id} is the last admin")
            await self._record_denial(target.tenant_id, actor_id, action, target, error, context)
            raise error
        return roster_version

    async def _record_denial(
        self,
        tenant_id: str,
        actor_id: str,
        action: AuditAction,
        target: Membership,
        error: AccessCoreError,
        context: Optional[RequestContext],
    ) -> None:
        logger.warning(
            f"Membership change denied: {error.error_code.value}",
            extra={
                "actor": actor_id,
                "target_tenant_id": tenant_id,
                "membership_id": target.id,
                "security_event": "membership_change_denied",
            },
        )
        await self.audit.record(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action=action,
            resource=MEMBERS_RESOURCE,
            resource_id=target.id,
            changes={
                "target_user_id": target.user_id,
                "role": target.role.value,
                "reason": error.error_code.value,
            },
            status=AuditStatus.FAILURE,
            context=context,
        )

    # =========================================================================
    # Helper Methods
    # =========================================================================

    @staticmethod
    def _parse_role(value: Union[Role, str]) -> Role:
        role = parse_role(value)
        if role is None:
            raise ValidationError(f"Unknown role: {value}", field="role")
        return role

    @staticmethod
    def _parse_grantable(permission: str) -> Union[ExactPermission, ResourceWildcard]:
        token = parse_token(permission)
        if isinstance(token, ExactPermission) and is_known_permission(permission):
            return token
        if isinstance(token, ResourceWildcard) and permissions_for_resource(token.resource):
            return token
        raise ValidationError(f"Permission cannot be granted: {permission}", field="permission")

    async def _get_tenant(self, tenant_id: str) -> Tenant:
        tenant = await self.store.get_tenant(tenant_id)
        if tenant is None:
            raise NotFound("company", tenant_id, error_code=ErrorCode.TENANT_NOT_FOUND)
        return tenant

    async def _get_membership(self, tenant_id: str, user_id: str) -> Membership:
        membership = await self.store.get_membership(user_id, tenant_id)
        if membership is None:
            raise NotFound("membership", user_id, error_code=ErrorCode.MEMBERSHIP_NOT_FOUND)
        return membership

    async def _get_or_create_user(self, email: str, display_name: str) -> User:
        user = await self.store.get_user_by_email(email)
        if user is not None:
            return user
        try:
            return await self.store.create_user(
                User(email=email, display_name=display_name or "", status=UserStatus.INVITED)
            )
        except Conflict:
            # Created by a concurrent invite
            user = await self.store.get_user_by_email(email)
            if user is None:
                raise
            return user

    async def _send_invitation(self, email: str, role: Role, tenant: Tenant, user_id: str) -> None:
        if self.notifier is None:
            return
        try:
            sent = await self.notifier.send_invitation(
                to=email,
                role=role.value,
                company_name=tenant.name,
                user_id=user_id,
                tenant_id=tenant.id,
            )
        except Exception as e:
            logger.warning(f"Invitation email failed: {e}", extra={"target_tenant_id": tenant.id})
            return
        if not sent:
            logger.warning("Invitation email not delivered", extra={"target_tenant_id": tenant.id})

    async def _propagate(self, user_id: str, tenant_id: str) -> None:
        if self.hub is None:
            return
        try:
            await self.hub.notify_user(user_id, tenant_id)
        except Exception as e:
            logger.warning(f"Permission propagation failed: {e}")
