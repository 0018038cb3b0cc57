"""
Tenant lifecycle service.

This module provides:
- Company creation with exactly one active owner admin
- Updates restricted to an allow-list of fields
- Deletion, suspension and reactivation by platform super-actors
- Usage counts against plan limits

Security Notes:
- update_tenant rejects any field outside TENANT_MUTABLE_FIELDS, so plan,
  status and limits cannot be changed through it
- delete_tenant is never available to a tenant-local admin; the deletion
  entry is written before the cascade and survives it
"""

import logging
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from access_core.audit.service import AuditLog
from access_core.exceptions import ErrorCode, NotFound, Unauthorized, ValidationError
from access_core.notifications import Notifier
from access_core.rbac.resolver import AuthorizationResolver, log_authorization_failure
from access_core.rbac.roles import ADMIN_RANK, Role
from access_core.rbac.tokens import GLOBAL_WILDCARD
from access_core.realtime.hub import PropagationHub
from access_core.storage.base import TenancyStore
from access_core.types.tenancy import (
    PLAN_LIMITS,
    TENANT_MUTABLE_FIELDS,
    AuditAction,
    Membership,
    MembershipStatus,
    RequestContext,
    Tenant,
    TenantPlan,
    TenantStatus,
    TenantUsage,
    User,
    UserStatus,
    new_id,
)

logger = logging.getLogger(__name__)

TENANT_RESOURCE = "tenant"
VIEW_PERMISSION = "tenant.view"
UPDATE_PERMISSION = "tenant.update"


class TenantService:
    """Business logic for company lifecycle operations."""

    def __init__(
        self,
        store: TenancyStore,
        resolver: AuthorizationResolver,
        audit: AuditLog,
        hub: Optional[PropagationHub] = None,
        notifier: Optional[Notifier] = None,
        self_service_creation: bool = True,
        cascade_audit: bool = True,
    ):
        """
        Args:
            store: Durable tenancy store.
            resolver: Authorization resolver.
            audit: Audit log.
            hub: Optional propagation hub.
            notifier: Optional notifier for welcome emails.
            self_service_creation: Let any authenticated user create a company.
            cascade_audit: Purge a deleted company's audit entries.
        """
        self.store = store
        self.resolver = resolver
        self.audit = audit
        self.hub = hub
        self.notifier = notifier
        self.self_service_creation = self_service_creation
        self.cascade_audit = cascade_audit

    # =========================================================================
    # Creation
    # =========================================================================

    async def create_tenant(
        self,
        name: str,
        owner_email: str,
        owner_name: str,
        plan: Union[TenantPlan, str],
        actor_id: str,
        context: Optional[RequestContext] = None,
    ) -> Tenant:
        """
        Create a company and its owner membership.

        The owner is made an active COMPANY_ADMIN directly, without going
        through an invitation.

        Raises:
            Unauthorized: If there is no actor, or creation is restricted to
                super-actors and the actor is not one.
            ValidationError: If the name, email or plan is invalid.
        """
        if not actor_id:
            raise Unauthorized(internal_message="tenant creation without an actor")
        if not self.self_service_creation and not await self.resolver.is_super_actor(actor_id):
            log_authorization_failure(actor_id, None, GLOBAL_WILDCARD, None)
            raise Unauthorized(required_permission=GLOBAL_WILDCARD)

        tenant_plan = self._parse_plan(plan)
        owner_email = (owner_email or "").strip().lower()
        if "@" not in owner_email:
            raise ValidationError("A valid owner email is required", field="owner_email")

        try:
            tenant = Tenant(
                name=(name or "").strip(),
                plan=tenant_plan,
                limits=PLAN_LIMITS[tenant_plan],
            )
        except PydanticValidationError:
            raise ValidationError("Company name must be 1-200 characters", field="name")

        owner = await self._get_or_create_owner(owner_email, owner_name)

        tenant = await self.store.create_tenant(tenant)
        try:
            membership = await self.store.create_membership(Membership(
                user_id=owner.id,
                tenant_id=tenant.id,
                role=Role.COMPANY_ADMIN,
                status=MembershipStatus.ACTIVE,
                invited_by=actor_id,
            ))
        except Exception:
            logger.error("Owner membership failed, rolling back company", extra={"target_tenant_id": tenant.id})
            await self.store.delete_tenant(tenant.id)
            raise

        await self.audit.record(
            tenant_id=tenant.id,
            actor_id=actor_id,
            action=AuditAction.CREATE_COMPANY,
            resource=TENANT_RESOURCE,
            resource_id=tenant.id,
            changes={
                "name": tenant.name,
                "plan": tenant.plan.value,
                "owner_email": owner_email,
                "owner_user_id": owner.id,
                "membership_id": membership.id,
            },
            context=context,
        )
        logger.info(f"Company created: {tenant.id}", extra={"target_tenant_id": tenant.id})

        await self._send_welcome(owner_email, owner_name, tenant)
        return tenant

    # =========================================================================
    # Updates
    # =========================================================================

    async def update_tenant(
        self,
        tenant_id: str,
        updates: Dict[str, Any],
        actor_id: str,
        context: Optional[RequestContext] = None,
    ) -> Tenant:
        """
        Update a company's mutable fields.

        Raises:
            Unauthorized: If the actor is not a company admin.
            ValidationError: If updates names a field outside the allow-list
                or a value is invalid.
            NotFound: If the company does not exist.
            Conflict: If the company changed concurrently.
        """
        permissions = await self.resolver.resolve(actor_id, tenant_id)
        rank = await self.resolver.get_actor_rank(actor_id, tenant_id)
        if rank is None or rank < ADMIN_RANK:
            log_authorization_failure(actor_id, tenant_id, UPDATE_PERMISSION, permissions.role)
            raise Unauthorized(required_permission=UPDATE_PERMISSION)

        if not updates:
            raise ValidationError("No fields to update")
        rejected = sorted(set(updates) - TENANT_MUTABLE_FIELDS)
        if rejected:
            raise ValidationError(
                f"Field cannot be updated: {rejected[0]}",
                field=rejected[0],
                error_code=ErrorCode.FIELD_NOT_MUTABLE,
            )

        tenant = await self._get_tenant(tenant_id)
        if "name" in updates and isinstance(updates["name"], str):
            updates = {**updates, "name": updates["name"].strip()}
        try:
            candidate = Tenant.model_validate({**tenant.model_dump(), **updates})
        except PydanticValidationError as e:
            field = str(e.errors()[0]["loc"][0]) if e.errors() else None
            raise ValidationError("Invalid company data", field=field)

        diff = {
            field: {"old": getattr(tenant, field), "new": getattr(candidate, field)}
            for field in sorted(updates)
            if getattr(tenant, field) != getattr(candidate, field)
        }
        if not diff:
            return tenant

        updated = await self.store.update_tenant(candidate, expected_version=tenant.version)
        await self.audit.record(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action=AuditAction.UPDATE_COMPANY,
            resource=TENANT_RESOURCE,
            resource_id=tenant_id,
            changes=diff,
            context=context,
        )
        logger.info(f"Company updated: {', '.join(diff)}", extra={"target_tenant_id": tenant_id})
        return updated

    async def suspend_tenant(
        self,
        tenant_id: str,
        actor_id: str,
        context: Optional[RequestContext] = None,
    ) -> Tenant:
        """Suspend a company. Every member resolves to an empty set until reactivated."""
        return await self._set_status(
            tenant_id, TenantStatus.SUSPENDED, AuditAction.SUSPEND_COMPANY, actor_id, context
        )

    async def reactivate_tenant(
        self,
        tenant_id: str,
        actor_id: str,
        context: Optional[RequestContext] = None,
    ) -> Tenant:
        return await self._set_status(
            tenant_id, TenantStatus.ACTIVE, AuditAction.REACTIVATE_COMPANY, actor_id, context
        )

    async def _set_status(
        self,
        tenant_id: str,
        status: TenantStatus,
        action: AuditAction,
        actor_id: str,
        context: Optional[RequestContext],
    ) -> Tenant:
        await self._require_super_actor(actor_id, tenant_id)
        tenant = await self._get_tenant(tenant_id)
        if tenant.status == status:
            return tenant

        updated = await self.store.update_tenant(
            tenant.model_copy(update={"status": status}),
            expected_version=tenant.version,
        )
        await self.audit.record(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action=action,
            resource=TENANT_RESOURCE,
            resource_id=tenant_id,
            changes={"old_status": tenant.status.value, "new_status": status.value},
            context=context,
        )
        logger.info(f"Company status changed to {status.value}", extra={"target_tenant_id": tenant_id})
        await self._propagate(tenant_id)
        return updated

    # =========================================================================
    # Deletion
    # =========================================================================

    async def delete_tenant(
        self,
        tenant_id: str,
        actor_id: str,
        context: Optional[RequestContext] = None,
    ) -> bool:
        """
        Delete a company, its memberships and (by policy) its audit entries.

        The DELETE_COMPANY entry is appended before the cascade and is kept
        by it.

        Raises:
            Unauthorized: If the actor is not a platform super-actor.
            NotFound: If the company does not exist.
        """
        await self._require_super_actor(actor_id, tenant_id)
        tenant = await self._get_tenant(tenant_id)
        memberships = await self.store.list_tenant_memberships(tenant_id, include_removed=True)

        entry_id = new_id()
        await self.audit.record(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action=AuditAction.DELETE_COMPANY,
            resource=TENANT_RESOURCE,
            resource_id=tenant_id,
            changes={
                "name": tenant.name,
                "plan": tenant.plan.value,
                "memberships": len(memberships),
            },
            context=context,
            entry_id=entry_id,
        )

        deleted = await self.store.delete_tenant(tenant_id)
        if self.cascade_audit:
            purged = await self.audit.purge_tenant(tenant_id, keep_entry_id=entry_id)
            logger.info(f"Purged {purged} audit entries", extra={"target_tenant_id": tenant_id})

        logger.info(f"Company deleted: {tenant_id}", extra={"target_tenant_id": tenant_id})
        await self._propagate(tenant_id)
        return deleted

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_tenant(self, tenant_id: str, actor_id: str) -> Tenant:
        """
        Raises:
            Unauthorized: If the actor lacks tenant.view.
            NotFound: If the company does not exist.
        """
        await self.resolver.require(actor_id, tenant_id, VIEW_PERMISSION)
        return await self._get_tenant(tenant_id)

    async def get_tenant_usage(self, tenant_id: str, actor_id: str) -> TenantUsage:
        """Member counts compared against the plan limits. Reported, not enforced."""
        await self.resolver.require(actor_id, tenant_id, VIEW_PERMISSION)
        tenant = await self._get_tenant(tenant_id)
        memberships = await self.store.list_tenant_memberships(tenant_id)

        return TenantUsage(
            tenant_id=tenant_id,
            plan=tenant.plan,
            current_users=sum(1 for m in memberships if m.status == MembershipStatus.ACTIVE),
            pending_invites=sum(1 for m in memberships if m.status == MembershipStatus.INVITED),
            max_users=tenant.limits.max_users,
            max_projects=tenant.limits.max_projects,
        )

    # =========================================================================
    # Helper Methods
    # =========================================================================

    async def _require_super_actor(self, actor_id: str, tenant_id: str) -> None:
        if not await self.resolver.is_super_actor(actor_id):
            log_authorization_failure(actor_id, tenant_id, GLOBAL_WILDCARD, None)
            raise Unauthorized(required_permission=GLOBAL_WILDCARD)

    async def _get_tenant(self, tenant_id: str) -> Tenant:
        tenant = await self.store.get_tenant(tenant_id)
        if tenant is None:
            raise NotFound("company", tenant_id, error_code=ErrorCode.TENANT_NOT_FOUND)
        return tenant

    @staticmethod
    def _parse_plan(plan: Union[TenantPlan, str]) -> TenantPlan:
        if isinstance(plan, TenantPlan):
            return plan
        try:
            return TenantPlan(str(plan).strip().lower())
        except ValueError:
            raise ValidationError(f"Unknown plan: {plan}", field="plan")

    async def _get_or_create_owner(self, email: str, name: str) -> User:
        owner = await self.store.get_user_by_email(email)
        if owner is None:
            return await self.store.create_user(
                User(email=email, display_name=name or "", status=UserStatus.ACTIVE)
            )
        if owner.status == UserStatus.INVITED:
            owner = await self.store.update_user(owner.model_copy(update={"status": UserStatus.ACTIVE}))
        return owner

    async def _send_welcome(self, email: str, owner_name: str, tenant: Tenant) -> None:
        if self.notifier is None:
            return
        try:
            sent = await self.notifier.send_welcome(email, owner_name, tenant.name)
        except Exception as e:
            logger.warning(f"Welcome email failed: {e}", extra={"target_tenant_id": tenant.id})
            return
        if not sent:
            logger.warning("Welcome email not delivered", extra={"target_tenant_id": tenant.id})

    async def _propagate(self, tenant_id: str) -> None:
        if self.hub is None:
            return
        try:
            await self.hub.notify_tenant(tenant_id)
        except Exception as e:
            logger.warning(f"Permission propagation failed: {e}")
