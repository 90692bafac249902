"""
Admin Grant Service - attributable manual grants and account changes.

NO DICTIONARIES - All operations use strongly typed domain models.

Every action writes an AdminAction audit row in the same transaction as
its effect. Role checks belong to the HTTP layer (require_admin_role).
"""

from datetime import UTC, datetime
from uuid import UUID

from structlog import get_logger

from proofai.exceptions import (
    AccountNotFoundError,
    CertificationGrantNotFoundError,
    UpstreamUnavailableError,
)
from proofai.models.api import AdminActionType, GrantSource, UserRole
from proofai.models.domain import (
    AdminActionRecord,
    CertificationGrantData,
    CertificationGrantIntent,
    CreditGrantData,
    CreditGrantIntent,
    UserAccountData,
)
from proofai.observability.metrics import metrics
from proofai.services.plans import PLANS, normalize_plan_name
from proofai.services.record_store import RecordStore

logger = get_logger(__name__)


class AdminGrantService:
    """Admin actions against the record store, each one audited."""

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    async def _require_account(self, user_id: UUID) -> UserAccountData:
        account = await self.store.get_account(user_id)
        if account is None:
            raise AccountNotFoundError(user_id)
        return account

    async def _audit(
        self,
        actor_id: UUID,
        action: AdminActionType,
        target_user_id: UUID | None,
        reason: str | None,
        detail: str,
    ) -> None:
        await self.store.append_admin_action(
            AdminActionRecord(
                admin_id=actor_id,
                action=action.value,
                target_user_id=target_user_id,
                reason=reason,
                detail=detail,
            )
        )
        await self.store.commit()
        metrics.record_admin_action(action.value)
        logger.info(
            "admin_action",
            admin_id=str(actor_id),
            action=action.value,
            target_user_id=str(target_user_id) if target_user_id else None,
            reason=reason,
            detail=detail,
        )

    async def grant_credits(
        self,
        actor_id: UUID,
        user_id: UUID,
        amount: int,
        expires_at: datetime | None = None,
        reason: str | None = None,
    ) -> CreditGrantData:
        """
        Grant credits to a user.

        Raises:
            ValueError: amount is not positive, or expires_at is in the past
            AccountNotFoundError: No such user
        """
        if expires_at is not None and expires_at <= datetime.now(UTC):
            raise ValueError(f"expires_at must be in the future: {expires_at.isoformat()}")
        intent = CreditGrantIntent(
            user_id=user_id,
            credits=amount,
            expires_at=expires_at,
            granted_by=actor_id,
            reason=reason,
            source=GrantSource.ADMIN,
        )

        try:
            await self._require_account(user_id)
            grant = await self.store.insert_credit_grant(intent)
            await self._audit(
                actor_id,
                AdminActionType.GRANT_CREDITS,
                user_id,
                reason,
                f"grant_id={grant.grant_id} credits={amount} "
                f"expires_at={expires_at.isoformat() if expires_at else 'never'}",
            )
        except (AccountNotFoundError, UpstreamUnavailableError):
            await self.store.rollback()
            raise
        return grant

    async def grant_certification(
        self, actor_id: UUID, user_id: UUID, reason: str | None = None
    ) -> CertificationGrantData:
        """
        Grant court certification through a revocable grant row.

        The profile flag is left alone so revoking the grant revokes access.

        Raises:
            AccountNotFoundError: No such user
        """
        try:
            await self._require_account(user_id)
            grant = await self.store.insert_certification_grant(
                CertificationGrantIntent(
                    user_id=user_id,
                    granted_by=actor_id,
                    reason=reason,
                    source=GrantSource.ADMIN,
                )
            )
            await self._audit(
                actor_id,
                AdminActionType.GRANT_CERTIFICATION,
                user_id,
                reason,
                f"grant_id={grant.grant_id}",
            )
        except (AccountNotFoundError, UpstreamUnavailableError):
            await self.store.rollback()
            raise
        return grant

    async def revoke_certification(
        self, actor_id: UUID, grant_id: UUID, reason: str | None = None
    ) -> CertificationGrantData:
        """
        Mark a certification grant invalid. Grants are never deleted.

        Raises:
            CertificationGrantNotFoundError: No such grant
        """
        try:
            grant = await self.store.set_certification_validity(grant_id, False)
            if grant is None:
                raise CertificationGrantNotFoundError(grant_id)
            await self._audit(
                actor_id,
                AdminActionType.REVOKE_CERTIFICATION,
                grant.user_id,
                reason,
                f"grant_id={grant_id}",
            )
        except (CertificationGrantNotFoundError, UpstreamUnavailableError):
            await self.store.rollback()
            raise
        return grant

    async def set_plan_override(
        self, actor_id: UUID, user_id: UUID, enabled: bool, reason: str | None = None
    ) -> UserAccountData:
        """
        Turn the unlimited-access plan override on or off.

        Raises:
            AccountNotFoundError: No such user
        """
        try:
            account = await self.store.update_account(user_id, plan_override=enabled)
            await self._audit(
                actor_id,
                AdminActionType.SET_PLAN_OVERRIDE,
                user_id,
                reason,
                f"enabled={enabled}",
            )
        except (AccountNotFoundError, UpstreamUnavailableError):
            await self.store.rollback()
            raise
        return account

    async def set_plan(
        self, actor_id: UUID, user_id: UUID, plan: str, reason: str | None = None
    ) -> UserAccountData:
        """
        Set the plan stored on a user's profile.

        Setting lifetime grants unlimited access. Other plans name the account
        plan only; paid minutes still come from a live subscription grant.

        Raises:
            ValueError: plan is not in the catalog
            AccountNotFoundError: No such user
        """
        normalized = normalize_plan_name(plan)
        if normalized not in PLANS:
            raise ValueError(f"Unknown plan: {plan}")

        try:
            previous = await self._require_account(user_id)
            account = await self.store.update_account(user_id, plan=normalized)
            await self._audit(
                actor_id,
                AdminActionType.SET_PLAN,
                user_id,
                reason,
                f"plan={previous.plan}->{normalized}",
            )
        except (AccountNotFoundError, UpstreamUnavailableError):
            await self.store.rollback()
            raise
        return account

    async def set_role(
        self, actor_id: UUID, user_id: UUID, role: UserRole, reason: str | None = None
    ) -> UserAccountData:
        """
        Change a user's role.

        Raises:
            AccountNotFoundError: No such user
        """
        try:
            previous = await self._require_account(user_id)
            account = await self.store.update_account(user_id, role=role)
            await self._audit(
                actor_id,
                AdminActionType.SET_ROLE,
                user_id,
                reason,
                f"role={previous.role.value}->{role.value}",
            )
        except (AccountNotFoundError, UpstreamUnavailableError):
            await self.store.rollback()
            raise
        return account
