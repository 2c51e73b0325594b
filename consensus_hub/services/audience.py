"""
Audience Resolver: who is asked to respond to a discussion.

A creation request names participants three ways (individual users,
departments, roles). Resolution expands departments and roles through the
membership directory and unions everything into one deduplicated set.
Membership is read once, at creation time; later membership changes never
touch an existing discussion's audience.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import User, UserDepartment, UserRole
from .errors import ValidationError

logger = logging.getLogger(__name__)


# =============================================================================
# MEMBERSHIP DIRECTORY
# =============================================================================


class MembershipDirectory(ABC):
    """Read-only view of user <-> department / role membership."""

    @abstractmethod
    async def members_of_departments(self, department_ids: set[UUID]) -> set[UUID]:
        pass

    @abstractmethod
    async def members_of_roles(self, role_ids: set[UUID]) -> set[UUID]:
        pass

    @abstractmethod
    async def existing_user_ids(self, user_ids: set[UUID]) -> set[UUID]:
        """Return the subset of user_ids that belong to real users."""
        pass


class SqlMembershipDirectory(MembershipDirectory):
    """Membership directory backed by the user_departments / user_roles tables."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def members_of_departments(self, department_ids: set[UUID]) -> set[UUID]:
        if not department_ids:
            return set()
        result = await self._session.execute(
            select(UserDepartment.user_id).where(
                UserDepartment.department_id.in_(department_ids)
            )
        )
        return set(result.scalars().all())

    async def members_of_roles(self, role_ids: set[UUID]) -> set[UUID]:
        if not role_ids:
            return set()
        result = await self._session.execute(
            select(UserRole.user_id).where(UserRole.role_id.in_(role_ids))
        )
        return set(result.scalars().all())

    async def existing_user_ids(self, user_ids: set[UUID]) -> set[UUID]:
        if not user_ids:
            return set()
        result = await self._session.execute(
            select(User.id).where(User.id.in_(user_ids))
        )
        return set(result.scalars().all())


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass(frozen=True)
class AudienceCriteria:
    """Selection criteria from a discussion-creation request."""
    creator_id: UUID
    user_ids: Iterable[UUID] = ()
    department_ids: Iterable[UUID] = ()
    role_ids: Iterable[UUID] = ()
    creator_participates: bool = False


@dataclass(frozen=True)
class ResolvedAudience:
    """Final deduplicated participant set."""
    participant_ids: frozenset[UUID]


# =============================================================================
# RESOLVER
# =============================================================================


class AudienceResolver:
    """Turns selection criteria into a deduplicated participant set."""

    # A discussion hand-picked from individual users needs two parties
    MIN_EXPLICIT_PARTICIPANTS = 2

    def __init__(self, directory: MembershipDirectory):
        self._directory = directory

    async def resolve(self, criteria: AudienceCriteria) -> ResolvedAudience:
        """
        Resolve criteria to participant ids.

        Raises:
            ValidationError: unknown user ids, empty result, or fewer than two
                participants when only individual users were selected.
        """
        user_ids = set(criteria.user_ids)
        department_ids = set(criteria.department_ids)
        role_ids = set(criteria.role_ids)

        if user_ids:
            known = await self._directory.existing_user_ids(user_ids)
            unknown = user_ids - known
            if unknown:
                raise ValidationError(
                    f"Unknown participant ids: {', '.join(sorted(str(u) for u in unknown))}"
                )

        from_departments = await self._directory.members_of_departments(department_ids)
        from_roles = await self._directory.members_of_roles(role_ids)

        participants = user_ids | from_departments | from_roles
        if criteria.creator_participates:
            participants.add(criteria.creator_id)

        if not participants:
            raise ValidationError(
                "No participants resolved: select users, or departments/roles with members"
            )

        if not (department_ids or role_ids) and len(participants) < self.MIN_EXPLICIT_PARTICIPANTS:
            raise ValidationError(
                f"At least {self.MIN_EXPLICIT_PARTICIPANTS} participants are required "
                f"(resolved {len(participants)})"
            )

        logger.debug(
            f"Resolved audience of {len(participants)}: {len(user_ids)} direct, "
            f"{len(from_departments)} via departments, {len(from_roles)} via roles"
        )

        return ResolvedAudience(participant_ids=frozenset(participants))
