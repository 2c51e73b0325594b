"""
Tests for audience resolution.

These tests verify:
1. Users, departments and roles union into one deduplicated set
2. Unknown user ids are rejected
3. Hand-picked audiences need at least two participants
"""

from uuid import uuid4

import pytest

from consensus_hub.services.audience import (
    AudienceCriteria,
    AudienceResolver,
    MembershipDirectory,
    SqlMembershipDirectory,
)
from consensus_hub.services.errors import ValidationError


class StaticDirectory(MembershipDirectory):
    """In-memory directory for resolver-only tests."""

    def __init__(self, users=(), departments=None, roles=None):
        self.users = set(users)
        self.departments = departments or {}
        self.roles = roles or {}

    async def members_of_departments(self, department_ids):
        return set().union(*(self.departments.get(d, set()) for d in department_ids))

    async def members_of_roles(self, role_ids):
        return set().union(*(self.roles.get(r, set()) for r in role_ids))

    async def existing_user_ids(self, user_ids):
        return set(user_ids) & self.users


class TestAudienceResolver:

    async def test_union_of_users_and_department_deduplicates(self):
        a, b, c, creator = uuid4(), uuid4(), uuid4(), uuid4()
        dept = uuid4()
        resolver = AudienceResolver(
            StaticDirectory(users={a, b, c, creator}, departments={dept: {b, c}})
        )

        audience = await resolver.resolve(
            AudienceCriteria(creator_id=creator, user_ids=[a, b], department_ids=[dept])
        )

        assert audience.participant_ids == {a, b, c}
        assert creator not in audience.participant_ids

    async def test_resolution_is_order_independent(self):
        a, b, c = uuid4(), uuid4(), uuid4()
        dept = uuid4()
        directory = StaticDirectory(users={a, b, c}, departments={dept: {b, c}})
        resolver = AudienceResolver(directory)

        first = await resolver.resolve(
            AudienceCriteria(creator_id=uuid4(), user_ids=[a, b], department_ids=[dept])
        )
        second = await resolver.resolve(
            AudienceCriteria(creator_id=uuid4(), user_ids=[b, a], department_ids=[dept])
        )

        assert first.participant_ids == second.participant_ids

    async def test_creator_included_when_participating(self):
        a, creator = uuid4(), uuid4()
        resolver = AudienceResolver(StaticDirectory(users={a, creator}))

        audience = await resolver.resolve(
            AudienceCriteria(creator_id=creator, user_ids=[a], creator_participates=True)
        )

        assert audience.participant_ids == {a, creator}

    async def test_single_explicit_user_is_rejected(self):
        a = uuid4()
        resolver = AudienceResolver(StaticDirectory(users={a}))

        with pytest.raises(ValidationError, match="At least 2"):
            await resolver.resolve(AudienceCriteria(creator_id=uuid4(), user_ids=[a]))

    async def test_single_member_department_is_allowed(self):
        a, dept = uuid4(), uuid4()
        resolver = AudienceResolver(StaticDirectory(users={a}, departments={dept: {a}}))

        audience = await resolver.resolve(
            AudienceCriteria(creator_id=uuid4(), department_ids=[dept])
        )

        assert audience.participant_ids == {a}

    async def test_empty_department_is_rejected(self):
        resolver = AudienceResolver(StaticDirectory(departments={uuid4(): set()}))

        with pytest.raises(ValidationError, match="No participants"):
            await resolver.resolve(
                AudienceCriteria(creator_id=uuid4(), department_ids=[uuid4()])
            )

    async def test_unknown_user_is_rejected(self):
        a, ghost = uuid4(), uuid4()
        resolver = AudienceResolver(StaticDirectory(users={a}))

        with pytest.raises(ValidationError, match="Unknown participant"):
            await resolver.resolve(
                AudienceCriteria(creator_id=uuid4(), user_ids=[a, ghost])
            )


class TestSqlMembershipDirectory:

    async def test_department_and_role_members_from_database(
        self, session, alice, bob, carol, make_department, make_role
    ):
        engineering = await make_department("Engineering", [alice, bob])
        leads = await make_role("Lead", [bob, carol])
        resolver = AudienceResolver(SqlMembershipDirectory(session))

        audience = await resolver.resolve(
            AudienceCriteria(
                creator_id=alice.id,
                department_ids=[engineering.id],
                role_ids=[leads.id],
            )
        )

        assert audience.participant_ids == {alice.id, bob.id, carol.id}

    async def test_existing_user_ids(self, session, alice, bob):
        directory = SqlMembershipDirectory(session)
        ghost = uuid4()

        known = await directory.existing_user_ids({alice.id, bob.id, ghost})

        assert known == {alice.id, bob.id}
