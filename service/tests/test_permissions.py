"""
Tests for the permission resolver.
"""

import pytest

from conftest import (
    ADMIN_ID,
    GROUP,
    OPERATOR_ID,
    STRANGER_ID,
    InMemoryOperators,
    InMemorySettings,
    make_admin_check,
)
from ledger_bot.models import Operator
from ledger_bot.services.permissions import (
    REASON_ADMIN,
    REASON_ALL_USERS,
    REASON_DENIED,
    REASON_OPERATOR,
    PermissionResolver,
)


@pytest.fixture
def stores():
    settings_store = InMemorySettings()
    operators = InMemoryOperators()
    operators.add(Operator(group_id=GROUP, user_id=OPERATOR_ID, username="bob"))
    return settings_store, operators


class TestPermissionResolver:
    @pytest.mark.asyncio
    async def test_admin(self, stores):
        resolver = PermissionResolver(make_admin_check({ADMIN_ID}), *stores)
        result = await resolver.authorize(GROUP, ADMIN_ID)
        assert result.allowed and result.reason == REASON_ADMIN
        assert result.is_admin

    @pytest.mark.asyncio
    async def test_operator(self, stores):
        resolver = PermissionResolver(make_admin_check({ADMIN_ID}), *stores)
        result = await resolver.authorize(GROUP, OPERATOR_ID)
        assert result.allowed and result.reason == REASON_OPERATOR
        assert not result.is_admin

    @pytest.mark.asyncio
    async def test_stranger_denied(self, stores):
        resolver = PermissionResolver(make_admin_check({ADMIN_ID}), *stores)
        result = await resolver.authorize(GROUP, STRANGER_ID)
        assert not result.allowed
        assert result.reason == REASON_DENIED

    @pytest.mark.asyncio
    async def test_all_users_mode(self, stores):
        settings_store, operators = stores
        settings_store.upsert(GROUP, all_users_mode=True)
        resolver = PermissionResolver(make_admin_check(set()), settings_store, operators)
        result = await resolver.authorize(GROUP, STRANGER_ID)
        assert result.allowed and result.reason == REASON_ALL_USERS

    @pytest.mark.asyncio
    async def test_removed_operator_denied(self, stores):
        settings_store, operators = stores
        operators.remove(GROUP, OPERATOR_ID)
        resolver = PermissionResolver(make_admin_check(set()), settings_store, operators)
        assert not (await resolver.authorize(GROUP, OPERATOR_ID)).allowed

    @pytest.mark.asyncio
    async def test_operator_of_other_group_denied(self, stores):
        resolver = PermissionResolver(make_admin_check(set()), *stores)
        assert not (await resolver.authorize("-2002", OPERATOR_ID)).allowed

    @pytest.mark.asyncio
    async def test_admin_lookup_failure_is_not_admin(self, stores):
        async def broken(chat_id, user_id):
            raise RuntimeError("telegram down")

        resolver = PermissionResolver(broken, *stores)
        assert not (await resolver.authorize(GROUP, STRANGER_ID)).allowed
        # Still an operator
        assert (await resolver.authorize(GROUP, OPERATOR_ID)).reason == REASON_OPERATOR

    @pytest.mark.asyncio
    async def test_admin_lookup_is_not_cached(self, stores):
        calls = []
        resolver = PermissionResolver(make_admin_check({ADMIN_ID}, calls), *stores)
        await resolver.authorize(GROUP, ADMIN_ID)
        await resolver.authorize(GROUP, ADMIN_ID)
        assert len(calls) == 2
