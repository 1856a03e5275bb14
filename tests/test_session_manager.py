"""Tests for single-token session issuance and validation."""

import asyncio
import uuid

from customer_auth.service.sessions import SessionManager
from customer_auth.storage.ephemeral import SESSIONS_BY_CUSTOMER, TOKENS
from customer_auth.storage.models import SessionRecord


class TestIssue:
    async def test_issue_writes_index_and_record(self, cache, clock):
        """A token is indexed by customer and carries id, role and expiry."""
        sessions = SessionManager(cache, ttl_minutes=60, clock=clock)

        token = await sessions.issue("cust-1")

        uuid.UUID(token)
        assert cache.snapshot(SESSIONS_BY_CUSTOMER)["cust-1"] == token
        record = SessionRecord.loads(cache.snapshot(TOKENS)[token])
        assert record.customer_id == "cust-1"
        assert record.role == "customer"
        assert (record.expires_at - clock()).total_seconds() == 3600

    async def test_new_token_invalidates_previous(self, cache, clock):
        """Only the most recently issued token validates."""
        sessions = SessionManager(cache, clock=clock)
        first = await sessions.issue("cust-1")
        second = await sessions.issue("cust-1")

        assert first != second
        assert await sessions.validate(first) is None
        assert (await sessions.validate(second)).customer_id == "cust-1"
        assert set(cache.snapshot(TOKENS)) == {second}

    async def test_concurrent_issues_leave_one_token(self, cache, clock):
        """Racing issues for one customer still leave exactly one live token."""
        sessions = SessionManager(cache, clock=clock)

        tokens = await asyncio.gather(*(sessions.issue("cust-1") for _ in range(5)))

        live = [t for t in tokens if await sessions.validate(t)]
        assert len(live) == 1
        assert cache.snapshot(SESSIONS_BY_CUSTOMER)["cust-1"] == live[0]
        assert len(cache.snapshot(TOKENS)) == 1

    async def test_customers_have_independent_sessions(self, cache, clock):
        sessions = SessionManager(cache, clock=clock)
        a = await sessions.issue("cust-a")
        b = await sessions.issue("cust-b")

        assert (await sessions.validate(a)).customer_id == "cust-a"
        assert (await sessions.validate(b)).customer_id == "cust-b"


class TestValidate:
    async def test_expired_token_is_rejected(self, cache, clock):
        """Tokens stop validating once their expiry passes."""
        sessions = SessionManager(cache, ttl_minutes=60, clock=clock)
        token = await sessions.issue("cust-1")
        clock.advance(3599)
        assert await sessions.validate(token) is not None

        clock.advance(1)

        assert await sessions.validate(token) is None

    async def test_unknown_and_empty_tokens(self, cache, clock):
        sessions = SessionManager(cache, clock=clock)

        assert await sessions.validate("does-not-exist") is None
        assert await sessions.validate("") is None


class TestRevoke:
    async def test_revoke_all_removes_token(self, cache, clock):
        sessions = SessionManager(cache, clock=clock)
        token = await sessions.issue("cust-1")

        assert await sessions.revoke_all("cust-1") is True

        assert await sessions.validate(token) is None
        assert "cust-1" not in cache.snapshot(SESSIONS_BY_CUSTOMER)
        assert await sessions.current_token("cust-1") is None

    async def test_revoke_without_session(self, cache, clock):
        sessions = SessionManager(cache, clock=clock)

        assert await sessions.revoke_all("nobody") is False
