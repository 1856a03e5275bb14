"""Tests for one-time code issuance and validation."""

from customer_auth.service.otp import OtpOutcome, OtpService
from customer_auth.storage.ephemeral import OTP
from customer_auth.storage.models import OneTimeCode

PHONE = "998901234567"


def _service(cache, clock, code_generator):
    return OtpService(cache, generator=code_generator, ttl_seconds=120, clock=clock)


class TestIssue:
    async def test_issue_stores_code_with_ttl(self, cache, clock, code_generator):
        """Issued codes are stored under the phone with a two minute expiry."""
        otp = _service(cache, clock, code_generator)

        code = await otp.issue(PHONE)

        assert code == 123456
        record = OneTimeCode.loads(cache.snapshot(OTP)[PHONE])
        assert record.code == 123456
        assert (record.expires_at - clock()).total_seconds() == 120

    async def test_reissue_replaces_previous_code(self, cache, clock, code_generator):
        """A second issue overwrites the first; the old code stops working."""
        otp = _service(cache, clock, code_generator)
        await otp.issue(PHONE)
        await otp.issue(PHONE)

        assert await otp.validate(PHONE, 123456) is OtpOutcome.INVALID
        assert await otp.validate(PHONE, 654321) is OtpOutcome.VALID


class TestValidate:
    async def test_valid_code_is_consumed(self, cache, clock, code_generator):
        """A correct code validates once and is then removed."""
        otp = _service(cache, clock, code_generator)
        await otp.issue(PHONE)

        assert await otp.validate(PHONE, "123456") is OtpOutcome.VALID
        assert PHONE not in cache.snapshot(OTP)
        assert await otp.validate(PHONE, "123456") is OtpOutcome.INVALID

    async def test_wrong_code_keeps_record(self, cache, clock, code_generator):
        """A mismatch reports INVALID without discarding the stored code."""
        otp = _service(cache, clock, code_generator)
        await otp.issue(PHONE)

        assert await otp.validate(PHONE, 111111) is OtpOutcome.INVALID
        assert PHONE in cache.snapshot(OTP)
        assert await otp.validate(PHONE, 123456) is OtpOutcome.VALID

    async def test_expired_code_is_deleted(self, cache, clock, code_generator):
        """At or past expiry the code reports EXPIRED and is dropped."""
        otp = _service(cache, clock, code_generator)
        await otp.issue(PHONE)
        clock.advance(120)

        assert await otp.validate(PHONE, 123456) is OtpOutcome.EXPIRED
        assert PHONE not in cache.snapshot(OTP)
        assert await otp.validate(PHONE, 123456) is OtpOutcome.INVALID

    async def test_expired_wins_over_mismatch(self, cache, clock, code_generator):
        """Expiry is reported even when the submitted code is also wrong."""
        otp = _service(cache, clock, code_generator)
        await otp.issue(PHONE)
        clock.advance(300)

        assert await otp.validate(PHONE, 999999) is OtpOutcome.EXPIRED

    async def test_missing_code_is_invalid(self, cache, clock, code_generator):
        """Validating with nothing issued is INVALID."""
        otp = _service(cache, clock, code_generator)

        assert await otp.validate(PHONE, 123456) is OtpOutcome.INVALID

    async def test_unparsable_submission_is_invalid(self, cache, clock, code_generator):
        """Non-numeric and boolean submissions never match."""
        otp = _service(cache, clock, code_generator)
        await otp.issue(PHONE)

        assert await otp.validate(PHONE, "abc") is OtpOutcome.INVALID
        assert await otp.validate(PHONE, True) is OtpOutcome.INVALID
        assert await otp.validate(PHONE, None) is OtpOutcome.INVALID
        assert await otp.validate(PHONE, " 123456 ") is OtpOutcome.VALID

    async def test_locks_released_after_use(self, cache, clock, code_generator):
        """Per-key locks are forgotten once no coroutine holds them."""
        otp = _service(cache, clock, code_generator)
        await otp.issue(PHONE)
        await otp.validate(PHONE, 123456)

        assert cache.held_lock_count == 0


class TestPeek:
    async def test_peek_reads_without_consuming(self, cache, clock, code_generator):
        otp = _service(cache, clock, code_generator)
        await otp.issue(PHONE)

        record = await otp.peek(PHONE)

        assert record is not None and record.code == 123456
        assert PHONE in cache.snapshot(OTP)
