"""
Tests for the password recovery service.

These tests verify:
- The full request -> verify -> reset flow, including token single use
- Codes expire and are single use
- Unknown accounts get the same response as known ones
- Wrong codes are counted and the challenge is discarded at the limit
- Delivery failures clear the challenge and are not revealed to the caller
- Parallel guesses and resets are bounded by conditional writes
- Codes and tokens are only stored hashed
"""

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import pytest
import pytest_asyncio

from intake.core.exceptions import NotificationError
from intake.core.security import hash_token
from intake.modules.admissions.store import MemoryAdmissionStore
from intake.modules.recovery.service import (
    REQUEST_CODE_MESSAGE,
    AccountDisabled,
    ChallengeExpired,
    InvalidCode,
    InvalidOrExpiredToken,
    NoActiveChallenge,
    TooManyAttempts,
    WeakSecret,
    generate_code,
    request_code,
    reset_secret,
    validate_secret_strength,
    verify_code,
)
from intake.modules.users.models import RecoveryState, UserRole

SERVICE = "intake.modules.recovery.service"


class TestGenerateCode:
    def test_six_digits(self):
        for _ in range(100):
            code = generate_code()
            assert len(code) == 6
            assert code.isdigit()

    def test_zero_padded(self):
        with patch(f"{SERVICE}.secrets.randbelow", return_value=42):
            assert generate_code() == "000042"


class TestValidateSecretStrength:
    @pytest.mark.parametrize("secret", ["NewPass1", "Abcdefg9", "LONGER secret 9x"])
    def test_accepts_strong(self, secret):
        validate_secret_strength(secret)

    @pytest.mark.parametrize("secret", ["Short1", "alllower1", "ALLUPPER1", "NoDigitsHere"])
    def test_rejects_weak(self, secret):
        with pytest.raises(WeakSecret):
            validate_secret_strength(secret)


class TestRecoveryFlow:
    @pytest.mark.asyncio
    async def test_full_scenario(self, memory_store, mock_notifier, identity_factory):
        identity = await identity_factory(email="a@b.com")

        with patch(f"{SERVICE}.generate_code", return_value="483920"):
            result = await request_code(memory_store, "a@b.com", UserRole.MEMBER, notifier=mock_notifier)

        assert result.message == REQUEST_CODE_MESSAGE
        assert identity.recovery_state == RecoveryState.CODE_ISSUED
        assert identity.otp_code_hash == hash_token("483920")
        assert identity.otp_expires_at - datetime.now(UTC) <= timedelta(minutes=5)
        mock_notifier.send_recovery_code.assert_awaited_once_with(
            email="a@b.com", name="Ravi Kumar", code="483920", role="member"
        )

        with pytest.raises(InvalidCode):
            await verify_code(memory_store, "a@b.com", UserRole.MEMBER, "000000")

        token = await verify_code(memory_store, "a@b.com", UserRole.MEMBER, "483920")
        assert token
        assert identity.recovery_state == RecoveryState.TOKEN_ISSUED
        assert identity.otp_code_hash is None
        assert identity.reset_token_hash == hash_token(token)

        await reset_secret(memory_store, "a@b.com", UserRole.MEMBER, token, "NewPass1")
        assert identity.password_hash == "hashed:NewPass1"
        assert identity.recovery_state == RecoveryState.NONE

        with pytest.raises(InvalidOrExpiredToken):
            await reset_secret(memory_store, "a@b.com", UserRole.MEMBER, token, "NewPass2")
        assert identity.password_hash == "hashed:NewPass1"

    @pytest.mark.asyncio
    async def test_code_reuse_has_no_active_challenge(
        self, memory_store, mock_notifier, identity_factory
    ):
        await identity_factory(email="a@b.com")
        with patch(f"{SERVICE}.generate_code", return_value="111222"):
            await request_code(memory_store, "a@b.com", UserRole.MEMBER, notifier=mock_notifier)

        await verify_code(memory_store, "a@b.com", UserRole.MEMBER, "111222")

        with pytest.raises(NoActiveChallenge):
            await verify_code(memory_store, "a@b.com", UserRole.MEMBER, "111222")

    @pytest.mark.asyncio
    async def test_expired_code_even_if_correct(
        self, memory_store, mock_notifier, identity_factory
    ):
        await identity_factory(email="a@b.com")
        with patch(f"{SERVICE}.generate_code", return_value="111222"):
            await request_code(memory_store, "a@b.com", UserRole.MEMBER, notifier=mock_notifier)

        later = datetime.now(UTC) + timedelta(minutes=5, seconds=1)
        with patch(f"{SERVICE}._utcnow", return_value=later):
            with pytest.raises(ChallengeExpired):
                await verify_code(memory_store, "a@b.com", UserRole.MEMBER, "111222")

    @pytest.mark.asyncio
    async def test_new_request_invalidates_previous_code_and_token(
        self, memory_store, mock_notifier, identity_factory
    ):
        identity = await identity_factory(email="a@b.com")
        with patch(f"{SERVICE}.generate_code", return_value="111111"):
            await request_code(memory_store, "a@b.com", UserRole.MEMBER, notifier=mock_notifier)
        token = await verify_code(memory_store, "a@b.com", UserRole.MEMBER, "111111")

        with patch(f"{SERVICE}.generate_code", return_value="222222"):
            await request_code(memory_store, "a@b.com", UserRole.MEMBER, notifier=mock_notifier)

        assert identity.recovery_state == RecoveryState.CODE_ISSUED
        with pytest.raises(InvalidOrExpiredToken):
            await reset_secret(memory_store, "a@b.com", UserRole.MEMBER, token, "NewPass1")
        with pytest.raises(InvalidCode):
            await verify_code(memory_store, "a@b.com", UserRole.MEMBER, "111111")
        assert await verify_code(memory_store, "a@b.com", UserRole.MEMBER, "222222")

    @pytest.mark.asyncio
    async def test_expired_token(self, memory_store, mock_notifier, identity_factory):
        await identity_factory(email="a@b.com")
        with patch(f"{SERVICE}.generate_code", return_value="111222"):
            await request_code(memory_store, "a@b.com", UserRole.MEMBER, notifier=mock_notifier)
        token = await verify_code(memory_store, "a@b.com", UserRole.MEMBER, "111222")

        later = datetime.now(UTC) + timedelta(minutes=15, seconds=1)
        with patch(f"{SERVICE}._utcnow", return_value=later):
            with pytest.raises(InvalidOrExpiredToken):
                await reset_secret(memory_store, "a@b.com", UserRole.MEMBER, token, "NewPass1")

    @pytest.mark.asyncio
    async def test_weak_secret_keeps_token(self, memory_store, mock_notifier, identity_factory):
        identity = await identity_factory(email="a@b.com")
        with patch(f"{SERVICE}.generate_code", return_value="111222"):
            await request_code(memory_store, "a@b.com", UserRole.MEMBER, notifier=mock_notifier)
        token = await verify_code(memory_store, "a@b.com", UserRole.MEMBER, "111222")

        with pytest.raises(WeakSecret):
            await reset_secret(memory_store, "a@b.com", UserRole.MEMBER, token, "weak")

        assert identity.recovery_state == RecoveryState.TOKEN_ISSUED
        await reset_secret(memory_store, "a@b.com", UserRole.MEMBER, token, "NewPass1")

    @pytest.mark.asyncio
    async def test_wrong_token(self, memory_store, mock_notifier, identity_factory):
        await identity_factory(email="a@b.com")
        with patch(f"{SERVICE}.generate_code", return_value="111222"):
            await request_code(memory_store, "a@b.com", UserRole.MEMBER, notifier=mock_notifier)
        await verify_code(memory_store, "a@b.com", UserRole.MEMBER, "111222")

        with pytest.raises(InvalidOrExpiredToken):
            await reset_secret(memory_store, "a@b.com", UserRole.MEMBER, "not-the-token", "NewPass1")


class TestRequestCode:
    @pytest.mark.asyncio
    async def test_unknown_account_looks_like_success(self, memory_store, mock_notifier):
        result = await request_code(
            memory_store, "nobody@example.com", UserRole.MEMBER, notifier=mock_notifier
        )

        assert result.message == REQUEST_CODE_MESSAGE
        mock_notifier.send_recovery_code.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_role_must_match(self, memory_store, mock_notifier, identity_factory):
        await identity_factory(email="a@b.com", role=UserRole.MEMBER)

        await request_code(memory_store, "a@b.com", UserRole.ADMIN, notifier=mock_notifier)

        mock_notifier.send_recovery_code.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_disabled_member(self, memory_store, mock_notifier, identity_factory):
        await identity_factory(email="a@b.com", is_active=False)

        with pytest.raises(AccountDisabled) as exc_info:
            await request_code(memory_store, "a@b.com", UserRole.MEMBER, notifier=mock_notifier)

        assert exc_info.value.status_code == 403
        mock_notifier.send_recovery_code.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_disabled_admin_can_still_recover(
        self, memory_store, mock_notifier, identity_factory
    ):
        await identity_factory(email="root@b.com", role=UserRole.ADMIN, is_active=False)

        await request_code(memory_store, "root@b.com", UserRole.ADMIN, notifier=mock_notifier)

        mock_notifier.send_recovery_code.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_delivery_failure_clears_challenge(
        self, memory_store, mock_notifier, identity_factory
    ):
        identity = await identity_factory(email="a@b.com")
        mock_notifier.send_recovery_code.side_effect = NotificationError()

        result = await request_code(
            memory_store, "a@b.com", UserRole.MEMBER, notifier=mock_notifier
        )

        assert result.message == REQUEST_CODE_MESSAGE
        assert identity.recovery_state == RecoveryState.NONE
        assert identity.otp_expires_at is None

    @pytest.mark.asyncio
    async def test_delivery_failure_looks_like_unknown_account(
        self, memory_store, mock_notifier, identity_factory
    ):
        await identity_factory(email="a@b.com")
        mock_notifier.send_recovery_code.side_effect = NotificationError()

        known = await request_code(memory_store, "a@b.com", UserRole.MEMBER, notifier=mock_notifier)
        unknown = await request_code(
            memory_store, "x@y.com", UserRole.MEMBER, notifier=mock_notifier
        )

        assert known == unknown

    @pytest.mark.asyncio
    async def test_email_is_case_insensitive(self, memory_store, mock_notifier, identity_factory):
        await identity_factory(email="a@b.com")

        await request_code(memory_store, "A@B.com", UserRole.MEMBER, notifier=mock_notifier)

        mock_notifier.send_recovery_code.assert_awaited_once()


class TestVerifyAttempts:
    @pytest.mark.asyncio
    async def test_unknown_account_has_no_challenge(self, memory_store):
        with pytest.raises(NoActiveChallenge):
            await verify_code(memory_store, "nobody@example.com", UserRole.MEMBER, "123456")

    @pytest.mark.asyncio
    async def test_too_many_attempts_discards_challenge(
        self, memory_store, mock_notifier, identity_factory
    ):
        identity = await identity_factory(email="a@b.com")
        with patch(f"{SERVICE}.generate_code", return_value="483920"):
            await request_code(memory_store, "a@b.com", UserRole.MEMBER, notifier=mock_notifier)

        for _ in range(5):
            with pytest.raises(InvalidCode):
                await verify_code(memory_store, "a@b.com", UserRole.MEMBER, "000000")

        with pytest.raises(TooManyAttempts):
            await verify_code(memory_store, "a@b.com", UserRole.MEMBER, "483920")

        assert identity.recovery_state == RecoveryState.NONE
        with pytest.raises(NoActiveChallenge):
            await verify_code(memory_store, "a@b.com", UserRole.MEMBER, "483920")


class InterleavingStore(MemoryAdmissionStore):
    """Yields after every identity lookup so concurrent requests interleave."""

    async def find_identity(self, email, role):
        identity = await super().find_identity(email, role)
        await asyncio.sleep(0)
        return identity


class TestConcurrentRecovery:
    @pytest_asyncio.fixture
    async def store(self, mock_notifier):
        store = InterleavingStore()
        await store.create_identity(
            email="a@b.com",
            password_hash="hashed:OldPass1",
            first_name="Ravi",
            role=UserRole.MEMBER,
        )
        with patch(f"{SERVICE}.generate_code", return_value="483920"):
            await request_code(store, "a@b.com", UserRole.MEMBER, notifier=mock_notifier)
        return store

    @pytest.mark.asyncio
    async def test_parallel_guesses_share_the_attempt_budget(self, store):
        results = await asyncio.gather(
            *(verify_code(store, "a@b.com", UserRole.MEMBER, "000000") for _ in range(8)),
            return_exceptions=True,
        )

        assert sum(isinstance(r, InvalidCode) for r in results) == 5
        assert sum(isinstance(r, TooManyAttempts) for r in results) == 1
        assert all(isinstance(r, Exception) for r in results)
        with pytest.raises(NoActiveChallenge):
            await verify_code(store, "a@b.com", UserRole.MEMBER, "483920")

    @pytest.mark.asyncio
    async def test_parallel_resets_with_one_token_succeed_once(self, store):
        token = await verify_code(store, "a@b.com", UserRole.MEMBER, "483920")

        results = await asyncio.gather(
            reset_secret(store, "a@b.com", UserRole.MEMBER, token, "NewPass1"),
            reset_secret(store, "a@b.com", UserRole.MEMBER, token, "NewPass2"),
            return_exceptions=True,
        )

        assert results.count(None) == 1
        assert sum(isinstance(r, InvalidOrExpiredToken) for r in results) == 1
        identity = await store.find_identity("a@b.com", UserRole.MEMBER)
        assert identity.password_hash in ("hashed:NewPass1", "hashed:NewPass2")
        assert identity.recovery_state == RecoveryState.NONE
