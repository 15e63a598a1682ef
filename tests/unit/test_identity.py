"""Unit tests for identity minting with local fallback."""

import asyncio

import pytest

from intake_gateway.lib.errors import IdentityMintFailure
from intake_gateway.services.identity import IdentityService, local_identifier
from intake_gateway.services.interfaces.identity import IIdentityAuthority


class FakeAuthority(IIdentityAuthority):
    def __init__(self, answer=None, delay: float = 0.0):
        self.answer = answer
        self.delay = delay
        self.calls = []

    async def mint(self, entity_type: str) -> str:
        self.calls.append(entity_type)
        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(self.answer, Exception):
            raise self.answer
        return self.answer


class TestIdentityService:
    """Minting never fails outright."""

    @pytest.mark.asyncio
    async def test_authority_identifier(self):
        authority = FakeAuthority("msg-000123")
        identity = await IdentityService(authority).mint("message")

        assert identity.identifier == "msg-000123"
        assert identity.is_fallback is False
        assert authority.calls == ["message"]

    @pytest.mark.asyncio
    async def test_no_authority_uses_local(self):
        identity = await IdentityService().mint("message")

        assert identity.identifier.startswith("local-message-")
        assert identity.is_fallback is True
        assert identity.error is None

    @pytest.mark.asyncio
    async def test_authority_failure(self):
        identity = await IdentityService(FakeAuthority(IdentityMintFailure("sequence exhausted"))).mint("message")

        assert identity.is_fallback is True
        assert identity.error == "sequence exhausted"

    @pytest.mark.asyncio
    async def test_unexpected_error(self):
        identity = await IdentityService(FakeAuthority(ConnectionError("reset"))).mint("case")

        assert identity.identifier.startswith("local-case-")
        assert identity.error == "ConnectionError: reset"

    @pytest.mark.asyncio
    async def test_empty_identifier(self):
        identity = await IdentityService(FakeAuthority("  ")).mint("message")

        assert identity.is_fallback is True
        assert identity.error == "Authority returned an empty identifier"

    @pytest.mark.asyncio
    async def test_slow_authority(self):
        service = IdentityService(FakeAuthority("late", delay=1.0), timeout_seconds=0.05)
        identity = await service.mint("message")

        assert identity.is_fallback is True
        assert "did not answer" in identity.error


def test_local_identifiers_are_unique():
    assert len({local_identifier("message") for _ in range(100)}) == 100
