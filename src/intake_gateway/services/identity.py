"""Identity minting with a local fallback."""

import asyncio
import logging
import secrets
from typing import Optional

from pydantic import BaseModel

from intake_gateway.lib.errors import IdentityMintFailure
from intake_gateway.services.interfaces.identity import IIdentityAuthority


logger = logging.getLogger(__name__)


class MintedIdentity(BaseModel):
    identifier: str
    entity_type: str
    is_fallback: bool = False
    error: Optional[str] = None


def local_identifier(entity_type: str) -> str:
    """Locally derived identifier used when the authority cannot mint one."""
    return f"local-{entity_type}-{secrets.token_hex(8)}"


class IdentityService:
    """Mints identifiers through the authority, never blocking on it."""

    def __init__(self, authority: Optional[IIdentityAuthority] = None, timeout_seconds: float = 2.0):
        self.authority = authority
        self.timeout_seconds = timeout_seconds

    async def mint(self, entity_type: str) -> MintedIdentity:
        if self.authority is None:
            return MintedIdentity(identifier=local_identifier(entity_type), entity_type=entity_type, is_fallback=True)

        try:
            identifier = await asyncio.wait_for(self.authority.mint(entity_type), timeout=self.timeout_seconds)
            if not identifier or not str(identifier).strip():
                raise IdentityMintFailure("Authority returned an empty identifier")
            return MintedIdentity(identifier=str(identifier), entity_type=entity_type)
        except asyncio.TimeoutError:
            error = f"authority did not answer within {self.timeout_seconds}s"
        except IdentityMintFailure as e:
            error = e.message
        except Exception as e:
            error = f"{type(e).__name__}: {e}"

        fallback = local_identifier(entity_type)
        logger.warning(f"Identity minting failed ({error}); using {fallback}")
        return MintedIdentity(identifier=fallback, entity_type=entity_type, is_fallback=True, error=error)
