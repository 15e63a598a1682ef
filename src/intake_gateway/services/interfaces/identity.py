"""Abstract interface for the identity-minting authority."""

from abc import ABC, abstractmethod


class IIdentityAuthority(ABC):
    """Abstract interface for minting entity identifiers."""

    @abstractmethod
    async def mint(self, entity_type: str) -> str:
        """Mint a new identifier for an entity of the given type.

        Raises:
            IdentityMintFailure: the authority could not produce an identifier
        """
        pass
