from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, Self

from ..discriminated import Discriminated, discriminated_base


@discriminated_base
class AuthorizationProvider(Discriminated, ABC):
    """Materializes the authorization headers of outgoing requests.

    Stateless schemes only format headers. Token schemes also keep the current
    token valid, refreshing it when it gets close to expiry.
    """

    @abstractmethod
    def header_for(self) -> dict[str, str]:
        """Headers carrying the current credentials."""

    async def ensure_valid(self) -> None:
        """Make sure the credentials can be used right now.

        Raises
        ------
        AuthExpired
            If the credentials could not be renewed.
        """

    def invalidate(self, rejected_headers: Mapping[str, str] | None = None) -> None:
        """Mark the current credentials as rejected by the server.

        Parameters
        ----------
        rejected_headers : Mapping[str, str], optional
            Headers of the rejected request. When they no longer match the
            current credentials, the credentials were already renewed and are
            kept.
        """

    @property
    def refreshable(self) -> bool:
        """Whether `invalidate` followed by `ensure_valid` can recover a 401."""
        return False

    async def headers(self) -> dict[str, str]:
        """Validate the credentials, then return the headers for them."""
        await self.ensure_valid()
        return self.header_for()

    def __deepcopy__(self, memo: dict[int, Any] | None = None) -> Self:
        # Token state is shared by every copy of a connector.
        return self
