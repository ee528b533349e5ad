"""
Access tokens for a user's primary YouTube credential.
"""

import logging

from liverelay.database.store import StreamRecordStore
from liverelay.errors import APIErrorType, PermanentAPIError
from liverelay.youtube.client import YouTubeClient

logger = logging.getLogger(__name__)


class CredentialProvider:
    """Loads the stored refresh credential of a user and exchanges it for an access token."""

    def __init__(self, store: StreamRecordStore, client: YouTubeClient):
        self._store = store
        self._client = client

    async def access_token(self, user_id: str) -> str:
        """
        Raises:
            PermanentAPIError: the user has no credential, or it was rejected
            TransientAPIError: the token endpoint could not be reached
        """
        credential = await self._store.get_primary_credential(user_id)
        if credential is None:
            raise PermanentAPIError(
                f"No YouTube credential for user {user_id}",
                error_type=APIErrorType.UNAUTHORIZED,
            )
        return await self._client.refresh_access_token(
            credential.client_id,
            credential.client_secret,
            credential.refresh_token,
        )
