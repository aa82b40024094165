"""
auth/resolver.py -- Find-or-create for federated identity claims.

The first registration for an email wins. A later login through any provider
(or a local signup that already exists) reuses the record unchanged: name and
provider marker of the new assertion are ignored, and a local password hash is
never replaced by a provider marker.
"""

from __future__ import annotations

import logging

from auth.errors import DuplicateEmail, StoreUnavailable
from auth.models import User
from auth.store import UserStore

logger = logging.getLogger("authgate.auth")


class IdentityResolver:
    def __init__(self, store: UserStore) -> None:
        self._store = store

    def resolve(self, name: str, email: str, provider_marker: str) -> User:
        """Return the user for email, creating it with provider_marker if absent.

        Two first-time logins for the same email may both miss the lookup;
        only one create commits and the other re-reads the winner's row.
        """
        user = self._store.find_by_email(email)
        if user is not None:
            return user
        try:
            user = self._store.create(name, email, provider_marker)
        except DuplicateEmail:
            logger.info("Concurrent first login for the same email; reusing existing record")
            user = self._store.find_by_email(email)
            if user is None:
                # Row vanished between the conflict and the re-read; deletes are
                # not part of this service, so this is a store inconsistency.
                raise StoreUnavailable("User record disappeared after conflict.") from None
            return user
        logger.info("Created federated user id=%d (%s)", user.id, provider_marker)
        return user
