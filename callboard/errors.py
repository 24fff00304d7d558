"""Error taxonomy shared by the store, the engine and the API layer."""


class CallboardError(Exception):
    """Base exception for callboard operations."""


class ValidationError(CallboardError):
    """A user-initiated action was rejected before reaching the store."""


class FavoritesLimitExceeded(ValidationError):
    """The customer already holds the maximum number of favorites."""

    def __init__(self, user_id: str, limit: int):
        self.user_id = user_id
        self.limit = limit
        super().__init__(f"User {user_id} already has {limit} favorite establishments")


class InvalidSettings(ValidationError):
    """Establishment thresholds are out of order or negative."""


class InvalidTransition(CallboardError):
    """A call status was asked to move backwards along its lifecycle."""


class RemoteUnavailable(CallboardError):
    """The remote store could not be reached or failed to answer."""


class RemoteTimeout(RemoteUnavailable):
    """A remote call exceeded its time bound."""


class NotFound(CallboardError):
    """An expected remote row is missing."""


class EstablishmentNotFound(NotFound):
    def __init__(self, establishment_id: str):
        self.establishment_id = establishment_id
        super().__init__(f"Establishment {establishment_id} not found")


class ProfileNotFound(NotFound):
    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"Profile {user_id} not found")


class ConflictIgnored(CallboardError):
    """A unique-constraint insert hit an existing row."""


class NoActiveSession(CallboardError):
    """A session-bound action was requested while nobody is signed in."""
