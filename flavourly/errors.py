"""Error taxonomy shared by the writer, the state machine and the API layer.

Every error carries the HTTP status and a short machine-readable reason that
the API layer returns as ``{"error": reason, "message": ...}``.
"""


class FlavourlyError(Exception):
    status_code = 500
    reason = "internal_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.reason)
        self.message = message or self.reason


class ValidationError(FlavourlyError):
    """Malformed or missing input. The caller must fix it; never retried."""

    status_code = 400
    reason = "validation_error"


class AuthenticationError(FlavourlyError):
    status_code = 401
    reason = "unauthenticated"


class AuthorizationError(FlavourlyError):
    """Valid session, but the role lacks the requested capability."""

    status_code = 403
    reason = "forbidden"


class NotFoundError(FlavourlyError):
    """Resource absent, or owned by someone else and hidden from the caller."""

    status_code = 404
    reason = "not_found"


class StateTransitionError(FlavourlyError):
    status_code = 400
    reason = "invalid_state_transition"


class RecipeLockedError(StateTransitionError):
    """Content mutation attempted on a verified recipe."""

    status_code = 409
    reason = "recipe_locked"


class PersistenceError(FlavourlyError):
    """Transaction failed and was rolled back.

    The only kind a caller may retry: recipe writes replace content wholesale,
    so repeating the same request converges on the same state.
    """

    status_code = 500
    reason = "persistence_error"


class ReferenceResolutionError(FlavourlyError):
    """An ingredient line references a name or unit the normalizer did not resolve."""

    reason = "unresolved_reference"


class ExternalCleanupError(FlavourlyError):
    """Removing a media file from the external store failed.

    Logged and collected, never surfaced as the outcome of a delete.
    """

    reason = "external_cleanup_failed"

    def __init__(self, url: str, message: str = ""):
        super().__init__(message or f"failed to delete {url}")
        self.url = url
