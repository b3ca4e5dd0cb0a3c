"""
Featur: Error Taxonomy

Typed exceptions raised by the service layer.  API routes translate them to
``HTTPException`` with the ``status_code`` carried on each class.
"""

from __future__ import annotations


class FeaturError(Exception):
    """Base class for all domain errors."""

    status_code: int = 400


class InvalidIdentifierError(FeaturError):
    """An id was empty, or two ids that must differ were equal."""

    status_code = 422


class ProfileNotFoundError(FeaturError):
    status_code = 404

    def __init__(self, uid: str) -> None:
        super().__init__(f"Profile {uid} not found")
        self.uid = uid


class ProfileExistsError(FeaturError):
    status_code = 409

    def __init__(self, uid: str) -> None:
        super().__init__(f"Profile {uid} already exists")
        self.uid = uid


class InvalidProfileError(FeaturError):
    status_code = 422


class ProfileDecodeError(FeaturError):
    """A stored profile document is unusable (no uid)."""

    status_code = 500


class ConversationNotFoundError(FeaturError):
    status_code = 404

    def __init__(self, conversation_id: str) -> None:
        super().__init__(f"Conversation {conversation_id} not found")
        self.conversation_id = conversation_id


class NotAParticipantError(FeaturError):
    status_code = 403


class InvalidMessageError(FeaturError):
    status_code = 422


class MatchNotFoundError(FeaturError):
    status_code = 404


class MatchEvaluationError(FeaturError):
    """Match evaluation could not complete; the swipe itself is stored and
    evaluation can be retried."""

    status_code = 503


class UnknownProductError(FeaturError):
    status_code = 422

    def __init__(self, product_id: str) -> None:
        super().__init__(f"Unknown featured product: {product_id}")
        self.product_id = product_id


class AlreadyFeaturedError(FeaturError):
    status_code = 409

    def __init__(self, user_id: str) -> None:
        super().__init__("Already featured")
        self.user_id = user_id


class InvalidPlacementError(FeaturError):
    status_code = 422


class StorageError(FeaturError):
    """Object storage upload or delete failed after retries."""

    status_code = 503
