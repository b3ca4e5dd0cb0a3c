"""
Featur: ORM model registry.

Importing every model here ensures that Alembic (and any other tool that
inspects ``Base.metadata``) discovers all tables automatically.
"""

from featur.models.profile import ProfileDocument
from featur.models.match import Match, Swipe
from featur.models.conversation import Conversation, ConversationParticipant, Message
from featur.models.featured import FeaturedPlacement

__all__ = [
    "ProfileDocument",
    "Match",
    "Swipe",
    "Conversation",
    "ConversationParticipant",
    "Message",
    "FeaturedPlacement",
]
