"""Canonical keys for unordered user pairs."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Tuple

from featur.errors import InvalidIdentifierError


@dataclass(frozen=True)
class PairKey:
    """Order-independent identity of two distinct users.

    ``PairKey.of(a, b) == PairKey.of(b, a)`` and the digest is stable across
    processes, so it can back a unique index and a deterministic 1:1
    conversation id.
    """

    user_a: str
    user_b: str

    @classmethod
    def of(cls, user_one: str, user_two: str) -> "PairKey":
        if not user_one or not user_two:
            raise InvalidIdentifierError("Both user ids must be non-empty")
        if user_one == user_two:
            raise InvalidIdentifierError("A pair needs two distinct users")
        ordered = tuple(sorted((str(user_one), str(user_two))))
        return cls(user_a=ordered[0], user_b=ordered[1])

    @property
    def digest(self) -> str:
        # NUL cannot appear in an auth uid, so the join is unambiguous.
        raw = f"{self.user_a}\x00{self.user_b}".encode("utf-8")
        return hashlib.sha256(raw).hexdigest()[:40]

    @property
    def conversation_id(self) -> str:
        return f"dm_{self.digest}"

    def participants(self) -> Tuple[str, str]:
        return (self.user_a, self.user_b)

    def other(self, user_id: str) -> str:
        if user_id == self.user_a:
            return self.user_b
        if user_id == self.user_b:
            return self.user_a
        raise InvalidIdentifierError(f"{user_id} is not part of this pair")
