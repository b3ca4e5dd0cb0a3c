"""
Featur: Profile Store

Owns the ``profiles`` table.  Profiles are JSON documents that have been
written by several generations of the mobile client, so every read goes
through ``decode_profile``:

  1. Reject documents without a ``uid`` (nothing else can be trusted).
  2. Detect the document's schema version.
  3. Upgrade v1 documents to v2 (verification fields, ``mediaURLs``).
  4. Validate field by field; a malformed optional field falls back to its
     default instead of failing the whole profile.

The list of defaulted fields is returned with the profile so callers (and
the logs) can tell a complete document from a patched-up one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, Union

import structlog
from pydantic import ValidationError
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from featur.database import insert_ignoring_conflicts
from featur.errors import (
    InvalidIdentifierError,
    InvalidProfileError,
    ProfileDecodeError,
    ProfileExistsError,
    ProfileNotFoundError,
    StorageError,
)
from featur.models.profile import ProfileDocument
from featur.schemas.profile import (
    CURRENT_PROFILE_SCHEMA_VERSION,
    Profile,
    ProfileUpdate,
)
from featur.utils.best_effort import best_effort
from featur.utils.storage import MediaStorage, profile_photo_path
from featur.utils.timeutil import ensure_utc, utcnow

logger = structlog.get_logger("featur.profile_service")

# Fields introduced by the v2 layout, with the values v1 documents get.
_V2_DEFAULTS: dict[str, Any] = {
    "email": "",
    "isEmailVerified": False,
    "phoneNumber": "",
    "isPhoneVerified": False,
}

_ALIAS_TO_NAME: dict[str, str] = {
    (info.alias or name): name for name, info in Profile.model_fields.items()
}


# ──────────────────────────────────────────────────────────────────────────────
# Decoding
# ──────────────────────────────────────────────────────────────────────────────

@dataclass
class DecodedProfile:
    profile: Profile
    schema_version: int
    defaulted_fields: list[str] = field(default_factory=list)

    @property
    def upgraded(self) -> bool:
        return self.schema_version < CURRENT_PROFILE_SCHEMA_VERSION

    @property
    def is_complete(self) -> bool:
        return not self.defaulted_fields


def _detect_version(doc: Mapping[str, Any], stored_version: Optional[int]) -> int:
    if stored_version:
        return stored_version
    declared = doc.get("schemaVersion")
    if isinstance(declared, int) and declared > 0:
        return declared
    return 2 if "isEmailVerified" in doc else 1


def _upgrade_v1(doc: dict[str, Any]) -> None:
    for key, default in _V2_DEFAULTS.items():
        if doc.get(key) is None:
            doc[key] = default
    # v1 clients kept a single photo in profileImageURL.
    if not doc.get("mediaURLs") and isinstance(doc.get("profileImageURL"), str):
        doc["mediaURLs"] = [doc["profileImageURL"]]


def decode_profile(
    raw: Mapping[str, Any],
    schema_version: Optional[int] = None,
) -> DecodedProfile:
    """Parse a stored profile document of any known schema version.

    Parameters
    ----------
    raw:
        The camelCase document as stored.
    schema_version:
        Version recorded alongside the document, when known.  Otherwise it
        is inferred from the document's shape.

    Returns
    -------
    DecodedProfile
        The current-version profile plus the names of fields that were
        missing or malformed and therefore defaulted.

    Raises
    ------
    ProfileDecodeError
        If the document is not a mapping or carries no usable ``uid``.
    """
    if not isinstance(raw, Mapping):
        raise ProfileDecodeError(
            f"Profile document must be a mapping, got {type(raw).__name__}"
        )
    uid = raw.get("uid")
    if not isinstance(uid, str) or not uid.strip():
        raise ProfileDecodeError("Profile document has no uid")

    doc = dict(raw)
    doc.pop("schemaVersion", None)
    version = _detect_version(raw, schema_version)
    if version < 2:
        _upgrade_v1(doc)

    defaulted = [
        alias for alias, name in _ALIAS_TO_NAME.items()
        if alias not in doc and name not in doc
    ]

    # Each pass drops the offending top-level keys; bounded by field count.
    for _ in range(len(_ALIAS_TO_NAME) + 1):
        try:
            profile = Profile.model_validate(doc)
            break
        except ValidationError as exc:
            bad_keys = {
                str(err["loc"][0]) for err in exc.errors() if err.get("loc")
            }
            if "uid" in bad_keys or not bad_keys & doc.keys():
                raise ProfileDecodeError(f"Profile {uid} is undecodable: {exc}") from exc
            for key in bad_keys:
                doc.pop(key, None)
                defaulted.append(key)
    else:
        raise ProfileDecodeError(f"Profile {uid} could not be repaired")

    return DecodedProfile(
        profile=profile,
        schema_version=version,
        defaulted_fields=sorted(set(defaulted)),
    )


# ──────────────────────────────────────────────────────────────────────────────
# Store
# ──────────────────────────────────────────────────────────────────────────────

class ProfileService:
    """Persistence and media handling for creator profiles."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        storage: Optional[MediaStorage] = None,
    ) -> None:
        self._session_factory = session_factory
        self._storage = storage
        logger.info("profile_service_initialised", storage=storage is not None)

    # ── Helpers ───────────────────────────────────────────────────────────

    @staticmethod
    def decode_row(row: ProfileDocument) -> DecodedProfile:
        decoded = decode_profile(row.data, row.schema_version)
        decoded.profile = decoded.profile.model_copy(
            update={
                "created_at": ensure_utc(row.created_at),
                "updated_at": ensure_utc(row.updated_at),
            }
        )
        if decoded.defaulted_fields or decoded.upgraded:
            logger.info(
                "profile_decoded_with_defaults",
                uid=row.uid,
                schema_version=decoded.schema_version,
                defaulted_fields=decoded.defaulted_fields,
            )
        return decoded

    @staticmethod
    def _write_row(row: ProfileDocument, profile: Profile) -> None:
        row.display_name = profile.display_name
        row.data = profile.to_document()
        row.schema_version = CURRENT_PROFILE_SCHEMA_VERSION
        row.updated_at = profile.updated_at

    async def _load_for_update(self, session: AsyncSession, uid: str) -> ProfileDocument:
        result = await session.execute(
            select(ProfileDocument)
            .where(ProfileDocument.uid == uid)
            .with_for_update()
        )
        row = result.scalar_one_or_none()
        if row is None:
            raise ProfileNotFoundError(uid)
        return row

    # ── Public API ────────────────────────────────────────────────────────

    async def create_profile(self, profile: Profile) -> Profile:
        """Insert a new profile.  The uid must not be taken."""
        if not profile.uid:
            raise InvalidIdentifierError("Profile uid must be non-empty")
        now = utcnow()
        profile = profile.model_copy(update={"created_at": now, "updated_at": now})

        async with self._session_factory() as session, session.begin():
            stmt = insert_ignoring_conflicts(session, ProfileDocument).values(
                uid=profile.uid,
                display_name=profile.display_name,
                data=profile.to_document(),
                schema_version=CURRENT_PROFILE_SCHEMA_VERSION,
                created_at=now,
                updated_at=now,
            )
            result = await session.execute(stmt)
            if result.rowcount != 1:
                raise ProfileExistsError(profile.uid)

        logger.info("profile_created", uid=profile.uid)
        return profile

    async def fetch_decoded(self, uid: str) -> Optional[DecodedProfile]:
        async with self._session_factory() as session:
            row = await session.get(ProfileDocument, uid)
            if row is None:
                return None
            return self.decode_row(row)

    async def fetch_profile(self, uid: str) -> Optional[Profile]:
        if not uid:
            raise InvalidIdentifierError("uid must be non-empty")
        decoded = await self.fetch_decoded(uid)
        return decoded.profile if decoded else None

    async def require_profile(self, uid: str) -> Profile:
        profile = await self.fetch_profile(uid)
        if profile is None:
            raise ProfileNotFoundError(uid)
        return profile

    async def fetch_profiles(self, uids: Iterable[str]) -> list[Profile]:
        """Fetch several profiles, preserving the order of ``uids``.

        Missing and undecodable documents are skipped.
        """
        wanted = [u for u in dict.fromkeys(uids) if u]
        if not wanted:
            return []
        async with self._session_factory() as session:
            result = await session.execute(
                select(ProfileDocument).where(ProfileDocument.uid.in_(wanted))
            )
            rows = {row.uid: row for row in result.scalars()}

        profiles: list[Profile] = []
        for uid in wanted:
            row = rows.get(uid)
            if row is None:
                continue
            try:
                profiles.append(self.decode_row(row).profile)
            except ProfileDecodeError as exc:
                logger.warning("profile_skipped_undecodable", uid=uid, error=str(exc))
        return profiles

    async def update_profile(
        self,
        uid: str,
        changes: Union[ProfileUpdate, Mapping[str, Any]],
    ) -> Profile:
        """Apply a partial update.  ``uid`` is immutable; ``updatedAt`` is
        refreshed on every successful update."""
        if isinstance(changes, Mapping):
            changes = dict(changes)
            if "uid" in changes and changes.pop("uid") != uid:
                raise InvalidIdentifierError("Profile uid cannot be changed")
            try:
                changes = ProfileUpdate.model_validate(changes)
            except ValidationError as exc:
                raise InvalidProfileError(str(exc)) from exc

        patch = changes.model_dump(mode="json", by_alias=True, exclude_unset=True)
        log = logger.bind(uid=uid, fields=sorted(patch))

        async with self._session_factory() as session, session.begin():
            row = await self._load_for_update(session, uid)
            current = self.decode_row(row).profile
            merged = current.to_document()
            merged.update(patch)
            merged["uid"] = uid
            merged["updatedAt"] = utcnow().isoformat()
            try:
                updated = Profile.model_validate(merged)
            except ValidationError as exc:
                raise InvalidProfileError(str(exc)) from exc
            self._write_row(row, updated)

        log.info("profile_updated")
        return updated

    async def delete_profile(self, uid: str) -> bool:
        """Delete a profile (account deletion).  Returns False if absent."""
        async with self._session_factory() as session, session.begin():
            row = await session.get(ProfileDocument, uid)
            if row is None:
                return False
            media = list((row.data or {}).get("mediaURLs") or [])
            await session.execute(delete(ProfileDocument).where(ProfileDocument.uid == uid))

        if self._storage is not None:
            for url in media:
                await self._delete_media(url)
        logger.info("profile_deleted", uid=uid, media_count=len(media))
        return True

    @best_effort("delete_profile_media")
    async def _delete_media(self, url: str) -> None:
        await self._storage.delete(url)

    async def upload_profile_photo(
        self,
        uid: str,
        data: bytes,
        content_type: str = "image/jpeg",
    ) -> tuple[str, list[str]]:
        """Store a photo and append its URL to the profile's ``mediaURLs``.

        The first photo also becomes ``profileImageURL``.  Returns the new
        URL and the updated media list.
        """
        if self._storage is None:
            raise StorageError("Media storage is not configured")
        if not data:
            raise InvalidProfileError("Photo payload is empty")
        if await self.fetch_profile(uid) is None:
            raise ProfileNotFoundError(uid)

        url = await self._storage.upload(
            data, profile_photo_path(uid, content_type), content_type
        )

        async with self._session_factory() as session, session.begin():
            row = await self._load_for_update(session, uid)
            profile = self.decode_row(row).profile
            media = [*profile.media_urls, url]
            updated = profile.model_copy(
                update={
                    "media_urls": media,
                    "profile_image_url": profile.profile_image_url or url,
                    "updated_at": utcnow(),
                }
            )
            self._write_row(row, updated)

        logger.info("profile_photo_added", uid=uid, url=url, media_count=len(media))
        return url, media
