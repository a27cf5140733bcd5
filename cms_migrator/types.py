"""Shared type definitions for the CMS asset migration tool.

Dataclasses for the records flowing through the pipeline (source items,
field mappings, image references, transfer results, destination records,
per-item results) and TypedDicts for the serialized report shapes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, TypedDict, Union

from cms_migrator.utils.formatting import slugify

# ---------------------------------------------------------------------------
# Source side
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SourceItem:
    """One record fetched from the legacy CMS collection API.

    ``fields`` is a read-only view of the item's ``fieldData`` bag. ``slug``
    is always populated: when the source has none it is derived from the
    title, then from the id.
    """

    id: str
    slug: str
    title: str
    is_draft: bool = False
    is_archived: bool = False
    last_updated: str | None = None
    last_published: str | None = None
    created_on: str | None = None
    cms_locale_id: str | None = None
    fields: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    slug_derived: bool = False
    # Set when the source returned something that is not an item object
    error: str | None = None

    @classmethod
    def unreadable(cls, position: int, raw: Any) -> SourceItem:
        """Stand-in for a malformed entry so it is reported, not lost."""
        placeholder = f"unreadable-{position}"
        return cls(
            id=placeholder,
            slug=placeholder,
            title="",
            error=(
                f"Malformed source item at position {position}: "
                f"expected an object, got {type(raw).__name__}"
            ),
        )

    @classmethod
    def from_api(
        cls,
        raw: dict[str, Any],
        title_field: str = "name",
        slug_field: str = "slug",
    ) -> SourceItem:
        """Build an item from the collection API's JSON object."""
        field_data = raw.get("fieldData")
        if not isinstance(field_data, dict):
            field_data = {}
        item_id = str(raw.get("id") or raw.get("_id") or "")
        title = field_data.get(title_field)
        title = title if isinstance(title, str) else ""

        slug = field_data.get(slug_field)
        slug_derived = False
        if not isinstance(slug, str) or not slug.strip():
            slug = slugify(title) or item_id
            slug_derived = True

        return cls(
            id=item_id,
            slug=slug.strip(),
            title=title,
            is_draft=bool(raw.get("isDraft", False)),
            is_archived=bool(raw.get("isArchived", False)),
            last_updated=raw.get("lastUpdated"),
            last_published=raw.get("lastPublished"),
            created_on=raw.get("createdOn"),
            cms_locale_id=raw.get("cmsLocaleId"),
            fields=MappingProxyType(dict(field_data)),
            slug_derived=slug_derived,
        )

    @property
    def status(self) -> str:
        """Destination status: ``draft`` for drafts, else ``published``."""
        return "draft" if self.is_draft else "published"

    def source_meta(self) -> dict[str, Any]:
        """Metadata block stored with the destination record."""
        return {
            "sourceId": self.id,
            "cmsLocaleId": self.cms_locale_id,
            "lastPublished": self.last_published,
            "lastUpdated": self.last_updated,
            "createdOn": self.created_on,
            "isArchived": self.is_archived,
            "isDraft": self.is_draft,
        }


# ---------------------------------------------------------------------------
# Field mappings
# ---------------------------------------------------------------------------


class FieldKind(str, Enum):
    """How a source field is projected onto the destination record."""

    SCALAR = "scalar"
    IMAGE = "image"
    IMAGE_ARRAY = "imageArray"


@dataclass(frozen=True)
class FieldMapping:
    """Declarative projection of one source key to one destination key.

    ``rich_text`` marks scalar HTML fields whose inline URLs are rewritten
    by the reconciler. ``caption_key`` names a source scalar copied into an
    image object as its ``caption``.
    """

    source_key: str
    destination_key: str
    kind: FieldKind = FieldKind.SCALAR
    rich_text: bool = False
    caption_key: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FieldMapping:
        """Build a mapping from a YAML entry.

        Accepts ``source``/``destination`` or ``source_key``/``destination_key``.
        ``destination`` defaults to the source key. Raises ``ValueError`` for an
        unknown ``kind``.
        """
        source_key = data.get("source_key", data.get("source", ""))
        destination_key = data.get(
            "destination_key", data.get("destination", source_key)
        )
        return cls(
            source_key=str(source_key or ""),
            destination_key=str(destination_key or ""),
            kind=FieldKind(data.get("kind", FieldKind.SCALAR.value)),
            rich_text=bool(data.get("rich_text", False)),
            caption_key=data.get("caption_key") or data.get("caption"),
        )


# ---------------------------------------------------------------------------
# Image values and references
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ImageUrl:
    """An image field holding a bare URL string."""

    url: str


@dataclass(frozen=True)
class ImageUrlWithAlt:
    """An image field holding an object with a URL and alt text."""

    url: str
    alt: str = ""
    file_id: str | None = None


@dataclass(frozen=True)
class MissingImage:
    """An image field that is absent, empty, a placeholder, or malformed."""

    reason: str = "missing"


ImageValue = Union[ImageUrl, ImageUrlWithAlt, MissingImage]


@dataclass(frozen=True)
class ImageReference:
    """One image found in a source item.

    ``index`` is set for gallery entries and inline rich-text images.
    ``inline`` marks images discovered inside rich-text markup.
    """

    field_name: str
    original_url: str
    index: int | None = None
    alt_text: str = ""
    inline: bool = False


# ---------------------------------------------------------------------------
# Transfer and destination results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TransferResult:
    """Outcome of moving one image.

    When ``success`` is False, ``new_url`` is always ``original_url``.
    """

    original_url: str
    new_url: str
    success: bool
    byte_size: int = 0
    failure_reason: str | None = None
    content_type: str | None = None
    storage_path: str | None = None

    def __post_init__(self) -> None:
        if not self.success and self.new_url != self.original_url:
            object.__setattr__(self, "new_url", self.original_url)

    @classmethod
    def failed(cls, original_url: str, reason: str) -> TransferResult:
        """A failed transfer that keeps the original URL."""
        return cls(
            original_url=original_url,
            new_url=original_url,
            success=False,
            failure_reason=reason,
        )

    @property
    def preserved(self) -> bool:
        """True when uploads were disabled and the URL was kept on purpose."""
        return self.failure_reason == "upload_disabled"


@dataclass
class MigrationRecord:
    """The destination-shaped object written through the record API."""

    id: str
    title: str
    slug: str
    type: str
    status: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        """Request body for create/update calls."""
        return {
            "type": self.type,
            "status": self.status,
            "slug": self.slug,
            "title": self.title,
            "data": self.data,
        }


class ItemStatus(str, Enum):
    """Terminal state of one source item in a run."""

    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ImageCounts:
    """Per-item image tallies."""

    found: int = 0
    migrated: int = 0
    failed: int = 0
    preserved: int = 0
    missing: int = 0

    def add(self, other: ImageCounts) -> None:
        self.found += other.found
        self.migrated += other.migrated
        self.failed += other.failed
        self.preserved += other.preserved
        self.missing += other.missing

    def to_dict(self) -> ImageCountsDict:
        return {
            "found": self.found,
            "migrated": self.migrated,
            "failed": self.failed,
            "preserved": self.preserved,
            "missing": self.missing,
        }


@dataclass
class ItemResult:
    """Structured result for one source item.

    ``images`` holds the item's TransferResults in reference order.
    """

    status: ItemStatus
    source_id: str
    slug: str
    title: str = ""
    image_counts: ImageCounts = field(default_factory=ImageCounts)
    images: list[TransferResult] = field(default_factory=list)
    references: list[ImageReference] = field(default_factory=list)
    error: str | None = None
    destination_id: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status in (ItemStatus.CREATED, ItemStatus.UPDATED)


# ---------------------------------------------------------------------------
# Serialized report shapes
# ---------------------------------------------------------------------------


class ImageCountsDict(TypedDict):
    """Serialized :class:`ImageCounts`."""

    found: int
    migrated: int
    failed: int
    preserved: int
    missing: int


class ImageResultDict(TypedDict, total=False):
    """One image entry in a per-item report result."""

    field: str
    index: int
    originalUrl: str
    newUrl: str
    success: bool
    byteSize: int
    failureReason: str


class ItemResultDict(TypedDict, total=False):
    """One entry of ``perItemResults``."""

    status: str
    sourceId: str
    slug: str
    title: str
    imageCounts: ImageCountsDict
    images: list[ImageResultDict]
    error: str
    destinationId: str


class MigrationReportDict(TypedDict, total=False):
    """The persisted JSON report for one run."""

    schemaVersion: int
    collection: str
    dryRun: bool
    uploadImages: bool
    cancelled: bool
    total: int
    processed: int
    created: int
    updated: int
    skipped: int
    failed: int
    successRate: float
    durationSeconds: float
    startedAt: str
    generatedAt: str
    imageTotals: ImageCountsDict
    perItemResults: list[ItemResultDict]
