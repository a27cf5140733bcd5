"""Per-collection field-mapping tables.

Each legacy collection is described once, declaratively: which source keys
are copied as-is, which hold a single image and which hold a gallery. The
candidate extractor and the mapping reconciler both read these tables, so
there is exactly one place that knows a collection's shape.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from cms_migrator.types import FieldKind, FieldMapping


def _scalar(source: str, destination: str, rich_text: bool = False) -> FieldMapping:
    return FieldMapping(source, destination, FieldKind.SCALAR, rich_text=rich_text)


def _image(source: str, destination: str, caption: str | None = None) -> FieldMapping:
    return FieldMapping(source, destination, FieldKind.IMAGE, caption_key=caption)


def _gallery(source: str, destination: str) -> FieldMapping:
    return FieldMapping(source, destination, FieldKind.IMAGE_ARRAY)


@dataclass(frozen=True)
class CollectionConfig:
    """One migratable collection.

    ``name`` is the CLI/report name and the storage folder, ``collection_id``
    the source API identifier and ``type`` the destination record type.
    """

    name: str
    type: str
    collection_id: str = ""
    title_field: str = "name"
    slug_field: str = "slug"
    fields: tuple[FieldMapping, ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(
        cls, name: str, data: dict[str, Any] | None, base: CollectionConfig | None = None
    ) -> CollectionConfig:
        """Build a collection from YAML, layering over a built-in table if any.

        A ``fields`` list in YAML replaces the built-in table entirely.
        """
        data = data or {}
        raw_fields = data.get("fields")
        if raw_fields is not None:
            fields = tuple(FieldMapping.from_dict(entry) for entry in raw_fields)
        else:
            fields = base.fields if base else ()
        return cls(
            name=name,
            type=data.get("type", base.type if base else name),
            collection_id=str(
                data.get("collection_id", base.collection_id if base else "") or ""
            ),
            title_field=data.get("title_field", base.title_field if base else "name"),
            slug_field=data.get("slug_field", base.slug_field if base else "slug"),
            fields=fields,
        )

    def mappings_of(self, *kinds: FieldKind) -> list[FieldMapping]:
        return [m for m in self.fields if m.kind in kinds]

    @property
    def image_mappings(self) -> list[FieldMapping]:
        return self.mappings_of(FieldKind.IMAGE, FieldKind.IMAGE_ARRAY)

    @property
    def rich_text_mappings(self) -> list[FieldMapping]:
        return [m for m in self.fields if m.kind is FieldKind.SCALAR and m.rich_text]


# ---------------------------------------------------------------------------
# Built-in tables
# ---------------------------------------------------------------------------

POST_FIELDS = (
    _scalar("name", "title"),
    _scalar("slug", "slug"),
    _scalar("body", "description", rich_text=True),
    _scalar("body", "bodyEnglish", rich_text=True),
    _scalar("body-arabic", "bodyArabic", rich_text=True),
    _scalar("arabic-title", "arabicTitle"),
    _scalar("arabic-complete-incomplete", "arabicCompleteIncomplete"),
    _scalar("date-published", "datePublished"),
    _scalar("location", "location"),
    _scalar("location-arabic", "locationArabic"),
    _scalar("seo-title", "seoTitle"),
    _scalar("seo-title-arabic", "seoTitleArabic"),
    _scalar("seo-meta", "seoMeta"),
    _scalar("seo-meta-arabic", "seoMetaArabic"),
    _scalar("bullet-points-english", "bulletPointsEnglish", rich_text=True),
    _scalar("bullet-points-arabic", "bulletPointsArabic", rich_text=True),
    _scalar("hero-video-youtube-embed-id", "heroVideoYoutubeId"),
    _scalar("hero-video-arabic-youtube-video-id", "heroVideoArabicYoutubeId"),
    _scalar("video-as-hero-yes-no", "videoAsHero"),
    _scalar("image-carousel-credits", "imageCarouselCredits"),
    _scalar("image-gallery-credits-arabic", "imageGalleryCreditsArabic"),
    _scalar("featured", "featured"),
    _scalar("push-to-gr", "pushToGR"),
    _scalar("programme-2", "programmeLabel"),
    _scalar("programmes-multiple", "relatedProgrammes"),
    _scalar("theme-3", "tags"),
    _scalar("blogs-categories-2", "blogCategory"),
    _scalar("related-event", "relatedEvent"),
    _scalar("people", "people"),
    _scalar("innovations", "innovations"),
    _image("main-image", "mainImage"),
    _image("thumbnail", "thumbnail"),
    _image("open-graph-image", "openGraphImage"),
    _gallery("image-carousel", "imageCarousel"),
)

EVENT_FIELDS = (
    _scalar("name", "title"),
    _scalar("slug", "slug"),
    _scalar("short-description-2", "description"),
    _scalar("event-date", "eventDate"),
    _scalar("end-date", "endDate"),
    _scalar("time", "eventTime"),
    _scalar("address", "address"),
    _scalar("city", "city"),
    _scalar("organisers", "organisers"),
    _scalar("partners", "partners"),
    _scalar("programme-label", "programmeLabel"),
    _scalar("seo-title", "seoTitle"),
    _scalar("seo-meta-description", "seoMetaDescription"),
    _scalar("video-as-hero-on-off", "videoAsHero"),
    _scalar("trailer-livestream-highlights-video-link", "trailerVideoLink"),
    _scalar("related-people-rich-text", "relatedPeopleRichText", rich_text=True),
    _scalar("related-programme-s", "relatedProgrammes"),
    _scalar("featured", "featured"),
    _scalar("push-to-gr", "pushToGR"),
    _scalar("news-on-off", "newsOnOff"),
    _scalar("in-the-media-on-off", "inTheMediaOnOff"),
    _scalar("more-details-on-off", "moreDetailsOnOff"),
    _image("hero-image", "heroImage", caption="hero-image-caption"),
    _image("thumbnail", "thumbnail"),
    _image("open-graph-image", "openGraphImage"),
    _gallery("image-gallery", "imageGallery"),
)

NEWS_FIELDS = (
    _scalar("name", "title"),
    _scalar("slug", "slug"),
    _scalar("summary", "summary"),
    _scalar("arabic-title", "arabicTitle"),
    _scalar("date-published", "datePublished"),
    _scalar("external-link", "externalLink"),
    _scalar("programme", "programmeLabel"),
    _scalar("programme-s", "relatedProgrammes"),
    _scalar("people", "people"),
    _scalar("sources", "sources"),
    _scalar("featured", "featured"),
    _scalar("push-to-gr", "pushToGR"),
    _scalar("remove-from-news-grid", "removeFromNewsGrid"),
    _image("hero-image", "heroImage"),
    _image("thumbnail", "thumbnail"),
)

PROGRAMME_FIELDS = (
    _scalar("name", "title"),
    _scalar("slug", "slug"),
    _scalar("description", "description", rich_text=True),
    _image("hero-image-square", "heroSquare"),
    _image("hero-image-wide", "heroWide"),
    _image("hero-image", "heroImage"),
)


def default_collections() -> dict[str, CollectionConfig]:
    """The built-in collections, keyed by name.

    Source collection ids are deployment-specific and come from config.
    """
    return {
        "posts": CollectionConfig(name="posts", type="post", fields=POST_FIELDS),
        "events": CollectionConfig(name="events", type="event", fields=EVENT_FIELDS),
        "news": CollectionConfig(name="news", type="news", fields=NEWS_FIELDS),
        "programmes": CollectionConfig(
            name="programmes", type="programme", fields=PROGRAMME_FIELDS
        ),
    }


def validate_field_mappings(
    collection: str, mappings: Iterable[FieldMapping]
) -> list[str]:
    """
    Check a mapping table for mistakes that would corrupt records.

    Args:
        collection: Collection name used in messages
        mappings: The table to check

    Returns:
        A list of human-readable problems; empty when the table is valid
    """
    problems: list[str] = []
    seen_destinations: set[str] = set()
    for position, mapping in enumerate(mappings):
        label = f"collections.{collection}.fields[{position}]"
        if not mapping.source_key.strip():
            problems.append(f"{label}: source key is empty")
        if not mapping.destination_key.strip():
            problems.append(f"{label}: destination key is empty")
        elif mapping.destination_key in seen_destinations:
            problems.append(
                f"{label}: destination key '{mapping.destination_key}' is mapped twice"
            )
        seen_destinations.add(mapping.destination_key)
        if mapping.rich_text and mapping.kind is not FieldKind.SCALAR:
            problems.append(f"{label}: rich_text is only valid on scalar fields")
        if mapping.caption_key and mapping.kind is not FieldKind.IMAGE:
            problems.append(f"{label}: caption is only valid on image fields")
    return problems
