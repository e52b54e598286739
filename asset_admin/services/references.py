"""
Reference scanning across every entity slot that can hold a file asset.

Each slot (an FK column or an association table) is described by one
``ReferenceProbe``. The scanner runs every registered probe and merges the
results; adding a new entity kind means registering a new probe.
"""
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from asset_admin.models.article import Article, ArticleGalleryItem
from asset_admin.models.course import Course, CourseGalleryItem
from asset_admin.models.user import User

logger = logging.getLogger(__name__)

SINGULAR = "singular"
MULTI = "multi"


@dataclass(frozen=True)
class EntityRef:
    """One entity slot pointing at a file."""
    kind: str
    slot: str
    entity_id: uuid.UUID
    label: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "slot": self.slot,
            "entity_id": str(self.entity_id),
            "label": self.label,
        }


@dataclass
class ReferenceInfo:
    """Merged result of every probe for one file."""
    file_id: uuid.UUID
    per_entity_kind: Dict[str, List[EntityRef]] = field(default_factory=dict)
    scan_failed: bool = False
    failed_probes: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(len(refs) for refs in self.per_entity_kind.values())

    @property
    def has_references(self) -> bool:
        # A failed scan cannot prove the file is unused
        return self.scan_failed or self.total > 0

    def add(self, refs: Iterable[EntityRef]) -> None:
        for ref in refs:
            self.per_entity_kind.setdefault(ref.kind, []).append(ref)

    def refs(self) -> List[EntityRef]:
        return [ref for refs in self.per_entity_kind.values() for ref in refs]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_id": str(self.file_id),
            "has_references": self.has_references,
            "total": self.total,
            "scan_failed": self.scan_failed,
            "failed_probes": list(self.failed_probes),
            "per_entity_kind": {
                kind: [ref.to_dict() for ref in refs]
                for kind, refs in self.per_entity_kind.items()
            },
        }


class ReferenceProbe:
    """Finds, detaches and relinks one entity slot."""

    kind: str = ""
    slot: str = ""
    cardinality: str = SINGULAR

    @property
    def name(self) -> str:
        return f"{self.kind}.{self.slot}"

    async def find(self, db: AsyncSession, file_id: uuid.UUID) -> List[EntityRef]:
        raise NotImplementedError

    async def detach(self, db: AsyncSession, file_id: uuid.UUID) -> int:
        raise NotImplementedError

    async def relink(self, db: AsyncSession, file_id: uuid.UUID, url: str) -> int:
        return 0


class SingularSlotProbe(ReferenceProbe):
    """FK column on the owning entity, matched by equality."""

    cardinality = SINGULAR

    def __init__(self, kind, slot, model, id_column, label_column, url_column=None):
        self.kind = kind
        self.slot = slot
        self.model = model
        self.id_column = id_column
        self.label_column = label_column
        self.url_column = url_column

    async def find(self, db: AsyncSession, file_id: uuid.UUID) -> List[EntityRef]:
        stmt = select(self.model.id, self.label_column).where(self.id_column == file_id)
        result = await db.execute(stmt)
        return [
            EntityRef(kind=self.kind, slot=self.slot, entity_id=row[0], label=row[1])
            for row in result.all()
        ]

    async def detach(self, db: AsyncSession, file_id: uuid.UUID) -> int:
        values = {self.id_column.key: None}
        if self.url_column is not None:
            values[self.url_column.key] = None
        stmt = (
            update(self.model)
            .where(self.id_column == file_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.rowcount or 0

    async def relink(self, db: AsyncSession, file_id: uuid.UUID, url: str) -> int:
        if self.url_column is None:
            return 0
        stmt = (
            update(self.model)
            .where(self.id_column == file_id)
            .values(**{self.url_column.key: url})
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.rowcount or 0


class MultiSlotProbe(ReferenceProbe):
    """Association rows linking an owner to many files, matched by membership."""

    cardinality = MULTI

    def __init__(self, kind, slot, owner_model, item_model, owner_fk, label_column, url_column=None):
        self.kind = kind
        self.slot = slot
        self.owner_model = owner_model
        self.item_model = item_model
        self.owner_fk = owner_fk
        self.label_column = label_column
        self.url_column = url_column

    async def find(self, db: AsyncSession, file_id: uuid.UUID) -> List[EntityRef]:
        stmt = (
            select(self.owner_model.id, self.label_column)
            .join(self.item_model, self.owner_fk == self.owner_model.id)
            .where(self.item_model.file_id == file_id)
            .distinct()
        )
        result = await db.execute(stmt)
        return [
            EntityRef(kind=self.kind, slot=self.slot, entity_id=row[0], label=row[1])
            for row in result.all()
        ]

    async def detach(self, db: AsyncSession, file_id: uuid.UUID) -> int:
        stmt = (
            delete(self.item_model)
            .where(self.item_model.file_id == file_id)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.rowcount or 0

    async def relink(self, db: AsyncSession, file_id: uuid.UUID, url: str) -> int:
        if self.url_column is None:
            return 0
        stmt = (
            update(self.item_model)
            .where(self.item_model.file_id == file_id)
            .values(**{self.url_column.key: url})
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.rowcount or 0


def default_probes() -> List[ReferenceProbe]:
    """Probes for every slot in the content model."""
    return [
        SingularSlotProbe(
            "article", "featured_image", Article,
            Article.featured_image_id, Article.title, Article.featured_image_url
        ),
        MultiSlotProbe(
            "article", "gallery", Article, ArticleGalleryItem,
            ArticleGalleryItem.article_id, Article.title, ArticleGalleryItem.asset_url
        ),
        SingularSlotProbe(
            "course", "featured_image", Course,
            Course.featured_image_id, Course.title, Course.featured_image_url
        ),
        MultiSlotProbe(
            "course", "gallery", Course, CourseGalleryItem,
            CourseGalleryItem.course_id, Course.title, CourseGalleryItem.asset_url
        ),
        SingularSlotProbe("user", "avatar", User, User.avatar_id, User.email, User.avatar_url),
        SingularSlotProbe("user", "national_card", User, User.national_card_id, User.email),
    ]


class ReferenceScanner:
    """Runs every registered probe for a file."""

    def __init__(self, db: AsyncSession, probes: Optional[Sequence[ReferenceProbe]] = None):
        self.db = db
        self.probes = list(probes) if probes is not None else default_probes()
        self._cache: Optional[Dict[uuid.UUID, ReferenceInfo]] = None

    @asynccontextmanager
    async def batch_cache(self):
        """Memoize scans for the duration of one bulk pass."""
        previous = self._cache
        self._cache = {}
        try:
            yield self
        finally:
            self._cache = previous

    def invalidate(self, file_id: uuid.UUID) -> None:
        if self._cache is not None:
            self._cache.pop(file_id, None)

    async def scan(self, file_id: uuid.UUID) -> ReferenceInfo:
        """
        Collect every reference to ``file_id``.

        A failing probe marks the result as failed instead of raising, so
        callers treat the file as referenced.
        """
        if self._cache is not None and file_id in self._cache:
            return self._cache[file_id]

        info = ReferenceInfo(file_id=file_id)
        for probe in self.probes:
            try:
                info.add(await probe.find(self.db, file_id))
            except Exception as e:
                logger.error(f"Reference probe {probe.name} failed for file {file_id}: {e}")
                info.scan_failed = True
                info.failed_probes.append(probe.name)

        if self._cache is not None:
            self._cache[file_id] = info
        return info

    async def is_referenced(self, file_id: uuid.UUID) -> bool:
        return (await self.scan(file_id)).has_references

    async def clean(self, file_id: uuid.UUID, info: Optional[ReferenceInfo] = None) -> int:
        """
        Detach ``file_id`` from every entity slot.

        Singular slots are set to NULL together with their stored URL,
        association rows are deleted. Does not commit.

        Returns:
            int: Number of slots cleared
        """
        info = info or await self.scan(file_id)
        cleared = 0
        for probe in self.probes:
            if info.scan_failed or probe.kind in info.per_entity_kind:
                cleared += await probe.detach(self.db, file_id)
        self.invalidate(file_id)
        logger.info(f"Cleared {cleared} references to file {file_id}")
        return cleared

    async def relink(self, file_id: uuid.UUID, url: str) -> int:
        """Rewrite stored URLs that point at ``file_id``. Does not commit."""
        updated = 0
        for probe in self.probes:
            updated += await probe.relink(self.db, file_id, url)
        return updated
