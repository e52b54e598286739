"""
Pytest configuration and shared fixtures.
"""
import pytest
import uuid
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Optional
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool
from httpx import ASGITransport, AsyncClient

from asset_admin.main import app
from asset_admin.core.auth import get_current_admin_user
from asset_admin.core.database import Base, get_db
from asset_admin.core.dispatch import BackgroundDispatcher, get_dispatcher
from asset_admin.models.article import Article, ArticleGalleryItem
from asset_admin.models.course import Course, CourseGalleryItem
from asset_admin.models.file_asset import FileAsset, PermissionLevel
from asset_admin.models.user import User, UserRole
from asset_admin.services.storage import LocalStorage, get_storage


# Test database URL (in-memory SQLite for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def test_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Clean up
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest.fixture
async def test_db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """
    Create test database session.

    Services commit per item, so isolation comes from the per-test
    in-memory engine rather than an outer transaction.
    """
    async with session_factory() as session:
        yield session


@pytest.fixture
def storage(tmp_path) -> LocalStorage:
    """Storage rooted in a per-test temporary directory."""
    root = tmp_path / "uploads"
    root.mkdir()
    return LocalStorage(root=root, backup_root=tmp_path / "backups", public_url_prefix="/uploads")


@pytest.fixture
async def dispatcher(session_factory) -> AsyncGenerator[BackgroundDispatcher, None]:
    """Dispatcher bound to the test database; drained before the engine closes."""
    dispatcher = BackgroundDispatcher(session_factory)
    yield dispatcher
    await dispatcher.drain()


@pytest.fixture
async def test_admin_user(test_db: AsyncSession) -> User:
    """Create a test admin user."""
    return await UserFactory.create_and_save_user(
        test_db, username="admin", email="admin@example.com", role=UserRole.ADMIN
    )


@pytest.fixture
def mock_current_admin_user(test_admin_user: User):
    """Mock current admin user dependency."""
    async def _mock_current_admin_user():
        return test_admin_user
    return _mock_current_admin_user


@pytest.fixture
async def test_client(
    test_db: AsyncSession,
    storage: LocalStorage,
    dispatcher: BackgroundDispatcher,
    mock_current_admin_user
) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with database, storage and auth overrides."""

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_current_admin_user] = mock_current_admin_user

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    await dispatcher.drain()
    # Clean up overrides
    app.dependency_overrides.clear()


# Factory fixtures for creating test data
class UserFactory:
    """Factory for creating test users."""

    @staticmethod
    def create_user(
        username: str = None,
        email: str = None,
        role: UserRole = UserRole.NORMAL,
        is_active: bool = True,
        **kwargs
    ) -> User:
        """Create a user instance (not persisted)."""
        user_id = uuid.uuid4()
        return User(
            id=user_id,
            username=username or f"user_{user_id.hex[:8]}",
            email=email or f"test_{user_id.hex[:8]}@example.com",
            role=role,
            is_active=is_active,
            **kwargs
        )

    @staticmethod
    async def create_and_save_user(db: AsyncSession, **kwargs) -> User:
        """Create and save a user to the database."""
        user = UserFactory.create_user(**kwargs)
        db.add(user)
        await db.commit()
        await db.refresh(user)
        return user


class FileAssetFactory:
    """Factory for creating file assets, optionally with a blob on disk."""

    @staticmethod
    def create_asset(
        name: str = None,
        path: str = None,
        content: bytes = b"test file content",
        mime_type: str = "image/png",
        category: Optional[str] = None,
        tags=None,
        permission: PermissionLevel = PermissionLevel.PUBLIC,
        created_at: Optional[datetime] = None,
        **kwargs
    ) -> FileAsset:
        """Create a file asset instance (not persisted)."""
        asset_id = uuid.uuid4()
        name = name or f"file_{asset_id.hex[:8]}.png"
        path = path or f"/uploads/{asset_id.hex}_{name}"
        kwargs.setdefault("size", len(content))
        if created_at is not None:
            kwargs["created_at"] = created_at
            kwargs.setdefault("updated_at", created_at)
        return FileAsset(
            id=asset_id,
            name=name,
            mime_type=mime_type,
            path=path,
            url=f"/uploads{path}",
            category=category,
            tags=list(tags or []),
            permission=permission,
            custom_metadata={},
            **kwargs
        )

    @staticmethod
    async def create_and_save_asset(
        db: AsyncSession,
        storage: Optional[LocalStorage] = None,
        content: bytes = b"test file content",
        write_file: bool = True,
        **kwargs
    ) -> FileAsset:
        """Create and save an asset; writes its blob when ``storage`` is given."""
        asset = FileAssetFactory.create_asset(content=content, **kwargs)
        if storage is not None and write_file:
            storage.write(asset.path, content)
        db.add(asset)
        await db.commit()
        await db.refresh(asset)
        return asset


class ArticleFactory:
    """Factory for articles referencing file assets."""

    @staticmethod
    async def create_and_save_article(
        db: AsyncSession,
        title: str = None,
        featured_image: Optional[FileAsset] = None,
        gallery=(),
    ) -> Article:
        article = Article(
            id=uuid.uuid4(),
            title=title or "Test Article",
            featured_image_id=featured_image.id if featured_image else None,
            featured_image_url=featured_image.url if featured_image else None,
        )
        db.add(article)
        for position, asset in enumerate(gallery):
            db.add(ArticleGalleryItem(
                article_id=article.id,
                file_id=asset.id,
                position=position,
                asset_url=asset.url,
            ))
        await db.commit()
        await db.refresh(article)
        return article


class CourseFactory:
    """Factory for courses referencing file assets."""

    @staticmethod
    async def create_and_save_course(
        db: AsyncSession,
        title: str = None,
        featured_image: Optional[FileAsset] = None,
        gallery=(),
    ) -> Course:
        course = Course(
            id=uuid.uuid4(),
            title=title or "Test Course",
            featured_image_id=featured_image.id if featured_image else None,
            featured_image_url=featured_image.url if featured_image else None,
        )
        db.add(course)
        for position, asset in enumerate(gallery):
            db.add(CourseGalleryItem(
                course_id=course.id,
                file_id=asset.id,
                position=position,
                asset_url=asset.url,
            ))
        await db.commit()
        await db.refresh(course)
        return course


def days_ago(days: int) -> datetime:
    return datetime.now(timezone.utc) - timedelta(days=days)
