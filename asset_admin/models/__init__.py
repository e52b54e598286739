"""
Database models package.
"""
from .file_asset import FileAsset, PermissionLevel
from .article import Article, ArticleGalleryItem
from .course import Course, CourseGalleryItem
from .user import User, UserRole

__all__ = [
    # Asset models
    "FileAsset",
    "PermissionLevel",

    # Content models
    "Article",
    "ArticleGalleryItem",
    "Course",
    "CourseGalleryItem",

    # User models
    "User",
    "UserRole",
]
