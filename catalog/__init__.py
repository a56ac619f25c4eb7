"""Catalog administration: events, collections, stamps, trainers and the image gallery."""

from .admin import create_catalog_admin_blueprint

__all__ = ["create_catalog_admin_blueprint"]
