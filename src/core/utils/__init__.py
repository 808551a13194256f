"""Utility helpers shared across packages."""

from core.utils.json_serializers import json_serializer

__all__ = ["json_serializer"]
