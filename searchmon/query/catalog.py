"""
Field catalog.

Discovers the fields of an index from the store's mapping API and validates
configured metric fields against it before any query is compiled.
"""

import logging
from typing import Any, Dict, Iterable

from ..errors import ConfigurationError, ResponseShapeError

logger = logging.getLogger("searchmon.catalog")


class FieldCatalog:
    """Field name -> type lookup backed by the store's mapping endpoint."""

    def __init__(self, client):
        self.client = client

    def discover(self, index: str) -> Dict[str, str]:
        """
        Fetch the mapping for an index (or pattern/alias) and flatten it.

        Returns:
            Dict of dotted field path -> field type, e.g. {"host.name": "keyword"}

        Raises:
            IndexNotFoundError / ConnectivityError: store or index unavailable
            ResponseShapeError: mapping response not understood
        """
        raw = self.client.field_mapping(index)
        fields = flatten_mapping(raw)
        logger.debug(f"index {index}: discovered {len(fields)} fields")
        return fields


def flatten_mapping(raw: Dict[str, Any]) -> Dict[str, str]:
    """
    Flatten a mapping response into {dotted path: type}.

    Mappings of every index matched by a pattern are merged; on conflicting
    types the first index seen wins.
    """
    if not isinstance(raw, dict):
        raise ResponseShapeError("mapping response is not an object")

    fields: Dict[str, str] = {}
    for index_name, index_def in raw.items():
        if not isinstance(index_def, dict):
            raise ResponseShapeError(f"mapping for index '{index_name}' is not an object")
        mappings = index_def.get("mappings", {})
        if not isinstance(mappings, dict):
            raise ResponseShapeError(f"mappings of index '{index_name}' is not an object")
        if "properties" in mappings:
            _walk_properties(mappings["properties"], "", fields)
        else:
            # Pre-7.x layout: mappings keyed by document type
            for type_def in mappings.values():
                if isinstance(type_def, dict) and "properties" in type_def:
                    _walk_properties(type_def["properties"], "", fields)
    return fields


def _walk_properties(properties: Dict[str, Any], prefix: str, out: Dict[str, str]) -> None:
    if not isinstance(properties, dict):
        where = prefix.rstrip(".") or "<root>"
        raise ResponseShapeError(f"properties of '{where}' is not an object")
    for name, definition in properties.items():
        if not isinstance(definition, dict):
            continue
        path = f"{prefix}{name}"

        if "properties" in definition:
            out.setdefault(path, definition.get("type", "object"))
            _walk_properties(definition["properties"], f"{path}.", out)
            continue

        field_type = definition.get("type")
        if field_type:
            out.setdefault(path, field_type)

        # Multi-fields, e.g. "host.name.keyword"
        multi_fields = definition.get("fields")
        if not isinstance(multi_fields, dict):
            continue
        for sub_name, sub_def in multi_fields.items():
            if isinstance(sub_def, dict) and sub_def.get("type"):
                out.setdefault(f"{path}.{sub_name}", sub_def["type"])


def validate_metric_fields(index: str, metric_fields: Iterable[str], field_types: Dict[str, str]) -> None:
    """Raise ConfigurationError for the first metric field not present in the catalog."""
    for metric_field in metric_fields:
        if metric_field not in field_types:
            raise ConfigurationError(f"metric field '{metric_field}' not found on index '{index}'")
