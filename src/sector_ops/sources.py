"""Route source manifest loader and validator.

Loads routes.json, which declares the spreadsheets (CSV exports) that feed
roster generation:

    {"sources": [
        {"name": "mainline", "url": "https://.../export?format=csv", "kind": "primary"},
        {"name": "partner-ai", "url": "https://...", "kind": "partner"}
    ]}
"""

import json
import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)

PRIMARY = "primary"
PARTNER = "partner"

_VALID_KINDS = {PRIMARY, PARTNER}

_REQUIRED_SOURCE_FIELDS = {"name", "url"}


@dataclass(frozen=True)
class RouteSource:
    name: str
    url: str
    kind: str = PRIMARY
    operator: str | None = None

    @property
    def is_partner(self) -> bool:
        return self.kind == PARTNER


def load_sources(path: str | None = None, fallback_url: str = "") -> list[RouteSource]:
    """Load and validate routes.json.

    Args:
        path: Path to routes.json. Defaults to ROUTE_SOURCES_PATH env var
              or ./routes.json.
        fallback_url: Single primary sheet URL used when the manifest file
                      does not exist.

    Returns:
        Validated list of RouteSource.

    Raises:
        FileNotFoundError: If neither the manifest nor a fallback URL exists.
        ValueError: If the manifest is invalid.
    """
    if path is None:
        path = os.environ.get("ROUTE_SOURCES_PATH", "./routes.json")

    if not os.path.exists(path):
        if fallback_url:
            logger.info("No route manifest at %s; using single primary sheet", path)
            return [RouteSource(name="primary", url=fallback_url, kind=PRIMARY)]
        raise FileNotFoundError(f"Route manifest not found: {path}")

    with open(path) as f:
        try:
            manifest = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in route manifest: {e}")

    sources = _validate(manifest, path)
    logger.info("Loaded route manifest: %d sources from %s", len(sources), path)
    return sources


def _validate(manifest: dict, path: str) -> list[RouteSource]:
    """Validate manifest structure."""
    if not isinstance(manifest, dict):
        raise ValueError(f"Route manifest must be a JSON object: {path}")

    entries = manifest.get("sources")
    if not isinstance(entries, list) or not entries:
        raise ValueError("sources must be a non-empty array")

    sources = []
    seen = set()
    for i, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ValueError(f"Source #{i} must be an object")

        missing = _REQUIRED_SOURCE_FIELDS - set(entry)
        if missing:
            raise ValueError(f"Source #{i} missing required fields: {sorted(missing)}")

        name = entry["name"]
        if name in seen:
            raise ValueError(f"Duplicate source name: {name}")
        seen.add(name)

        kind = entry.get("kind", PRIMARY)
        if kind not in _VALID_KINDS:
            raise ValueError(f"Source '{name}' has unknown kind '{kind}'")

        url = entry["url"]
        if not isinstance(url, str) or not url.startswith(("http://", "https://")):
            raise ValueError(f"Source '{name}' url must be an http(s) URL")

        sources.append(
            RouteSource(name=name, url=url, kind=kind, operator=entry.get("operator"))
        )
    return sources
