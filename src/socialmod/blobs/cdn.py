"""CDN URL resolution; no existence checks."""

from __future__ import annotations

from socialmod.util.handles import validate_handle


class CdnUrlResolver:
    """Turns a blob handle into a public URL under ``base_url``."""

    def __init__(self, base_url: str) -> None:
        self.base_url = base_url.rstrip("/")

    def url_for(self, blob_handle: str) -> str:
        validate_handle(blob_handle, "blob_handle")
        return f"{self.base_url}/{blob_handle}"
