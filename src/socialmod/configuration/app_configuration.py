from __future__ import annotations
from pathlib import Path
import fcntl
import os
from typing import Any, Dict
import yaml

from socialmod.util.logger import get_logger

logger = get_logger("app_configuration")


CONFIG_PATH = Path("./config/app_config.yml").resolve()

DEFAULT_JPEG_QUALITY = 80
DEFAULT_MAX_REVIEW_IMAGE_BYTES = 4 * 1024 * 1024
DEFAULT_MIN_REVIEW_IMAGE_PIXELS = 50


class AppConfig:
    """File-lock based accessor around the YAML-based application configuration.

    The class caches the contents of ``./config/app_config.yml`` and exposes
    typed properties with defaults for every pipeline setting. Secrets are
    never read from the file; they come from the environment (populated from
    ``.env`` by :mod:`socialmod.main`).
    """

    def __init__(self, config_path: Path) -> None:
        self.config_path = config_path
        self._data: Dict[str, Any] = {}
        self.reload()

    # --------------------------
    # Private helpers
    # --------------------------
    def load_from_disk(self) -> Dict[str, Any]:
        try:
            with self.config_path.open("r", encoding="utf-8") as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_SH)
                try:
                    data = yaml.safe_load(f)
                finally:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        except FileNotFoundError:
            logger.error("[APP CONFIGURATION] Config file %s not found.", self.config_path)
            return {}
        except (OSError, yaml.YAMLError) as exc:
            logger.error("[APP CONFIGURATION] Failed to load config %s: %s", self.config_path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _section(self, name: str) -> Dict[str, Any]:
        value = self._data.get(name, {})
        return value if isinstance(value, dict) else {}

    # --------------------------
    # Public API
    # --------------------------
    def reload(self) -> Dict[str, Any]:
        """Reload configuration from disk and return the loaded mapping.

        Returns the raw mapping that was loaded (an empty dict on error).
        """
        self._data = self.load_from_disk()
        return self._data

    @property
    def data(self) -> Dict[str, Any]:
        """Return the current cached configuration mapping (do not mutate)."""
        return self._data

    # --------------------------
    # Database
    # --------------------------
    @property
    def database_path(self) -> Path:
        return Path(self._section("database").get("path", "./data/socialmod.db"))

    @property
    def cache_ttl_seconds(self) -> int:
        """TTL of the read cache used by ``StorageConsistencyMode.DEFAULT`` reads."""
        return int(self._section("database").get("cache_ttl_seconds", 60))

    # --------------------------
    # Blobs & CDN
    # --------------------------
    @property
    def blob_root(self) -> Path:
        return Path(self._section("blob_storage").get("root", "./data/blobs"))

    @property
    def cdn_base_url(self) -> str:
        return str(self._section("cdn").get("base_url", "https://cdn.localhost/images"))

    # --------------------------
    # Moderation
    # --------------------------
    @property
    def callback_base_url(self) -> str:
        """Base URL the review provider calls back; must be public https."""
        return str(self._section("moderation").get("callback_base_url", ""))

    @property
    def review_provider_url(self) -> str:
        return str(self._section("moderation").get("provider_url", ""))

    @property
    def review_provider_key(self) -> str | None:
        """Subscription key for the review provider, read from ``REVIEW_PROVIDER_KEY``."""
        return os.getenv("REVIEW_PROVIDER_KEY")

    @property
    def provider_timeout_seconds(self) -> float:
        return float(self._section("moderation").get("provider_timeout_seconds", 10.0))

    # --------------------------
    # Images
    # --------------------------
    @property
    def jpeg_quality(self) -> int:
        quality = int(self._section("images").get("jpeg_quality", DEFAULT_JPEG_QUALITY))
        if not 1 <= quality <= 95:
            logger.warning("[APP CONFIGURATION] jpeg_quality %d out of range, using %d", quality, DEFAULT_JPEG_QUALITY)
            return DEFAULT_JPEG_QUALITY
        return quality

    @property
    def max_review_image_bytes(self) -> int:
        """Images larger than this are reviewed through their largest derived size."""
        return int(self._section("images").get("max_review_image_bytes", DEFAULT_MAX_REVIEW_IMAGE_BYTES))

    @property
    def min_review_image_pixels(self) -> int:
        """Images with either side below this are not sent for review."""
        return int(self._section("images").get("min_review_image_pixels", DEFAULT_MIN_REVIEW_IMAGE_PIXELS))

    # --------------------------
    # Queues
    # --------------------------
    @property
    def max_dequeue_count(self) -> int:
        return int(self._section("queues").get("max_dequeue_count", 5))

    @property
    def retry_delay_seconds(self) -> float:
        return float(self._section("queues").get("retry_delay_seconds", 5.0))

    @property
    def worker_count(self) -> int:
        """Worker tasks started per queue."""
        return max(1, int(self._section("queues").get("worker_count", 2)))
