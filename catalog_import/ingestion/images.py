"""
Image reconciliation and reachability checks.
"""

import logging
import threading
from typing import Dict, List, Optional, Tuple

import requests

from ..models.catalog import CatalogImage
from ..models.options import ImageStrategy
from .errors import ImageValidationError

logger = logging.getLogger(__name__)


def _dedupe(images: List[CatalogImage]) -> List[CatalogImage]:
    unique: List[CatalogImage] = []
    for image in images:
        if not any(image.same_as(kept) for kept in unique):
            unique.append(image)
    return unique


class ImageReconciler:
    """
    Combines an entity's images with a row's images.

    merge: existing images are kept in order and new ones appended.
    replace: the row's images become the whole set.
    Both de-duplicate by normalized URL, or by checksum when both sides carry one.
    """

    def __init__(self, strategy: ImageStrategy):
        self.strategy = ImageStrategy(strategy)

    def reconcile(
        self, existing: List[CatalogImage], incoming: List[CatalogImage]
    ) -> Tuple[List[CatalogImage], List[CatalogImage]]:
        """
        Returns:
            (resulting image list, images not present before)
        """
        if self.strategy == ImageStrategy.MERGE:
            result = [image.model_copy() for image in existing]
            for image in incoming:
                if not any(image.same_as(kept) for kept in result):
                    result.append(image)
        else:
            result = _dedupe(incoming)

        added = [image for image in result if not any(image.same_as(old) for old in existing)]
        return result, added

    @staticmethod
    def same_set(left: List[CatalogImage], right: List[CatalogImage]) -> bool:
        """Same images in the same order."""
        if len(left) != len(right):
            return False
        return all(a.same_as(b) and a.checksum == b.checksum for a, b in zip(left, right))


class ImageChecker:
    """
    HTTP reachability check for image URLs.

    HEAD first, GET when the host rejects HEAD. Results are cached for the
    lifetime of the checker (one job).
    """

    def __init__(self, timeout_ms: int = 3000, session: Optional[requests.Session] = None):
        self.timeout = timeout_ms / 1000.0
        self.session = session or requests.Session()
        self._cache: Dict[str, bool] = {}
        self._lock = threading.Lock()

    def _probe(self, url: str) -> bool:
        try:
            response = self.session.head(url, timeout=self.timeout, allow_redirects=True)
            if response.status_code in (403, 405, 501):
                response = self.session.get(
                    url, timeout=self.timeout, allow_redirects=True, stream=True
                )
                response.close()
            return response.status_code < 400
        except requests.RequestException as e:
            logger.debug(f"Image check failed for {url}: {e}")
            return False

    def is_reachable(self, url: str) -> bool:
        with self._lock:
            cached = self._cache.get(url)
        if cached is not None:
            return cached

        reachable = self._probe(url)
        with self._lock:
            self._cache[url] = reachable
        return reachable

    def check(self, images: List[CatalogImage]) -> None:
        """
        Raises:
            ImageValidationError: listing every unreachable URL
        """
        failed = [image.url for image in images if not self.is_reachable(image.url)]
        if failed:
            raise ImageValidationError(failed)
