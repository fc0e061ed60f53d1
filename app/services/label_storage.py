import logging
import time
from pathlib import Path

import requests

from app.config import settings

logger = logging.getLogger(__name__)


class LabelStore:
    """Durable storage for shipping label PDFs on a local or mounted volume."""

    def __init__(self, root: str | Path, public_base_url: str):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")

    def save(self, order_id: int, content: bytes) -> str:
        self.root.mkdir(parents=True, exist_ok=True)
        file_name = f"{order_id}-{int(time.time() * 1000)}.pdf"
        path = self.root / file_name
        # Never overwrite an existing label.
        with open(path, "xb") as handle:
            handle.write(content)
        return f"{self.public_base_url}/{file_name}"


def get_label_store() -> LabelStore:
    return LabelStore(settings.LABEL_STORAGE_DIR, settings.LABEL_PUBLIC_BASE_URL)


def persist_label(label_url: str | None, order_id: int, store: LabelStore | None) -> str | None:
    """Download the provider label once and store it; keep the provider URL on any failure."""
    if not label_url or store is None:
        return label_url
    try:
        response = requests.get(label_url, timeout=settings.HTTP_TIMEOUT_SECONDS)
        response.raise_for_status()
        stored_url = store.save(order_id, response.content)
    except (requests.RequestException, OSError) as exc:
        logger.warning("Label storage failed for order %s, keeping provider URL: %s", order_id, exc)
        return label_url
    logger.info("Shipping label stored for order %s: %s", order_id, stored_url)
    return stored_url
