"""
Publishes a full snapshot of every bundle to the shop metafield read by the
checkout function. Fire-and-forget: failures are logged and counted, never raised.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

import settings
from services.errors import BundleServiceError
from services.obs.metrics import metrics_collector
from services.rule_set import dump_rules, parse_rules

logger = logging.getLogger(__name__)


def build_snapshot(bundles: Iterable[Any], app_url: Optional[str] = None) -> Dict[str, Any]:
    return {
        "bundles": [
            {
                "bundleId": bundle.id,
                "bundleName": bundle.name,
                "collectionId": bundle.collection_id,
                "collectionTitle": bundle.collection_title,
                "rules": dump_rules(parse_rules(bundle.rules)),
                "createdAt": bundle.created_at.isoformat() if bundle.created_at else None,
                "updatedAt": bundle.updated_at.isoformat() if bundle.updated_at else None,
            }
            for bundle in bundles
        ],
        "appUrl": app_url,
        "syncedAt": datetime.utcnow().isoformat() + "Z",
    }


class MetafieldSync:
    def __init__(self, store, slot, *, key: Optional[str] = None, app_url: Optional[str] = None):
        self.store = store
        self.slot = slot
        self.key = key or settings.METAFIELD_KEY
        self.app_url = app_url if app_url is not None else settings.SHOPIFY_APP_URL

    async def sync(self) -> bool:
        """Overwrite the snapshot wholesale. Returns False (after logging) on any failure."""
        try:
            bundles = await self.store.list_bundles()
            document = build_snapshot(bundles, self.app_url)
            await self.slot.set_snapshot(self.key, json.dumps(document))
        except BundleServiceError as e:
            logger.warning("[metafield_sync] Snapshot publish failed kind=%s detail=%s", e.kind, e.detail)
            metrics_collector.record_sync(False)
            return False
        except Exception as e:
            logger.exception(f"[metafield_sync] Unexpected snapshot failure: {e}")
            metrics_collector.record_sync(False)
            return False

        logger.info("[metafield_sync] Published snapshot of %d bundles to key=%s", len(document["bundles"]), self.key)
        metrics_collector.record_sync(True)
        return True
