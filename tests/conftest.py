import asyncio
import copy
import os
import sys
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional
import uuid

import pytest

os.environ.setdefault("DATABASE_URL", "")
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services.errors import BundleNotFound
from services.obs.metrics import metrics_collector


@dataclass
class FakeBundle:
    id: str
    name: str
    collection_id: str
    collection_title: str
    rules: List[Dict[str, Any]] = field(default_factory=list)
    discount_codes: List[Dict[str, Any]] = field(default_factory=list)
    shop_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class FakeStore:
    """In-memory stand-in for StorageService; returns copies like a fresh session would."""

    def __init__(self):
        self.bundles: Dict[str, FakeBundle] = {}
        self.fail_updates = False
        self.update_calls = 0
        self._clock = datetime(2026, 1, 1)

    def _tick(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    async def create_bundle(self, data):
        now = self._tick()
        bundle = FakeBundle(
            id=data.get("id") or str(uuid.uuid4()),
            name=data["name"],
            collection_id=data["collection_id"],
            collection_title=data["collection_title"],
            rules=copy.deepcopy(data.get("rules") or []),
            discount_codes=copy.deepcopy(data.get("discount_codes") or []),
            shop_id=data.get("shop_id"),
            created_at=now,
            updated_at=now,
        )
        self.bundles[bundle.id] = bundle
        return copy.deepcopy(bundle)

    async def get_bundle(self, bundle_id):
        if bundle_id not in self.bundles:
            raise BundleNotFound(bundle_id)
        return copy.deepcopy(self.bundles[bundle_id])

    async def list_bundles(self):
        ordered = sorted(self.bundles.values(), key=lambda b: b.created_at, reverse=True)
        return [copy.deepcopy(b) for b in ordered]

    async def update_bundle(self, bundle_id, **changes):
        self.update_calls += 1
        if self.fail_updates:
            raise RuntimeError("database unavailable")
        if bundle_id not in self.bundles:
            raise BundleNotFound(bundle_id)
        bundle = self.bundles[bundle_id]
        for key, value in changes.items():
            setattr(bundle, key, copy.deepcopy(value))
        bundle.updated_at = self._tick()
        return copy.deepcopy(bundle)

    async def delete_bundle(self, bundle_id):
        if bundle_id not in self.bundles:
            raise BundleNotFound(bundle_id)
        del self.bundles[bundle_id]


class FakeCoupons:
    """Records coupon calls; set ``create_error`` / ``delete_error`` / ``delay`` to misbehave."""

    def __init__(self):
        self.created: List[Dict[str, Any]] = []
        self.delete_attempts: List[str] = []
        self.snapshots: List[Dict[str, str]] = []
        self.create_error: Optional[Exception] = None
        self.delete_error: Optional[Exception] = None
        self.snapshot_error: Optional[Exception] = None
        self.delay = 0.0

    async def create_code(self, collection_gid, code, threshold_qty, percentage_off, *, usage_limit=1, title=None):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.create_error is not None:
            raise self.create_error
        self.created.append(
            {
                "collection_gid": collection_gid,
                "code": code,
                "threshold_qty": threshold_qty,
                "percentage_off": percentage_off,
                "usage_limit": usage_limit,
                "title": title,
            }
        )
        return f"gid://shopify/DiscountCodeNode/{len(self.created)}"

    async def delete_code(self, remote_id):
        self.delete_attempts.append(remote_id)
        if self.delete_error is not None:
            raise self.delete_error

    async def set_snapshot(self, key, value):
        if self.snapshot_error is not None:
            raise self.snapshot_error
        self.snapshots.append({"key": key, "value": value})


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics_collector.reset()
    yield
    metrics_collector.reset()


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def coupons():
    return FakeCoupons()
