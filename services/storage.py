"""
Storage Service Layer
Bundle record store: create / read / list / partial update / delete.
Never talks to Shopify; cascading to the coupon system is the lifecycle manager's job.
"""
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy import select, desc
from typing import List, Optional, Dict, Any
import logging
from datetime import datetime

from database import AsyncSessionLocal, Bundle
from services.errors import BundleNotFound
from settings import resolve_shop_id

logger = logging.getLogger(__name__)

_UNSET: Any = object()


class StorageService:
    """Bundle storage backed by an injected async session factory."""

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        self._session_factory = session_factory or AsyncSessionLocal

    def get_session(self) -> AsyncSession:
        """Get database session context manager"""
        return self._session_factory()

    async def create_bundle(self, bundle_data: Dict[str, Any]) -> Bundle:
        """Create new bundle"""
        async with self.get_session() as session:
            payload = dict(bundle_data)
            payload["shop_id"] = resolve_shop_id(payload.get("shop_id"))
            now = datetime.utcnow()
            payload.setdefault("created_at", now)
            payload.setdefault("updated_at", now)
            payload.setdefault("discount_codes", [])
            bundle = Bundle(**payload)
            session.add(bundle)
            await session.commit()
            await session.refresh(bundle)
            logger.info("Created bundle id=%s name=%r rules=%d", bundle.id, bundle.name, len(bundle.rules or []))
            return bundle

    async def get_bundle(self, bundle_id: str) -> Bundle:
        """Get bundle by ID"""
        async with self.get_session() as session:
            bundle = await session.get(Bundle, bundle_id)
            if bundle is None:
                raise BundleNotFound(bundle_id)
            return bundle

    async def list_bundles(self) -> List[Bundle]:
        """Get all bundles, newest first"""
        async with self.get_session() as session:
            query = select(Bundle).order_by(desc(Bundle.created_at))
            result = await session.execute(query)
            return list(result.scalars().all())

    async def update_bundle(
        self,
        bundle_id: str,
        *,
        name: Any = _UNSET,
        rules: Any = _UNSET,
        discount_codes: Any = _UNSET,
    ) -> Bundle:
        """Partial update of name / rules / discount_codes; always refreshes updated_at."""
        async with self.get_session() as session:
            bundle = await session.get(Bundle, bundle_id)
            if bundle is None:
                raise BundleNotFound(bundle_id)
            if name is not _UNSET:
                bundle.name = name
            # Reassign whole lists so the JSON columns register as dirty
            if rules is not _UNSET:
                bundle.rules = list(rules)
            if discount_codes is not _UNSET:
                bundle.discount_codes = list(discount_codes)
            bundle.updated_at = datetime.utcnow()
            await session.commit()
            await session.refresh(bundle)
            return bundle

    async def delete_bundle(self, bundle_id: str) -> None:
        """Delete bundle by ID"""
        async with self.get_session() as session:
            bundle = await session.get(Bundle, bundle_id)
            if bundle is None:
                raise BundleNotFound(bundle_id)
            await session.delete(bundle)
            await session.commit()
            logger.info("Deleted bundle id=%s", bundle_id)


def serialize_bundle(bundle: Bundle) -> Dict[str, Any]:
    """API shape of a bundle record (camelCase, ISO timestamps)."""
    return {
        "id": bundle.id,
        "name": bundle.name,
        "collectionId": bundle.collection_id,
        "collectionTitle": bundle.collection_title,
        "rules": list(bundle.rules or []),
        "discountCodes": list(bundle.discount_codes or []),
        "createdAt": bundle.created_at.isoformat() if bundle.created_at is not None else None,
        "updatedAt": bundle.updated_at.isoformat() if bundle.updated_at is not None else None,
    }


# Global storage instance
storage = StorageService()
