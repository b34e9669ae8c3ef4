"""
Cache key generation for order listings and details.

Keys are versioned so a format change can orphan every old entry at once, and
laid out so that one glob pattern covers everything a mutation invalidates.
"""

import hashlib
import uuid
from typing import Optional, Union

from storefront.services.orders.stores import OrderListFilters


class OrderCacheKeys:
    """
    Key layout:

    - ``orders:v1:user:<buyer_id>:<hash>``: one buyer's listing page
    - ``orders:v1:admin:<hash>``: admin listing page
    - ``orders:v1:order:<order_id>``: single order detail
    """

    VERSION = "v1"
    NAMESPACE = "orders"

    PATTERN_USER_LIST = "{namespace}:{version}:user:{buyer_id}:{hash}"
    PATTERN_ADMIN_LIST = "{namespace}:{version}:admin:{hash}"
    PATTERN_ORDER_DETAIL = "{namespace}:{version}:order:{order_id}"

    def __init__(self, version: Optional[str] = None):
        self.version = version or self.VERSION

    @staticmethod
    def _generate_hash(fragment: str) -> str:
        return hashlib.sha256(fragment.encode("utf-8")).hexdigest()[:16]

    def user_orders_key(self, buyer_id: Union[str, uuid.UUID], filters: OrderListFilters) -> str:
        return self.PATTERN_USER_LIST.format(
            namespace=self.NAMESPACE,
            version=self.version,
            buyer_id=buyer_id,
            hash=self._generate_hash(filters.cache_fragment()),
        )

    def admin_orders_key(self, filters: OrderListFilters) -> str:
        return self.PATTERN_ADMIN_LIST.format(
            namespace=self.NAMESPACE,
            version=self.version,
            hash=self._generate_hash(filters.cache_fragment()),
        )

    def order_detail_key(self, order_id: Union[str, uuid.UUID]) -> str:
        return self.PATTERN_ORDER_DETAIL.format(
            namespace=self.NAMESPACE,
            version=self.version,
            order_id=order_id,
        )

    def user_orders_pattern(self, buyer_id: Union[str, uuid.UUID]) -> str:
        return self.PATTERN_USER_LIST.format(
            namespace=self.NAMESPACE,
            version=self.version,
            buyer_id=buyer_id,
            hash="*",
        )

    def admin_orders_pattern(self) -> str:
        return self.PATTERN_ADMIN_LIST.format(
            namespace=self.NAMESPACE,
            version=self.version,
            hash="*",
        )
