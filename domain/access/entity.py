"""
访问授权实体 - 购买课程/活动/数字产品后授予用户的访问权
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from domain.order.entity import ProductRef


@dataclass
class AccessGrant:
    """
    A user's access to one product, owned by the order that bought it.

    At most one row exists per (user_id, product_ref); a refund revokes the
    grant in place so the audit trail survives.
    """

    id: Optional[int]
    order_id: str
    user_id: str
    product_ref: ProductRef
    granted_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.revoked_at is None
