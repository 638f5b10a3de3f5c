"""
访问授权仓储实现
"""
from datetime import datetime, timezone
from typing import List

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.access.entity import AccessGrant
from domain.access.repository import AccessGrantRepository
from domain.order.entity import ProductKind, ProductRef
from infrastructure.models.access_grant import AccessGrantModel


logger = get_logger(__name__)


class SQLAlchemyAccessGrantRepository(AccessGrantRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: AccessGrantModel) -> AccessGrant:
        return AccessGrant(
            id=model.id,
            order_id=model.order_id,
            user_id=model.user_id,
            product_ref=ProductRef(kind=ProductKind(model.product_kind), product_id=model.product_id),
            granted_at=model.granted_at,
            revoked_at=model.revoked_at,
        )

    async def _find(self, user_id: str, product_ref: ProductRef):
        result = await self.session.execute(
            select(AccessGrantModel).where(
                AccessGrantModel.user_id == user_id,
                AccessGrantModel.product_kind == product_ref.kind.value,
                AccessGrantModel.product_id == product_ref.product_id,
            )
        )
        return result.scalar_one_or_none()

    async def grant(self, user_id: str, product_ref: ProductRef, order_id: str) -> bool:
        """
        插入授权；唯一约束冲突视为已授权（等价于 ON CONFLICT DO NOTHING）。

        已撤销（退款）的授权在再次购买时原地重新激活。
        """
        existing = await self._find(user_id, product_ref)
        if existing is not None:
            if existing.revoked_at is None:
                return False
            existing.revoked_at = None
            existing.order_id = order_id
            existing.granted_at = datetime.now(timezone.utc)
            await self.session.flush()
            return True

        try:
            # SAVEPOINT 内插入，冲突只回滚这一条，外层订单事务不受影响
            async with self.session.begin_nested():
                self.session.add(
                    AccessGrantModel(
                        order_id=order_id,
                        user_id=user_id,
                        product_kind=product_ref.kind.value,
                        product_id=product_ref.product_id,
                    )
                )
        except IntegrityError:
            logger.info(
                "access_grant_conflict_ignored",
                user_id=user_id,
                product=str(product_ref),
                order_id=order_id,
            )
            return False
        return True

    async def revoke_for_order(self, order_id: str) -> int:
        result = await self.session.execute(
            update(AccessGrantModel)
            .where(AccessGrantModel.order_id == order_id)
            .where(AccessGrantModel.revoked_at.is_(None))
            .values(revoked_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def list_for_order(self, order_id: str) -> List[AccessGrant]:
        result = await self.session.execute(
            select(AccessGrantModel)
            .where(AccessGrantModel.order_id == order_id)
            .order_by(AccessGrantModel.id)
            .execution_options(populate_existing=True)
        )
        return [self._to_entity(m) for m in result.scalars().all()]
