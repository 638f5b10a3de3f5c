"""
通知任务仓储接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from .entity import NotificationJob


class NotificationJobRepository(ABC):

    @abstractmethod
    async def add(self, job: NotificationJob) -> Optional[NotificationJob]:
        """
        新建通知任务。

        Returns:
            新建的任务；若 (order_id, kind, dedupe_key) 已存在则返回 None
        """
        pass

    @abstractmethod
    async def get_by_id(self, job_id: int) -> Optional[NotificationJob]:
        pass

    @abstractmethod
    async def update(self, job: NotificationJob) -> NotificationJob:
        pass

    @abstractmethod
    async def list_for_order(self, order_id: str) -> List[NotificationJob]:
        pass

    @abstractmethod
    async def mark_submitted(self, job_id: int, at: datetime) -> None:
        """记录任务已提交到任务队列"""
        pass

    @abstractmethod
    async def list_resubmittable(self, now: datetime, stale_before: datetime, limit: int = 100) -> List[NotificationJob]:
        """
        仍为 queued、从未提交或最近一次提交早于 stale_before、且不在投递租约中的任务
        """
        pass

    @abstractmethod
    async def claim(self, job_id: int, now: datetime, lease_until: datetime) -> bool:
        """
        条件更新获取投递租约：仅当任务仍为 queued 且无有效租约时成功。
        """
        pass
