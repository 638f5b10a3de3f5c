"""create_fulfillment_tables

Revision ID: 3b6f2c1d9a47
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3b6f2c1d9a47'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False, comment='更新时间'),
    ]


def upgrade() -> None:
    op.create_table(
        'orders',
        sa.Column('id', sa.String(length=64), nullable=False, comment='订单ID（即支付网关的 client_reference_id）'),
        sa.Column('user_id', sa.String(length=64), nullable=True, comment='下单用户ID'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending', comment='订单状态: pending/processing/completed/failed/refunded'),
        sa.Column('payment_reference', sa.String(length=200), nullable=True, comment='支付渠道的支付ID'),
        sa.Column('total_amount', sa.Numeric(precision=15, scale=2), nullable=False, comment='订单金额'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='USD', comment='货币代码 ISO-4217'),
        sa.Column('failure_reason', sa.Text(), nullable=True, comment='失败原因'),
        *_timestamps(),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True, comment='完成时间'),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True, comment='退款时间'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_orders_user_id', 'orders', ['user_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_payment_reference', 'orders', ['payment_reference'])
    op.create_index('ix_orders_user_status', 'orders', ['user_id', 'status'])

    # Financial history: orders cannot be deleted while items or grants reference them
    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.String(length=64), nullable=False, comment='所属订单ID'),
        sa.Column('product_kind', sa.String(length=20), nullable=False, comment='商品类型: course/event/digital_product'),
        sa.Column('product_id', sa.String(length=64), nullable=False, comment='商品ID'),
        sa.Column('title', sa.String(length=255), nullable=False, server_default='', comment='下单时的商品标题'),
        sa.Column('price_at_purchase', sa.Numeric(precision=15, scale=2), nullable=False, comment='成交单价'),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1', comment='数量'),
        sa.Column('finalized_at', sa.DateTime(timezone=True), nullable=True, comment='定稿时间（订单完成时写入）'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_product', 'order_items', ['product_kind', 'product_id'])

    op.create_table(
        'access_grants',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False, comment='主键ID'),
        sa.Column('order_id', sa.String(length=64), nullable=False, comment='授予该权限的订单ID'),
        sa.Column('user_id', sa.String(length=64), nullable=False, comment='用户ID'),
        sa.Column('product_kind', sa.String(length=20), nullable=False, comment='商品类型'),
        sa.Column('product_id', sa.String(length=64), nullable=False, comment='商品ID'),
        sa.Column('granted_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False, comment='授予时间'),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True, comment='撤销时间（退款）'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'product_kind', 'product_id', name='uq_access_grants_user_product'),
        comment='访问授权表，记录用户对课程/活动/数字产品的访问权',
    )
    op.create_index('ix_access_grants_order', 'access_grants', ['order_id'])

    op.create_table(
        'cart_items',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False, comment='用户ID'),
        sa.Column('product_kind', sa.String(length=20), nullable=False, comment='商品类型'),
        sa.Column('product_id', sa.String(length=64), nullable=False, comment='商品ID'),
        sa.Column('unit_price', sa.Numeric(precision=15, scale=2), nullable=False, comment='加入购物车时的单价'),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('added_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'product_kind', 'product_id', name='uq_cart_items_user_product'),
    )
    op.create_index('ix_cart_items_user_id', 'cart_items', ['user_id'])

    op.create_table(
        'event_bookings',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('event_id', sa.String(length=64), nullable=False, comment='活动ID'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending', comment='pending/confirmed/cancelled'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_event_bookings_order_id', 'event_bookings', ['order_id'])
    op.create_index('ix_event_bookings_user_id', 'event_bookings', ['user_id'])

    op.create_table(
        'notification_jobs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.String(length=64), nullable=False),
        sa.Column('kind', sa.String(length=32), nullable=False, comment='confirmation/failure/refund/operator_alert'),
        sa.Column('dedupe_key', sa.String(length=128), nullable=False, comment='通常为网关事件ID'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='queued', comment='queued/sent/dead_lettered'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=True, comment='最近一次提交到任务队列的时间'),
        sa.Column('locked_until', sa.DateTime(timezone=True), nullable=True, comment='投递租约到期时间'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', 'kind', 'dedupe_key', name='uq_notification_jobs_dedupe'),
    )
    op.create_index('ix_notification_jobs_order_id', 'notification_jobs', ['order_id'])
    op.create_index('ix_notification_jobs_status', 'notification_jobs', ['status'])

    op.create_table(
        'deferred_webhook_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('event_id', sa.String(length=128), nullable=False, comment='网关事件ID'),
        sa.Column('order_id', sa.String(length=64), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False, comment='网关事件类型'),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending', comment='pending/resolved/dead_lettered'),
        sa.Column('next_attempt_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_reason', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('event_id', name='uq_deferred_webhook_events_event_id'),
    )
    op.create_index('ix_deferred_events_order_status', 'deferred_webhook_events', ['order_id', 'status'])
    op.create_index('ix_deferred_events_due', 'deferred_webhook_events', ['status', 'next_attempt_at'])


def downgrade() -> None:
    op.drop_index('ix_deferred_events_due', table_name='deferred_webhook_events')
    op.drop_index('ix_deferred_events_order_status', table_name='deferred_webhook_events')
    op.drop_table('deferred_webhook_events')
    op.drop_index('ix_notification_jobs_status', table_name='notification_jobs')
    op.drop_index('ix_notification_jobs_order_id', table_name='notification_jobs')
    op.drop_table('notification_jobs')
    op.drop_index('ix_event_bookings_user_id', table_name='event_bookings')
    op.drop_index('ix_event_bookings_order_id', table_name='event_bookings')
    op.drop_table('event_bookings')
    op.drop_index('ix_cart_items_user_id', table_name='cart_items')
    op.drop_table('cart_items')
    op.drop_index('ix_access_grants_order', table_name='access_grants')
    op.drop_table('access_grants')
    op.drop_index('ix_order_items_product', table_name='order_items')
    op.drop_index('ix_order_items_order_id', table_name='order_items')
    op.drop_table('order_items')
    op.drop_index('ix_orders_user_status', table_name='orders')
    op.drop_index('ix_orders_payment_reference', table_name='orders')
    op.drop_index('ix_orders_status', table_name='orders')
    op.drop_index('ix_orders_user_id', table_name='orders')
    op.drop_table('orders')
