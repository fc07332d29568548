"""create order center tables

Revision ID: 4e7b9c2d1a30
Revises: 
Create Date: 2026-10-19 10:12:41.308215

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4e7b9c2d1a30'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    ]


def _audit() -> list[sa.Column]:
    return _timestamps() + [
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('updated_by', sa.Integer(), nullable=True),
    ]


def upgrade() -> None:
    # 1. Reference data
    op.create_table(
        'system_config',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('config_key', sa.String(length=64), nullable=False),
        sa.Column('config_value', sa.Text(), nullable=False),
        sa.Column('label', sa.String(length=128), nullable=False),
        sa.Column('config_type', sa.String(length=32), nullable=False),
        sa.Column('group_name', sa.String(length=64), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=False),
        sa.Column('sort', sa.Integer(), nullable=False),
        sa.Column('status', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_system_config'),
        sa.UniqueConstraint('config_key', name='uq_system_config_config_key'),
    )
    op.create_table(
        'dict_type',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('code', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('status', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_dict_type'),
        sa.UniqueConstraint('code', name='uq_dict_type_code'),
    )
    op.create_table(
        'dict_item',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('type_id', sa.Integer(), nullable=False),
        sa.Column('label', sa.String(length=128), nullable=False),
        sa.Column('value', sa.String(length=128), nullable=False),
        sa.Column('sort', sa.Integer(), nullable=False),
        sa.Column('status', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_dict_item'),
        sa.ForeignKeyConstraint(['type_id'], ['dict_type.id'], name='fk_dict_item_type_id_dict_type'),
    )
    op.create_index('ix_dict_item_type_id', 'dict_item', ['type_id'])

    # 2. Material library
    op.create_table(
        'material_folder',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('parent_id', sa.Integer(), nullable=True),
        sa.Column('path', sa.String(length=1024), nullable=False),
        *_audit(),
        sa.PrimaryKeyConstraint('id', name='pk_material_folder'),
        sa.ForeignKeyConstraint(
            ['parent_id'], ['material_folder.id'], name='fk_material_folder_parent_id_material_folder'
        ),
    )
    op.create_index('ix_material_folder_parent_id', 'material_folder', ['parent_id'])
    op.create_index('ix_material_folder_path', 'material_folder', ['path'])
    op.create_index('ix_material_folder_created_by', 'material_folder', ['created_by'])

    op.create_table(
        'material_asset',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('code', sa.String(length=64), nullable=False),
        sa.Column('file_name', sa.String(length=255), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('width', sa.Integer(), nullable=False),
        sa.Column('height', sa.Integer(), nullable=False),
        sa.Column('dimensions', sa.String(length=32), nullable=False),
        sa.Column('shape', sa.String(length=16), nullable=False),
        sa.Column('format', sa.String(length=16), nullable=False),
        sa.Column('file_size', sa.BigInteger(), nullable=False),
        sa.Column('storage', sa.String(length=16), nullable=False),
        sa.Column('file_path', sa.String(length=512), nullable=False),
        sa.Column('order_count', sa.Integer(), nullable=False),
        sa.Column('folder_id', sa.Integer(), nullable=True),
        *_audit(),
        sa.PrimaryKeyConstraint('id', name='pk_material_asset'),
        sa.UniqueConstraint('code', name='uq_material_asset_code'),
        sa.ForeignKeyConstraint(
            ['folder_id'], ['material_folder.id'], name='fk_material_asset_folder_id_material_folder'
        ),
    )
    op.create_index('ix_material_asset_shape', 'material_asset', ['shape'])
    op.create_index('ix_material_asset_format', 'material_asset', ['format'])
    op.create_index('ix_material_asset_folder_id', 'material_asset', ['folder_id'])
    op.create_index('ix_material_asset_created_by', 'material_asset', ['created_by'])

    # 3. Orders
    op.create_table(
        'order_info',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('gsp_order_no', sa.String(length=64), nullable=False),
        sa.Column('order_type', sa.String(length=20), nullable=False),
        sa.Column('order_created_at', sa.DateTime(), nullable=False),
        sa.Column('required_sign_at', sa.DateTime(), nullable=True),
        sa.Column('payment_time', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('shipping_warehouse_code', sa.String(length=64), nullable=False),
        sa.Column('shop_code', sa.String(length=64), nullable=False),
        sa.Column('owner_name', sa.String(length=64), nullable=False),
        sa.Column('product_id', sa.String(length=64), nullable=True),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('spec', sa.String(length=64), nullable=False),
        sa.Column('item_no', sa.String(length=64), nullable=False),
        sa.Column('seller_sku', sa.String(length=128), nullable=False),
        sa.Column('platform_sku', sa.String(length=128), nullable=False),
        sa.Column('platform_skc', sa.String(length=128), nullable=False),
        sa.Column('platform_spu', sa.String(length=128), nullable=False),
        sa.Column('product_price', sa.Float(), nullable=False),
        sa.Column('expected_revenue', sa.Float(), nullable=False),
        sa.Column('special_product_note', sa.String(length=255), nullable=True),
        sa.Column('expected_fulfillment_qty', sa.Integer(), nullable=False),
        sa.Column('item_count', sa.Integer(), nullable=False),
        sa.Column('currency_code', sa.String(length=8), nullable=False),
        sa.Column('postal_code', sa.String(length=32), nullable=False),
        sa.Column('country', sa.String(length=64), nullable=False),
        sa.Column('province', sa.String(length=64), nullable=False),
        sa.Column('city', sa.String(length=64), nullable=False),
        sa.Column('district', sa.String(length=64), nullable=False),
        sa.Column('address_line1', sa.String(length=255), nullable=False),
        sa.Column('address_line2', sa.String(length=255), nullable=False),
        sa.Column('customer_full_name', sa.String(length=128), nullable=False),
        sa.Column('customer_last_name', sa.String(length=64), nullable=False),
        sa.Column('customer_first_name', sa.String(length=64), nullable=False),
        sa.Column('phone_number', sa.String(length=32), nullable=False),
        sa.Column('email', sa.String(length=128), nullable=False),
        sa.Column('tax_number', sa.String(length=64), nullable=False),
        sa.Column('status', sa.Integer(), nullable=False),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        *_audit(),
        sa.PrimaryKeyConstraint('id', name='pk_order_info'),
    )
    op.create_index('ix_order_info_gsp_order_no', 'order_info', ['gsp_order_no'])
    op.create_index('ix_order_info_order_type', 'order_info', ['order_type'])
    op.create_index('ix_order_info_item_no', 'order_info', ['item_no'])
    op.create_index('ix_order_info_deleted_at', 'order_info', ['deleted_at'])
    op.create_index('ix_order_info_created_by', 'order_info', ['created_by'])
    op.create_index(
        'ix_order_info_natural_key', 'order_info', ['gsp_order_no', 'order_type', 'order_created_at']
    )

    # 4. Order attachments (one row per order and role)
    op.create_table(
        'order_attachment',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('file_type', sa.String(length=32), nullable=False),
        sa.Column('file_name', sa.String(length=255), nullable=False),
        sa.Column('file_path', sa.String(length=512), nullable=False),
        sa.Column('file_ext', sa.String(length=16), nullable=False),
        sa.Column('file_size', sa.BigInteger(), nullable=False),
        sa.Column('checksum', sa.String(length=64), nullable=False),
        sa.Column('storage', sa.String(length=16), nullable=False),
        sa.Column('uploader_id', sa.Integer(), nullable=True),
        sa.Column('material_id', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_order_attachment'),
        sa.UniqueConstraint('order_id', 'file_type', name='uq_order_attachment_role'),
        sa.ForeignKeyConstraint(
            ['order_id'], ['order_info.id'], name='fk_order_attachment_order_id_order_info'
        ),
        sa.ForeignKeyConstraint(
            ['material_id'], ['material_asset.id'], name='fk_order_attachment_material_id_material_asset'
        ),
    )
    op.create_index('ix_order_attachment_order_id', 'order_attachment', ['order_id'])
    op.create_index('ix_order_attachment_material_id', 'order_attachment', ['material_id'])


def downgrade() -> None:
    op.drop_table('order_attachment')
    op.drop_table('order_info')
    op.drop_table('material_asset')
    op.drop_table('material_folder')
    op.drop_table('dict_item')
    op.drop_table('dict_type')
    op.drop_table('system_config')
