"""
SQLAlchemy ORM Models
Catalog and import job tables.

Column types stay portable (JSON rather than JSONB) so the same schema
runs on PostgreSQL and SQLite.
"""

from sqlalchemy import (
    JSON,
    TIMESTAMP,
    Boolean,
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class CatalogProduct(Base):
    """
    Catalog product.

    handle and external_id are unique across all products, archived included.
    """
    __tablename__ = 'catalog_products'

    id = Column(String(36), primary_key=True)
    handle = Column(String(255), nullable=False, unique=True, index=True)
    external_id = Column(String(255), nullable=True, unique=True, index=True,
                         comment='ID in the merchant system')
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(32), nullable=False, default='draft',
                    comment='draft, proposed, published, rejected')
    config_type = Column(String(64), nullable=True,
                         comment='simple, configurable_fabric, configurable_swatch_set')
    archived = Column(Boolean, nullable=False, default=False, index=True)
    thumbnail_url = Column(Text, nullable=True)

    tags = Column(JSON, nullable=False, default=list)
    collection_handles = Column(JSON, nullable=False, default=list)
    category_handles = Column(JSON, nullable=False, default=list)

    min_selections = Column(Integer, nullable=True)
    max_selections = Column(Integer, nullable=True)
    category_filter = Column(String(255), nullable=True)
    collection_filter = Column(String(255), nullable=True)

    # 'metadata' is reserved on declarative classes
    product_metadata = Column('metadata', JSON, nullable=False, default=dict)

    created_at = Column(TIMESTAMP, nullable=False, server_default=func.now())
    updated_at = Column(TIMESTAMP, nullable=False, server_default=func.now(), onupdate=func.now())

    variants = relationship(
        "CatalogVariantRow",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="CatalogVariantRow.id",
    )
    images = relationship(
        "CatalogImageRow",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="CatalogImageRow.position",
    )

    def __repr__(self):
        return f"<CatalogProduct(id={self.id}, handle={self.handle})>"


class CatalogVariantRow(Base):
    """Sellable variant. SKUs are unique across the catalog."""
    __tablename__ = 'catalog_variants'

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(String(36), ForeignKey('catalog_products.id', ondelete='CASCADE'),
                        nullable=False, index=True)
    sku = Column(String(255), nullable=False, unique=True, index=True)

    price = Column(Integer, nullable=True, comment='Minor currency units')
    compare_at_price = Column(Integer, nullable=True)
    currency_code = Column(String(3), nullable=True)
    inventory_quantity = Column(Integer, nullable=True)
    manage_inventory = Column(Boolean, nullable=True)
    allow_backorder = Column(Boolean, nullable=True)
    weight = Column(Float, nullable=True)

    product = relationship("CatalogProduct", back_populates="variants")

    def __repr__(self):
        return f"<CatalogVariantRow(sku={self.sku}, product_id={self.product_id})>"


class CatalogImageRow(Base):
    """Ordered product image."""
    __tablename__ = 'catalog_images'

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(String(36), ForeignKey('catalog_products.id', ondelete='CASCADE'),
                        nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    url = Column(Text, nullable=False)
    checksum = Column(String(128), nullable=True)

    product = relationship("CatalogProduct", back_populates="images")


class ImportJobRow(Base):
    """
    Import job record.

    The job body is stored as JSON in `payload`; the columns used for
    claiming, cancellation and idempotency are kept alongside it.
    """
    __tablename__ = 'import_jobs'

    id = Column(String(36), primary_key=True)
    status = Column(String(32), nullable=False, index=True)
    idempotency_key = Column(String(255), nullable=True, unique=True)
    worker_id = Column(String(255), nullable=True)
    cancel_requested = Column(Boolean, nullable=False, default=False)
    payload = Column(JSON, nullable=False)

    created_at = Column(TIMESTAMP, nullable=False, server_default=func.now())
    updated_at = Column(TIMESTAMP, nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index('idx_import_jobs_status_created', 'status', 'created_at'),
    )

    def __repr__(self):
        return f"<ImportJobRow(id={self.id}, status={self.status})>"
