"""Catalogue models: products, extensions and their installment tiers."""
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import String, Numeric, Integer, Boolean, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from paylink.database import Base
from paylink.services.dates_service import utcnow


class Product(Base):
    """Product sold through payment links. Prices are in EUR, before taxes."""

    __tablename__ = "products"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    membership_duration_months: Mapped[int] = mapped_column(Integer, nullable=False)
    is_deposit_amount_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    min_deposit_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    created_at: Mapped[datetime] = mapped_column(default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    installments: Mapped[list["ProductInstallment"]] = relationship(back_populates="product")
    extensions: Mapped[list["ProductExtension"]] = relationship(back_populates="product")


class ProductInstallment(Base):
    """Installment tier of a product."""

    __tablename__ = "product_installments"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    product_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("products.id"), nullable=False)
    count: Mapped[int] = mapped_column(Integer, nullable=False)
    price_per_installment: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    product: Mapped["Product"] = relationship(back_populates="installments")


class ProductExtension(Base):
    """Extension that prolongs an existing membership of a product."""

    __tablename__ = "product_extensions"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    product_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("products.id"), nullable=False)
    extension_months: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    min_deposit_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    created_at: Mapped[datetime] = mapped_column(default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    product: Mapped["Product"] = relationship(back_populates="extensions")
    installments: Mapped[list["ExtensionInstallment"]] = relationship(back_populates="extension")


class ExtensionInstallment(Base):
    __tablename__ = "extension_installments"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    extension_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("product_extensions.id"), nullable=False)
    count: Mapped[int] = mapped_column(Integer, nullable=False)
    price_per_installment: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    extension: Mapped["ProductExtension"] = relationship(back_populates="installments")
