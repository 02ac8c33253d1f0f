from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, Numeric
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base


class OrderSettings(Base):
    """Singleton row: the storefront's ordering switch and shipping fee."""

    __tablename__ = "order_settings"

    id: Mapped[int] = mapped_column(primary_key=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    shipping_fee_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
