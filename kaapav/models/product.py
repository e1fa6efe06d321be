from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from kaapav.core.database import Base
from kaapav.utils.clock import utcnow


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True)
    product_id = Column(String(60), unique=True, nullable=False, index=True)
    sku = Column(String(60), nullable=True, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(60), nullable=True, index=True)
    price = Column(Integer, nullable=False, default=0)
    compare_price = Column(Integer, nullable=True)
    stock = Column(Integer, nullable=False, default=0)
    image_url = Column(Text, nullable=True)
    order_count = Column(Integer, nullable=False, default=0)
    is_bestseller = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    @property
    def in_stock(self) -> bool:
        return bool(self.is_active) and (self.stock or 0) > 0
