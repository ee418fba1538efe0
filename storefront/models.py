import enum
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Column, String, Integer, Numeric, DateTime, ForeignKey, Enum
from sqlalchemy.orm import relationship

from storefront.database import Base


class OrderStatus(str, enum.Enum):
    PENDING = "Pending"
    PAYMENT_RECEIVED = "PaymentReceived"
    PAYMENT_FAILED = "PaymentFailed"
    PAYMENT_MISMATCH = "PaymentMismatch"
    REFUNDED = "Refunded"


class DeliveryMethod(Base):
    __tablename__ = "delivery_methods"

    id = Column(Integer, primary_key=True)
    short_name = Column(String, nullable=False)
    delivery_time = Column(String, nullable=False)
    description = Column(String, nullable=False)
    price = Column(Numeric(18, 2), nullable=False)


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    order_date = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    buyer_email = Column(String, nullable=False, index=True)
    payment_intent_id = Column(String, unique=True, index=True, nullable=False)
    delivery_method_id = Column(Integer, ForeignKey("delivery_methods.id"))
    status = Column(
        Enum(OrderStatus, native_enum=False, length=32,
             values_callable=lambda statuses: [s.value for s in statuses]),
        nullable=False,
        default=OrderStatus.PENDING,
    )
    # Bumped on every UPDATE; a concurrent writer gets StaleDataError
    version = Column(Integer, nullable=False)

    delivery_method = relationship("DeliveryMethod")
    order_items = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan"
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def subtotal(self) -> Decimal:
        return sum((item.price * item.quantity for item in self.order_items), Decimal("0"))

    @property
    def shipping_price(self) -> Decimal:
        if self.delivery_method is None:
            return Decimal("0")
        return self.delivery_method.price

    def get_total(self) -> Decimal:
        return self.subtotal + self.shipping_price


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False)
    product_id = Column(Integer, nullable=False)
    product_name = Column(String, nullable=False)
    picture_url = Column(String)
    price = Column(Numeric(18, 2), nullable=False)
    quantity = Column(Integer, nullable=False)

    order = relationship("Order", back_populates="order_items")
