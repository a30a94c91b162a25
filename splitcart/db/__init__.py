"""
SQLAlchemy adapters for every port, plus the unit of work that binds them
to one transaction.
"""

from splitcart.db._tables import (
    Base,
    DecimalText,
    ProductRow,
    CartRow,
    CartItemRow,
    CouponRow,
    CouponUsageRow,
    OrderRow,
    OrderItemRow,
    SellerOrderRow,
    ShippingStubRow,
    PaymentRecordRow,
    MarkerRow,
)
from splitcart.db._repos import (
    SQLProductCatalog,
    SQLCartStore,
    SQLCouponStore,
    SQLOrderStore,
    SQLSellerOrderStore,
    SQLShippingStubStore,
    SQLPaymentRecordStore,
)
from splitcart.db._session import (
    create_engine,
    create_database,
    SQLAlchemyTransaction,
    SQLAlchemyUnitOfWork,
)

__all__ = (
    "Base",
    "DecimalText",
    "ProductRow",
    "CartRow",
    "CartItemRow",
    "CouponRow",
    "CouponUsageRow",
    "OrderRow",
    "OrderItemRow",
    "SellerOrderRow",
    "ShippingStubRow",
    "PaymentRecordRow",
    "MarkerRow",
    "SQLProductCatalog",
    "SQLCartStore",
    "SQLCouponStore",
    "SQLOrderStore",
    "SQLSellerOrderStore",
    "SQLShippingStubStore",
    "SQLPaymentRecordStore",
    "create_engine",
    "create_database",
    "SQLAlchemyTransaction",
    "SQLAlchemyUnitOfWork",
)
