"""
Sales order documents used by the demo and the tests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .policy import FieldEncryptionPolicy
from .store import TTL_FIELD

PARTITION_KEY_PATH = "/accountNumber"
SALES_ORDER_POLICY_PATHS = ("/subTotal", "/items", "/orderDate")
THIRTY_DAYS = 60 * 60 * 24 * 30


@dataclass
class SalesOrderDetail:
    """Order line."""

    quantity: int
    product_id: int
    unit_price: Decimal
    line_total: Decimal

    def to_document(self) -> Dict[str, Any]:
        return {
            "quantity": self.quantity,
            "productId": self.product_id,
            "unitPrice": self.unit_price,
            "lineTotal": self.line_total,
        }

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> SalesOrderDetail:
        return cls(
            quantity=data["quantity"],
            product_id=data["productId"],
            unit_price=data["unitPrice"],
            line_total=data["lineTotal"],
        )


@dataclass
class SalesOrder:
    """Sales order; `account_number` is the partition key."""

    id: str
    account_number: str
    purchase_order_number: str
    order_date: datetime
    sub_total: Decimal
    tax_amount: Decimal
    freight: Decimal
    total_due: Decimal
    items: List[SalesOrderDetail] = field(default_factory=list)
    time_to_live: Optional[int] = None  # seconds after last write

    def to_document(self) -> Dict[str, Any]:
        document: Dict[str, Any] = {
            "id": self.id,
            "accountNumber": self.account_number,
            "purchaseOrderNumber": self.purchase_order_number,
            "orderDate": self.order_date,
            "subTotal": self.sub_total,
            "taxAmount": self.tax_amount,
            "freight": self.freight,
            "totalDue": self.total_due,
            "items": [item.to_document() for item in self.items],
        }
        if self.time_to_live is not None:
            document[TTL_FIELD] = self.time_to_live
        return document

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> SalesOrder:
        return cls(
            id=data["id"],
            account_number=data["accountNumber"],
            purchase_order_number=data["purchaseOrderNumber"],
            order_date=data["orderDate"],
            sub_total=data["subTotal"],
            tax_amount=data["taxAmount"],
            freight=data["freight"],
            total_due=data["totalDue"],
            items=[SalesOrderDetail.from_document(item) for item in data.get("items") or []],
            time_to_live=data.get(TTL_FIELD),
        )


def sales_order_policy(key_id: str) -> FieldEncryptionPolicy:
    """Deterministic encryption of subTotal, items and orderDate with key_id."""
    return FieldEncryptionPolicy.deterministic(key_id, SALES_ORDER_POLICY_PATHS)


def sample_sales_order(account: str, order_id: str) -> SalesOrder:
    """Two-line order expiring after thirty days."""
    return SalesOrder(
        id=order_id,
        account_number=account,
        purchase_order_number="PO18009186470",
        order_date=datetime(2005, 7, 1),
        sub_total=Decimal("419.4589"),
        tax_amount=Decimal("12.5838"),
        freight=Decimal("472.3108"),
        total_due=Decimal("985.018"),
        items=[
            SalesOrderDetail(
                quantity=1,
                product_id=760,
                unit_price=Decimal("419.4589"),
                line_total=Decimal("419.4589"),
            ),
            SalesOrderDetail(
                quantity=2,
                product_id=761,
                unit_price=Decimal("420.4589"),
                line_total=Decimal("420.4589"),
            ),
        ],
        time_to_live=THIRTY_DAYS,
    )
