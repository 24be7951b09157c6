# Overview: CustomerStore plus the snapshot copied onto sales.

from __future__ import annotations

from dataclasses import dataclass

from ..errors import CustomerNotFound, ValidationError
from ..extensions import db
from ..models import Customer

CUSTOMER_MUTABLE_FIELDS = {"name", "address", "phone", "email"}


@dataclass(frozen=True)
class CustomerSnapshot:
    """Customer fields as they were at sale time."""
    name: str
    address: str = ""
    phone: str = ""

    @classmethod
    def from_customer(cls, customer: Customer) -> "CustomerSnapshot":
        return cls(name=customer.name, address=customer.address or "", phone=customer.phone or "")

    @classmethod
    def from_payload(cls, payload: dict) -> "CustomerSnapshot":
        name = str(payload.get("name") or "").strip()
        if not name:
            raise ValidationError("customer name is required")
        return cls(
            name=name,
            address=str(payload.get("address") or "").strip(),
            phone=str(payload.get("phone") or "").strip(),
        )


class CustomerStore:

    def get(self, customer_id: int) -> Customer | None:
        return db.session.get(Customer, customer_id)

    def all(self) -> list[Customer]:
        return db.session.query(Customer).order_by(Customer.name.asc(), Customer.id.asc()).all()

    def upsert(self, patch: dict, customer_id: int | None = None) -> Customer:
        if customer_id is not None:
            customer = self.get(customer_id)
            if customer is None:
                raise CustomerNotFound(f"Customer {customer_id} not found")
        else:
            customer = Customer(name="")
            db.session.add(customer)
        for key, value in patch.items():
            if key in CUSTOMER_MUTABLE_FIELDS:
                setattr(customer, key, value)
        if not (customer.name or "").strip():
            raise ValidationError("customer name is required")
        db.session.flush()
        return customer
