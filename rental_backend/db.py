"""
Row store abstraction for Postgres and an in-memory test implementation.

Covers user profiles, outlets and their manager assignments, customers, and
the read-only rental order / invoice listings shown on a customer's page.
"""

from __future__ import annotations

import threading
import time
import uuid
from dataclasses import asdict, dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Protocol

from sqlalchemy import (
    Boolean,
    Column,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    case,
    create_engine,
    func,
    or_,
    select,
    update,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from rental_backend.results import BackendError


class UserRole(str, Enum):
    ADMIN = "admin"
    ACCOUNTANT = "accountant"
    MANAGER = "manager"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Any) -> "UserRole":
        try:
            return cls(value)
        except ValueError:
            return cls.OTHER


CUSTOMER_SEARCH_FIELDS = ("company_name", "contact_person", "phone", "email")


def to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class DbClient(Protocol):
    """Interface for row storage."""

    def get_user_profile(self, user_id: str) -> Optional["UserProfile"]:
        ...

    def save_user_profile(self, profile: "UserProfile") -> None:
        ...

    def list_active_outlets(self) -> list["Outlet"]:
        ...

    def list_assigned_outlets(self, user_id: str) -> list["Outlet"]:
        ...

    def save_outlet(self, outlet: "Outlet") -> None:
        ...

    def assign_outlet(self, user_id: str, outlet_id: str) -> None:
        ...

    def list_customers(
        self,
        *,
        customer_type: Optional[str] = None,
        search: Optional[str] = None,
    ) -> list["Customer"]:
        ...

    def get_customer(self, customer_id: str) -> Optional["Customer"]:
        ...

    def insert_customer(self, values: dict) -> "Customer":
        ...

    def update_customer(self, customer_id: str, values: dict) -> Optional["Customer"]:
        ...

    def adjust_customer_balance(
        self, customer_id: str, amount: Decimal, *, add: bool
    ) -> Optional["Customer"]:
        ...

    def save_inventory_item(self, item: dict) -> None:
        ...

    def save_rental_order(self, order: dict, items: list[dict]) -> None:
        ...

    def list_customer_orders(self, customer_id: str) -> list[dict]:
        ...

    def save_invoice(self, invoice: dict) -> None:
        ...

    def list_customer_invoices(self, customer_id: str) -> list[dict]:
        ...


@dataclass
class UserProfile:
    id: str
    email: str
    full_name: str
    role: UserRole
    is_active: bool = True
    phone: Optional[str] = None
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())


@dataclass
class Outlet:
    id: str
    name: str
    code: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    is_active: bool = True
    created_at: float = field(default_factory=lambda: time.time())


@dataclass
class Customer:
    id: str
    customer_code: str
    customer_type: str = "individual"
    company_name: Optional[str] = None
    contact_person: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    gstin: Optional[str] = None
    address: Optional[str] = None
    credit_limit: Decimal = Decimal("0")
    outstanding_balance: Decimal = Decimal("0")
    is_active: bool = True
    created_by: Optional[str] = None
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())

    def matches_search(self, search: str) -> bool:
        needle = search.lower()
        return any(
            needle in (getattr(self, name) or "").lower()
            for name in CUSTOMER_SEARCH_FIELDS
        )

    def as_dict(self) -> dict:
        data = asdict(self)
        data["credit_limit"] = str(self.credit_limit)
        data["outstanding_balance"] = str(self.outstanding_balance)
        return data


class InMemoryDbClient:
    """Simple in-memory row store for development and tests."""

    def __init__(self):
        self.profiles: Dict[str, UserProfile] = {}
        self.outlets: Dict[str, Outlet] = {}
        self.assignments: set[tuple[str, str]] = set()
        self.customers: Dict[str, Customer] = {}
        self.inventory_items: Dict[str, dict] = {}
        self.orders: Dict[str, dict] = {}
        self.order_items: list[dict] = []
        self.invoices: Dict[str, dict] = {}
        self._lock = threading.Lock()

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.profiles.clear()
        self.outlets.clear()
        self.assignments.clear()
        self.customers.clear()
        self.inventory_items.clear()
        self.orders.clear()
        self.order_items.clear()
        self.invoices.clear()

    def get_user_profile(self, user_id: str) -> Optional[UserProfile]:
        return self.profiles.get(user_id)

    def save_user_profile(self, profile: UserProfile) -> None:
        self.profiles[profile.id] = profile

    def list_active_outlets(self) -> list[Outlet]:
        outlets = [o for o in self.outlets.values() if o.is_active]
        return sorted(outlets, key=lambda o: o.name)

    def list_assigned_outlets(self, user_id: str) -> list[Outlet]:
        return [
            self.outlets[outlet_id]
            for assigned_user, outlet_id in sorted(self.assignments)
            if assigned_user == user_id and outlet_id in self.outlets
        ]

    def save_outlet(self, outlet: Outlet) -> None:
        self.outlets[outlet.id] = outlet

    def assign_outlet(self, user_id: str, outlet_id: str) -> None:
        self.assignments.add((user_id, outlet_id))

    def list_customers(
        self,
        *,
        customer_type: Optional[str] = None,
        search: Optional[str] = None,
    ) -> list[Customer]:
        items = [c for c in self.customers.values() if c.is_active]
        if customer_type:
            items = [c for c in items if c.customer_type == customer_type]
        if search:
            items = [c for c in items if c.matches_search(search)]
        items.sort(key=lambda c: c.created_at, reverse=True)
        return [replace(c) for c in items]

    def get_customer(self, customer_id: str) -> Optional[Customer]:
        customer = self.customers.get(customer_id)
        return replace(customer) if customer else None

    def insert_customer(self, values: dict) -> Customer:
        code = values.get("customer_code")
        with self._lock:
            if any(c.customer_code == code for c in self.customers.values()):
                raise BackendError(
                    f"duplicate key value violates unique constraint: customer_code={code}",
                    status_code=409,
                )
            customer = Customer(
                id=values.get("id") or str(uuid.uuid4()),
                **{k: v for k, v in values.items() if k != "id"},
            )
            customer.credit_limit = to_decimal(customer.credit_limit)
            customer.outstanding_balance = to_decimal(customer.outstanding_balance)
            self.customers[customer.id] = customer
            return replace(customer)

    def update_customer(self, customer_id: str, values: dict) -> Optional[Customer]:
        with self._lock:
            customer = self.customers.get(customer_id)
            if not customer:
                return None
            for key, value in values.items():
                setattr(customer, key, value)
            customer.credit_limit = to_decimal(customer.credit_limit)
            return replace(customer)

    def adjust_customer_balance(
        self, customer_id: str, amount: Decimal, *, add: bool
    ) -> Optional[Customer]:
        with self._lock:
            customer = self.customers.get(customer_id)
            if not customer:
                return None
            current = to_decimal(customer.outstanding_balance)
            if add:
                customer.outstanding_balance = current + amount
            else:
                customer.outstanding_balance = max(Decimal("0"), current - amount)
            customer.updated_at = time.time()
            return replace(customer)

    def save_inventory_item(self, item: dict) -> None:
        self.inventory_items[item["id"]] = dict(item)

    def save_rental_order(self, order: dict, items: list[dict]) -> None:
        order = dict(order)
        order.setdefault("created_at", time.time())
        self.orders[order["id"]] = order
        for item in items:
            self.order_items.append({**item, "order_id": order["id"]})

    def list_customer_orders(self, customer_id: str) -> list[dict]:
        results = []
        for order in self.orders.values():
            if order.get("customer_id") != customer_id:
                continue
            items = []
            for item in self.order_items:
                if item["order_id"] != order["id"]:
                    continue
                inventory = self.inventory_items.get(item.get("inventory_item_id"))
                items.append(
                    {
                        **item,
                        "inventory_items": (
                            {
                                "name": inventory.get("name"),
                                "item_code": inventory.get("item_code"),
                            }
                            if inventory
                            else None
                        ),
                    }
                )
            results.append({**order, "rental_order_items": items})
        return sorted(results, key=lambda o: o["created_at"], reverse=True)

    def save_invoice(self, invoice: dict) -> None:
        self.invoices[invoice["id"]] = dict(invoice)

    def list_customer_invoices(self, customer_id: str) -> list[dict]:
        rows = [
            dict(inv)
            for inv in self.invoices.values()
            if inv.get("customer_id") == customer_id
        ]
        return sorted(rows, key=lambda inv: inv.get("invoice_date") or "", reverse=True)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).

    Every SQLAlchemy failure surfaces as ``BackendError``.
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def _session(self):
        return _GuardedSession(self.Session)

    def _to_profile(self, row: "UserProfileRow") -> UserProfile:
        return UserProfile(
            id=row.id,
            email=row.email,
            full_name=row.full_name,
            role=UserRole.parse(row.role),
            is_active=row.is_active,
            phone=row.phone,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _to_outlet(self, row: "OutletRow") -> Outlet:
        return Outlet(
            id=row.id,
            name=row.name,
            code=row.code,
            city=row.city,
            state=row.state,
            phone=row.phone,
            email=row.email,
            is_active=row.is_active,
            created_at=row.created_at,
        )

    def _to_customer(self, row: "CustomerRow") -> Customer:
        return Customer(
            id=row.id,
            customer_code=row.customer_code,
            customer_type=row.customer_type,
            company_name=row.company_name,
            contact_person=row.contact_person,
            phone=row.phone,
            email=row.email,
            gstin=row.gstin,
            address=row.address,
            credit_limit=to_decimal(row.credit_limit),
            outstanding_balance=to_decimal(row.outstanding_balance),
            is_active=row.is_active,
            created_by=row.created_by,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def get_user_profile(self, user_id: str) -> Optional[UserProfile]:
        with self._session() as session:
            row = session.get(UserProfileRow, user_id)
            return self._to_profile(row) if row else None

    def save_user_profile(self, profile: UserProfile) -> None:
        with self._session() as session:
            session.merge(
                UserProfileRow(
                    id=profile.id,
                    email=profile.email,
                    full_name=profile.full_name,
                    role=profile.role.value,
                    is_active=profile.is_active,
                    phone=profile.phone,
                    created_at=profile.created_at,
                    updated_at=profile.updated_at,
                )
            )
            session.commit()

    def list_active_outlets(self) -> list[Outlet]:
        with self._session() as session:
            stmt = (
                select(OutletRow)
                .where(OutletRow.is_active.is_(True))
                .order_by(OutletRow.name.asc())
            )
            return [self._to_outlet(row) for row in session.execute(stmt).scalars()]

    def list_assigned_outlets(self, user_id: str) -> list[Outlet]:
        with self._session() as session:
            stmt = (
                select(OutletRow)
                .join(
                    UserOutletAssignmentRow,
                    UserOutletAssignmentRow.outlet_id == OutletRow.id,
                )
                .where(UserOutletAssignmentRow.user_id == user_id)
                .order_by(UserOutletAssignmentRow.assigned_at.asc())
            )
            return [self._to_outlet(row) for row in session.execute(stmt).scalars()]

    def save_outlet(self, outlet: Outlet) -> None:
        with self._session() as session:
            session.merge(
                OutletRow(
                    id=outlet.id,
                    name=outlet.name,
                    code=outlet.code,
                    city=outlet.city,
                    state=outlet.state,
                    phone=outlet.phone,
                    email=outlet.email,
                    is_active=outlet.is_active,
                    created_at=outlet.created_at,
                )
            )
            session.commit()

    def assign_outlet(self, user_id: str, outlet_id: str) -> None:
        with self._session() as session:
            existing = session.execute(
                select(UserOutletAssignmentRow).where(
                    UserOutletAssignmentRow.user_id == user_id,
                    UserOutletAssignmentRow.outlet_id == outlet_id,
                )
            ).scalar_one_or_none()
            if existing:
                return
            session.add(
                UserOutletAssignmentRow(
                    id=uuid.uuid4().hex,
                    user_id=user_id,
                    outlet_id=outlet_id,
                    assigned_at=time.time(),
                )
            )
            session.commit()

    def list_customers(
        self,
        *,
        customer_type: Optional[str] = None,
        search: Optional[str] = None,
    ) -> list[Customer]:
        stmt = select(CustomerRow).where(CustomerRow.is_active.is_(True))
        if customer_type:
            stmt = stmt.where(CustomerRow.customer_type == customer_type)
        if search:
            pattern = f"%{_escape_like(search)}%"
            stmt = stmt.where(
                or_(
                    *(
                        getattr(CustomerRow, name).ilike(pattern, escape="\\")
                        for name in CUSTOMER_SEARCH_FIELDS
                    )
                )
            )
        stmt = stmt.order_by(CustomerRow.created_at.desc())
        with self._session() as session:
            return [self._to_customer(row) for row in session.execute(stmt).scalars()]

    def get_customer(self, customer_id: str) -> Optional[Customer]:
        with self._session() as session:
            row = session.get(CustomerRow, customer_id)
            return self._to_customer(row) if row else None

    def insert_customer(self, values: dict) -> Customer:
        now = time.time()
        row = CustomerRow(
            id=values.get("id") or str(uuid.uuid4()),
            customer_code=values["customer_code"],
            customer_type=values.get("customer_type") or "individual",
            company_name=values.get("company_name"),
            contact_person=values.get("contact_person"),
            phone=values.get("phone"),
            email=values.get("email"),
            gstin=values.get("gstin"),
            address=values.get("address"),
            credit_limit=to_decimal(values.get("credit_limit")),
            outstanding_balance=to_decimal(values.get("outstanding_balance")),
            is_active=values.get("is_active", True),
            created_by=values.get("created_by"),
            created_at=values.get("created_at") or now,
            updated_at=values.get("updated_at") or now,
        )
        with self._session() as session:
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_customer(row)

    def update_customer(self, customer_id: str, values: dict) -> Optional[Customer]:
        with self._session() as session:
            row = session.get(CustomerRow, customer_id)
            if not row:
                return None
            for key, value in values.items():
                setattr(row, key, value)
            session.commit()
            session.refresh(row)
            return self._to_customer(row)

    def adjust_customer_balance(
        self, customer_id: str, amount: Decimal, *, add: bool
    ) -> Optional[Customer]:
        # Single UPDATE so concurrent adjustments cannot lose writes.
        current = func.coalesce(CustomerRow.outstanding_balance, 0)
        if add:
            new_balance = current + amount
        else:
            new_balance = case(
                (current - amount < 0, Decimal("0")), else_=current - amount
            )
        stmt = (
            update(CustomerRow)
            .where(CustomerRow.id == customer_id)
            .values(outstanding_balance=new_balance, updated_at=time.time())
            .execution_options(synchronize_session=False)
        )
        with self._session() as session:
            result = session.execute(stmt)
            if not result.rowcount:
                session.rollback()
                return None
            session.commit()
            row = session.get(CustomerRow, customer_id, populate_existing=True)
            return self._to_customer(row)

    def save_inventory_item(self, item: dict) -> None:
        with self._session() as session:
            session.merge(
                InventoryItemRow(
                    id=item["id"],
                    item_code=item["item_code"],
                    name=item["name"],
                    outlet_id=item.get("outlet_id"),
                )
            )
            session.commit()

    def save_rental_order(self, order: dict, items: list[dict]) -> None:
        with self._session() as session:
            session.merge(
                RentalOrderRow(
                    id=order["id"],
                    order_number=order.get("order_number"),
                    customer_id=order["customer_id"],
                    outlet_id=order.get("outlet_id"),
                    status=order.get("status") or "draft",
                    start_date=order.get("start_date"),
                    end_date=order.get("end_date"),
                    total_amount=to_decimal(order.get("total_amount")),
                    created_at=order.get("created_at") or time.time(),
                )
            )
            for item in items:
                session.merge(
                    RentalOrderItemRow(
                        id=item.get("id") or uuid.uuid4().hex,
                        order_id=order["id"],
                        inventory_item_id=item.get("inventory_item_id"),
                        quantity=item.get("quantity") or 1,
                        rate=to_decimal(item.get("rate")),
                    )
                )
            session.commit()

    def list_customer_orders(self, customer_id: str) -> list[dict]:
        with self._session() as session:
            orders = (
                session.execute(
                    select(RentalOrderRow)
                    .where(RentalOrderRow.customer_id == customer_id)
                    .order_by(RentalOrderRow.created_at.desc())
                )
                .scalars()
                .all()
            )
            if not orders:
                return []
            order_ids = [order.id for order in orders]
            item_rows = session.execute(
                select(RentalOrderItemRow, InventoryItemRow)
                .outerjoin(
                    InventoryItemRow,
                    InventoryItemRow.id == RentalOrderItemRow.inventory_item_id,
                )
                .where(RentalOrderItemRow.order_id.in_(order_ids))
            ).all()
            items_by_order: dict[str, list[dict]] = {oid: [] for oid in order_ids}
            for item, inventory in item_rows:
                items_by_order[item.order_id].append(
                    {
                        "id": item.id,
                        "order_id": item.order_id,
                        "inventory_item_id": item.inventory_item_id,
                        "quantity": item.quantity,
                        "rate": to_decimal(item.rate),
                        "inventory_items": (
                            {"name": inventory.name, "item_code": inventory.item_code}
                            if inventory
                            else None
                        ),
                    }
                )
            return [
                {
                    "id": order.id,
                    "order_number": order.order_number,
                    "customer_id": order.customer_id,
                    "outlet_id": order.outlet_id,
                    "status": order.status,
                    "start_date": order.start_date,
                    "end_date": order.end_date,
                    "total_amount": to_decimal(order.total_amount),
                    "created_at": order.created_at,
                    "rental_order_items": items_by_order[order.id],
                }
                for order in orders
            ]

    def save_invoice(self, invoice: dict) -> None:
        with self._session() as session:
            session.merge(
                InvoiceRow(
                    id=invoice["id"],
                    invoice_number=invoice.get("invoice_number"),
                    customer_id=invoice["customer_id"],
                    order_id=invoice.get("order_id"),
                    invoice_date=invoice.get("invoice_date"),
                    status=invoice.get("status") or "draft",
                    total_amount=to_decimal(invoice.get("total_amount")),
                    created_at=invoice.get("created_at") or time.time(),
                )
            )
            session.commit()

    def list_customer_invoices(self, customer_id: str) -> list[dict]:
        with self._session() as session:
            rows = session.execute(
                select(InvoiceRow)
                .where(InvoiceRow.customer_id == customer_id)
                .order_by(InvoiceRow.invoice_date.desc())
            ).scalars()
            return [
                {
                    "id": row.id,
                    "invoice_number": row.invoice_number,
                    "customer_id": row.customer_id,
                    "order_id": row.order_id,
                    "invoice_date": row.invoice_date,
                    "status": row.status,
                    "total_amount": to_decimal(row.total_amount),
                    "created_at": row.created_at,
                }
                for row in rows
            ]


class _GuardedSession:
    """Session context manager translating SQLAlchemy failures into BackendError."""

    def __init__(self, factory: sessionmaker):
        self._session = factory()

    def __enter__(self) -> Session:
        return self._session

    def __exit__(self, exc_type, exc, tb) -> bool:
        self._session.close()
        if exc is not None and isinstance(exc, SQLAlchemyError):
            raise BackendError(str(exc.__cause__ or exc)) from exc
        return False


Base = declarative_base()


class UserProfileRow(Base):
    __tablename__ = "user_profiles"

    id = Column(String, primary_key=True)
    email = Column(String, nullable=False, unique=True, index=True)
    full_name = Column(String, nullable=False)
    phone = Column(String, nullable=True)
    role = Column(String, nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class OutletRow(Base):
    __tablename__ = "outlets"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    code = Column(String, nullable=True, unique=True)
    city = Column(String, nullable=True)
    state = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    email = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(Float, nullable=False)


class UserOutletAssignmentRow(Base):
    __tablename__ = "user_outlet_assignments"
    __table_args__ = (UniqueConstraint("user_id", "outlet_id"),)

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("user_profiles.id"), nullable=False, index=True)
    outlet_id = Column(String, ForeignKey("outlets.id"), nullable=False, index=True)
    assigned_at = Column(Float, nullable=False)


class CustomerRow(Base):
    __tablename__ = "customers"

    id = Column(String, primary_key=True)
    customer_code = Column(String, nullable=False, unique=True)
    customer_type = Column(String, nullable=False, default="individual", index=True)
    company_name = Column(String, nullable=True)
    contact_person = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    email = Column(String, nullable=True)
    gstin = Column(String, nullable=True)
    address = Column(String, nullable=True)
    credit_limit = Column(Numeric(12, 2), nullable=False, default=0)
    outstanding_balance = Column(Numeric(12, 2), nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_by = Column(String, nullable=True)
    created_at = Column(Float, nullable=False, index=True)
    updated_at = Column(Float, nullable=False)


class InventoryItemRow(Base):
    __tablename__ = "inventory_items"

    id = Column(String, primary_key=True)
    item_code = Column(String, nullable=False)
    name = Column(String, nullable=False)
    outlet_id = Column(String, nullable=True, index=True)


class RentalOrderRow(Base):
    __tablename__ = "rental_orders"

    id = Column(String, primary_key=True)
    order_number = Column(String, nullable=True)
    customer_id = Column(String, ForeignKey("customers.id"), nullable=False, index=True)
    outlet_id = Column(String, nullable=True)
    status = Column(String, nullable=False, default="draft")
    start_date = Column(String, nullable=True)
    end_date = Column(String, nullable=True)
    total_amount = Column(Numeric(12, 2), nullable=False, default=0)
    created_at = Column(Float, nullable=False)


class RentalOrderItemRow(Base):
    __tablename__ = "rental_order_items"

    id = Column(String, primary_key=True)
    order_id = Column(String, ForeignKey("rental_orders.id"), nullable=False, index=True)
    inventory_item_id = Column(String, nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    rate = Column(Numeric(12, 2), nullable=False, default=0)


class InvoiceRow(Base):
    __tablename__ = "invoices"

    id = Column(String, primary_key=True)
    invoice_number = Column(String, nullable=True)
    customer_id = Column(String, ForeignKey("customers.id"), nullable=False, index=True)
    order_id = Column(String, nullable=True)
    invoice_date = Column(String, nullable=True)
    status = Column(String, nullable=False, default="draft")
    total_amount = Column(Numeric(12, 2), nullable=False, default=0)
    created_at = Column(Float, nullable=False)
