"""
Customer records: listing, CRUD with soft delete, related orders/invoices,
and outstanding balance adjustments.
"""

from __future__ import annotations

import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union

from pydantic import ValidationError

from rental_backend.auth import AuthClient
from rental_backend.db import Customer, DbClient, to_decimal
from rental_backend.results import BackendError, ErrorKind, Result
from rental_backend.schemas import (
    BalanceOperation,
    CustomerCreate,
    CustomerFilters,
    CustomerUpdate,
)

logger = logging.getLogger(__name__)

CUSTOMER_CODE_PREFIX = "CUST-"
ALL_TYPES = "all"


def generate_customer_code(now: Optional[float] = None) -> str:
    """``CUST-`` plus the last six digits of the millisecond timestamp."""
    millis = int((time.time() if now is None else now) * 1000)
    return f"{CUSTOMER_CODE_PREFIX}{str(millis)[-6:]}"


def _validation_message(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'payload'}: {err['msg']}"
        for err in exc.errors()
    )


class CustomerService:
    def __init__(self, auth: AuthClient, db: DbClient):
        self.auth = auth
        self.db = db

    def _not_found(self, customer_id: str) -> Result:
        logger.warning("customers row not found for id: %s", customer_id)
        return Result.failure(ErrorKind.NOT_FOUND, "Customer not found")

    def get_customers(
        self, filters: Union[CustomerFilters, dict, None] = None
    ) -> Result[list[Customer]]:
        try:
            filters = CustomerFilters.model_validate(filters or {})
        except ValidationError as exc:
            return Result.failure(ErrorKind.INVALID_INPUT, _validation_message(exc))
        customer_type = filters.customer_type
        if customer_type == ALL_TYPES:
            customer_type = None
        try:
            customers = self.db.list_customers(
                customer_type=customer_type or None,
                search=(filters.search or "").strip() or None,
            )
        except BackendError as exc:
            logger.error("Error loading customers: %s", exc.message)
            return Result.failure(ErrorKind.BACKEND_ERROR, exc.message)
        return Result.success(customers)

    def get_customer(self, customer_id: str) -> Result[Customer]:
        try:
            customer = self.db.get_customer(customer_id)
        except BackendError as exc:
            logger.error("Error loading customer: %s", exc.message)
            return Result.failure(ErrorKind.BACKEND_ERROR, exc.message)
        if customer is None:
            return self._not_found(customer_id)
        return Result.success(customer)

    def create_customer(
        self, data: Union[CustomerCreate, dict[str, Any]]
    ) -> Result[Customer]:
        try:
            payload = CustomerCreate.model_validate(data)
        except ValidationError as exc:
            return Result.failure(ErrorKind.INVALID_INPUT, _validation_message(exc))

        try:
            user = self.auth.get_user()
        except BackendError as exc:
            logger.error("Error resolving current user: %s", exc.message)
            return Result.failure(ErrorKind.BACKEND_ERROR, exc.message)

        now = time.time()
        values = payload.model_dump()
        values.update(
            customer_code=generate_customer_code(now),
            created_by=user.id if user else None,
            created_at=now,
            updated_at=now,
        )
        try:
            customer = self.db.insert_customer(values)
        except BackendError as exc:
            logger.error("Error creating customer: %s", exc.message)
            return Result.failure(ErrorKind.BACKEND_ERROR, exc.message)
        logger.info("Created customer %s (%s)", customer.id, customer.customer_code)
        return Result.success(customer)

    def update_customer(
        self, customer_id: str, updates: Union[CustomerUpdate, dict[str, Any]]
    ) -> Result[Customer]:
        try:
            payload = CustomerUpdate.model_validate(updates)
        except ValidationError as exc:
            return Result.failure(ErrorKind.INVALID_INPUT, _validation_message(exc))

        values = payload.model_dump(exclude_unset=True)
        values["updated_at"] = time.time()
        try:
            customer = self.db.update_customer(customer_id, values)
        except BackendError as exc:
            logger.error("Error updating customer: %s", exc.message)
            return Result.failure(ErrorKind.BACKEND_ERROR, exc.message)
        if customer is None:
            return self._not_found(customer_id)
        return Result.success(customer)

    def delete_customer(self, customer_id: str) -> Result[None]:
        """Soft delete: the row stays, flagged inactive."""
        try:
            customer = self.db.update_customer(
                customer_id, {"is_active": False, "updated_at": time.time()}
            )
        except BackendError as exc:
            logger.error("Error deleting customer: %s", exc.message)
            return Result.failure(ErrorKind.BACKEND_ERROR, exc.message)
        if customer is None:
            return self._not_found(customer_id)
        return Result.success()

    def get_customer_orders(self, customer_id: str) -> Result[list[dict]]:
        try:
            return Result.success(self.db.list_customer_orders(customer_id))
        except BackendError as exc:
            logger.error("Error loading customer orders: %s", exc.message)
            return Result.failure(ErrorKind.BACKEND_ERROR, exc.message)

    def get_customer_invoices(self, customer_id: str) -> Result[list[dict]]:
        try:
            return Result.success(self.db.list_customer_invoices(customer_id))
        except BackendError as exc:
            logger.error("Error loading customer invoices: %s", exc.message)
            return Result.failure(ErrorKind.BACKEND_ERROR, exc.message)

    def update_customer_balance(
        self,
        customer_id: str,
        amount: Union[Decimal, float, int, str],
        operation: Union[BalanceOperation, str] = BalanceOperation.ADD,
    ) -> Result[Customer]:
        """
        Add to or subtract from the outstanding balance in one atomic step.

        Any operation other than ``add`` subtracts, and subtraction never takes
        the balance below zero.
        """
        try:
            amount = to_decimal(amount)
        except (InvalidOperation, ValueError):
            return Result.failure(ErrorKind.INVALID_INPUT, f"Invalid amount: {amount!r}")
        if not amount.is_finite() or amount < 0:
            return Result.failure(
                ErrorKind.INVALID_INPUT, "Amount must be a non-negative number"
            )

        add = operation == BalanceOperation.ADD
        try:
            customer = self.db.adjust_customer_balance(customer_id, amount, add=add)
        except BackendError as exc:
            logger.error("Error updating customer balance: %s", exc.message)
            return Result.failure(ErrorKind.BACKEND_ERROR, exc.message)
        if customer is None:
            return self._not_found(customer_id)
        return Result.success(customer)
