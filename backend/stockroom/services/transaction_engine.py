"""
Transaction Engine - every stock-affecting operation goes through here.

WHY: Restocks, adjustments, sales and returns each touch several records
(product balances, ledger rows, sale lines). The engine applies each one as a
single unit: lock every touched aggregate, validate against current state,
mutate, check invariants, commit. Any failure rolls the whole unit back.

DESIGN:
- Validation failures are raised before the first mutation.
- InvariantViolation is the only failure detected mid-unit; it is logged and
  the unit is rolled back.
- Locks are taken in one global order (catalog, products, sales) and held
  until after commit.
- The engine never retries; callers layer retries on top if they want them.
- Authorization is the caller's business.
"""

from __future__ import annotations

import logging
import secrets
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterable

from flask import current_app

from ..errors import (
    ConflictError,
    CustomerNotFound,
    InsufficientStock,
    InvalidQuantity,
    InvariantViolation,
    ProductNotFound,
    SaleNotFound,
    ValidationError,
)
from ..extensions import db
from ..models import Customer, Product, Sale, SaleItem
from ..models.inventory import DEFAULT_CATEGORY, MOVEMENT_ADJUSTMENT, MOVEMENT_RESTOCK, MOVEMENT_SALE
from ..models.sales import PAYMENT_CASH, PAYMENT_METHODS
from ..money import compute_tax_cents
from ..time_utils import utcnow
from ..validation import (
    BULK_PRODUCT_POLICY,
    CUSTOMER_POLICY,
    PRODUCT_POLICY,
    coerce_int,
    coerce_quantity,
    enforce_rules_product,
    enforce_rules_unit_price,
    validate_payload,
)
from .concurrency import CATALOG_KEY, KeyedLockRegistry, atomic, product_key, sale_key
from .customer_service import CustomerSnapshot, CustomerStore
from .inventory_service import InventoryStore
from .invariants import assert_ledger_tail, assert_return_bounds, assert_sale_totals
from .ledger_service import append_movement, initialize_ledger
from .return_service import apply_return, normalize_return_lines, plan_return, return_reason
from .sales_service import SaleStore
from .scan_service import Matched, ScanCandidate, ScanMatch, match_candidate, parse_scan_candidates

logger = logging.getLogger(__name__)

DEFAULT_TAX_RATE_BPS = 500
DEFAULT_LOCK_TIMEOUT_SECONDS = 5.0

MAX_REASON_LENGTH = 200
MANUAL_ADJUSTMENT_REASON = "Manual adjustment"
MANUAL_UPDATE_REASON = "Manual update"
SCAN_RESTOCK_REASON = "Scan restock"

# Defaults for products created from unmatched scan rows
SCAN_DEFAULT_MARGIN_PERCENT = 20.0
SCAN_DEFAULT_MIN_STOCK = 5
SCAN_DEFAULT_DESCRIPTION = "Imported via scan"


@dataclass(frozen=True)
class SaleLineRequest:
    product_id: int
    quantity: int
    unit_price_cents: int | None = None


@dataclass(frozen=True)
class ScanRestockResult:
    match: ScanMatch
    product: Product
    created: bool


def normalize_sale_lines(items: Iterable) -> list[SaleLineRequest]:
    """
    Accept SaleLineRequest objects or dicts with product_id, quantity and an
    optional unit_price_cents (defaults to the product's sell price).
    """
    if items is None:
        raise InvalidQuantity("A sale needs at least one line")

    lines: list[SaleLineRequest] = []
    seen: set[int] = set()
    for raw in items:
        if isinstance(raw, SaleLineRequest):
            product_id, quantity, price = raw.product_id, raw.quantity, raw.unit_price_cents
        elif isinstance(raw, dict):
            if "product_id" not in raw:
                raise InvalidQuantity("Sale line is missing product_id")
            product_id = coerce_int(raw["product_id"], "product_id")
            quantity = raw.get("quantity")
            price = raw.get("unit_price_cents")
        else:
            raise InvalidQuantity("Sale lines must be objects with product_id and quantity")

        quantity = coerce_quantity(quantity)
        if price is not None:
            price = coerce_int(price, "unit_price_cents")
            enforce_rules_unit_price(price)

        if product_id in seen:
            raise InvalidQuantity(
                f"Product {product_id} appears on more than one line",
                details={"product_id": product_id},
            )
        seen.add(product_id)
        lines.append(SaleLineRequest(product_id=product_id, quantity=quantity, unit_price_cents=price))

    if not lines:
        raise InvalidQuantity("A sale needs at least one line")
    return lines


def normalize_payment_method(value: str | None) -> str:
    method = (value or PAYMENT_CASH).strip().upper()
    if method not in PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of {', '.join(PAYMENT_METHODS)}")
    return method


def _clean_reason(reason: str | None, default: str) -> str:
    text = (reason or "").strip() or default
    if len(text) > MAX_REASON_LENGTH:
        raise ValidationError(f"reason exceeds max length {MAX_REASON_LENGTH}")
    return text


def _scan_product_fields(candidate: ScanCandidate, index: int) -> dict:
    """Catalog fields for a product created from a scan row, validated like a create."""
    payload = {
        "name": candidate.name,
        "category": DEFAULT_CATEGORY,
        "unit_cost_cents": candidate.unit_price_cents,
        "margin_percent": SCAN_DEFAULT_MARGIN_PERCENT,
        "min_stock": SCAN_DEFAULT_MIN_STOCK,
        "description": SCAN_DEFAULT_DESCRIPTION,
    }
    if candidate.sku:
        payload["sku"] = candidate.sku
    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
    except ValidationError as e:
        raise ValidationError(f"row {index}: {e}")
    return patch


class TransactionEngine:

    def __init__(
        self,
        *,
        inventory: InventoryStore | None = None,
        sales: SaleStore | None = None,
        customers: CustomerStore | None = None,
        locks: KeyedLockRegistry | None = None,
        clock: Callable = utcnow,
        tax_rate_bps: int = DEFAULT_TAX_RATE_BPS,
        lock_timeout: float | None = DEFAULT_LOCK_TIMEOUT_SECONDS,
        retain_orphaned_ledgers: bool = True,
    ):
        if tax_rate_bps < 0:
            raise ValueError("tax_rate_bps must be >= 0")
        self.inventory = inventory or InventoryStore()
        self.sales = sales or SaleStore()
        self.customers = customers or CustomerStore()
        self.locks = locks if locks is not None else KeyedLockRegistry()
        self.clock = clock
        self.tax_rate_bps = tax_rate_bps
        self.lock_timeout = lock_timeout
        self.retain_orphaned_ledgers = retain_orphaned_ledgers

    # ------------------------------------------------------------------
    # unit of work
    # ------------------------------------------------------------------

    @contextmanager
    def _unit(self, keys: Iterable):
        """Lock keys, then run the block as one commit-or-rollback unit."""
        with self.locks.hold(keys, timeout=self.lock_timeout):
            # Validate against committed state, not whatever was cached
            db.session.expire_all()
            try:
                with atomic():
                    yield
            except InvariantViolation as e:
                logger.error("Rolled back after invariant violation: %s", e, extra={"details": e.details})
                raise

    def _product(self, product_id: int, *, lock: bool = True) -> Product:
        product = self.inventory.get(product_id, lock=lock)
        if product is None:
            raise ProductNotFound(f"Product {product_id} not found", details={"product_id": product_id})
        return product

    # ------------------------------------------------------------------
    # stock operations
    # ------------------------------------------------------------------

    def restock(self, product_id: int, amount: int, *, reason: str | None = None) -> Product:
        """Add received units. amount must be > 0."""
        product_id = coerce_int(product_id, "product_id")
        quantity = coerce_quantity(amount, "amount")
        note = _clean_reason(reason, "") or None

        with self._unit([product_key(product_id)]):
            product = self._product(product_id)
            _, movement = append_movement(
                product, MOVEMENT_RESTOCK, quantity, reason=note, occurred_at=self.clock()
            )
            assert_ledger_tail(product, movement)
        return product

    def adjust_stock(self, product_id: int, amount: int, reason: str | None = None) -> Product:
        """
        Manual correction of either sign.

        Unlike sales, an adjustment that would go below zero is clamped at
        zero; the movement records the amount actually applied and the
        reason notes the clamp.
        """
        product_id = coerce_int(product_id, "product_id")
        try:
            delta = coerce_int(amount, "amount")
        except ValidationError as e:
            raise InvalidQuantity(str(e))
        if delta == 0:
            raise InvalidQuantity("Adjustment amount must be non-zero")
        note = _clean_reason(reason, MANUAL_ADJUSTMENT_REASON)

        with self._unit([product_key(product_id)]):
            product = self._product(product_id)
            applied = max(delta, -product.stock)
            if applied != delta:
                note = f"{note} (requested {delta:+d}, clamped at 0)"
            _, movement = append_movement(
                product, MOVEMENT_ADJUSTMENT, applied, reason=note, occurred_at=self.clock()
            )
            assert_ledger_tail(product, movement)
        return product

    # ------------------------------------------------------------------
    # sales and returns
    # ------------------------------------------------------------------

    def complete_sale(
        self,
        items: Iterable,
        customer=None,
        payment_method: str | None = PAYMENT_CASH,
        processed_by: str | None = None,
        *,
        customer_id: int | None = None,
    ) -> Sale:
        """
        Validate every line against current stock, then write the sale and
        one SALE movement per line in a single unit.

        customer may be a CustomerSnapshot, a Customer, or a dict with
        name/address/phone; customer_id copies a stored customer instead.
        """
        lines = normalize_sale_lines(items)
        method = normalize_payment_method(payment_method)
        snapshot = self._snapshot_from(customer)
        if customer_id is not None:
            customer_id = coerce_int(customer_id, "customer_id")

        with self._unit([product_key(line.product_id) for line in lines]):
            products = self.inventory.get_many([line.product_id for line in lines], lock=True)
            for line in lines:
                if line.product_id not in products:
                    raise ProductNotFound(
                        f"Product {line.product_id} not found",
                        details={"product_id": line.product_id},
                    )

            for line in lines:
                product = products[line.product_id]
                if line.quantity > product.stock:
                    raise InsufficientStock(
                        f"Insufficient stock for {product.name}: requested {line.quantity}, available {product.stock}",
                        details={
                            "product_id": product.id,
                            "product_name": product.name,
                            "requested_quantity": line.quantity,
                            "on_hand": product.stock,
                        },
                    )

            if customer_id is not None:
                stored = self.customers.get(customer_id)
                if stored is None:
                    raise CustomerNotFound(f"Customer {customer_id} not found")
                snapshot = CustomerSnapshot.from_customer(stored)

            now = self.clock()
            sale_items = []
            for number, line in enumerate(lines, start=1):
                product = products[line.product_id]
                price = line.unit_price_cents if line.unit_price_cents is not None else product.sell_price_cents
                sale_items.append(SaleItem(
                    line_number=number,
                    product_id=product.id,
                    product_name=product.name,
                    quantity=line.quantity,
                    unit_price_cents=price,
                    line_total_cents=price * line.quantity,
                    returned_quantity=0,
                ))

            subtotal = sum(item.line_total_cents for item in sale_items)
            tax = compute_tax_cents(subtotal, self.tax_rate_bps)
            sale = Sale(
                occurred_at=now,
                customer_id=customer_id,
                customer_name=snapshot.name if snapshot else None,
                customer_address=snapshot.address if snapshot else None,
                customer_phone=snapshot.phone if snapshot else None,
                subtotal_cents=subtotal,
                tax_rate_bps=self.tax_rate_bps,
                tax_cents=tax,
                total_cents=subtotal + tax,
                payment_method=method,
                processed_by=(processed_by or "").strip() or None,
                items=sale_items,
            )
            self.sales.add(sale)

            for item in sale_items:
                product = products[item.product_id]
                _, movement = append_movement(
                    product,
                    MOVEMENT_SALE,
                    -item.quantity,
                    reason=f"Sale {sale.document_number}",
                    reference=sale.document_number,
                    occurred_at=now,
                )
                assert_ledger_tail(product, movement)
            assert_sale_totals(sale)

        logger.info("Completed sale %s with %d line(s)", sale.document_number, len(lines))
        return sale

    def process_return(self, sale_id: int, returns: Iterable) -> Sale:
        """
        Return units from a prior sale. The whole batch is planned before
        anything is applied; one bad line rejects all of them.
        """
        sale_id = coerce_int(sale_id, "sale_id")
        lines = normalize_return_lines(returns)
        keys = [sale_key(sale_id)] + [product_key(line.product_id) for line in lines]

        with self._unit(keys):
            sale = self.sales.get(sale_id, lock=True)
            if sale is None:
                raise SaleNotFound(f"Sale {sale_id} not found", details={"sale_id": sale_id})

            plan = plan_return(sale, lines)

            products = self.inventory.get_many([p.item.product_id for p in plan], lock=True)
            for planned in plan:
                if planned.item.product_id not in products:
                    raise ProductNotFound(
                        f"Product {planned.item.product_id} no longer exists; cannot restock the return",
                        details={"product_id": planned.item.product_id, "sale_id": sale.id},
                    )

            now = self.clock()
            reason = return_reason(sale)
            for planned in plan:
                apply_return(planned.item, planned.quantity)
                product = products[planned.item.product_id]
                _, movement = append_movement(
                    product,
                    MOVEMENT_RESTOCK,
                    planned.quantity,
                    reason=reason,
                    reference=sale.document_number,
                    occurred_at=now,
                )
                assert_ledger_tail(product, movement)
            assert_return_bounds(sale.items)

        logger.info("Processed return on sale %s (%d line(s))", sale.document_number, len(lines))
        return sale

    def _snapshot_from(self, customer) -> CustomerSnapshot | None:
        if customer is None:
            return None
        if isinstance(customer, CustomerSnapshot):
            return customer
        if isinstance(customer, Customer):
            return CustomerSnapshot.from_customer(customer)
        if isinstance(customer, dict):
            return CustomerSnapshot.from_payload(customer)
        raise ValidationError("customer must be an object with name, address and phone")

    # ------------------------------------------------------------------
    # catalog
    # ------------------------------------------------------------------

    def create_product(self, payload: dict) -> Product:
        """Create a product; its "stock" field becomes the INITIAL movement."""
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
        starting_stock = patch.pop("stock", None) or 0
        if not patch.get("category"):
            patch["category"] = DEFAULT_CATEGORY

        with self._unit([CATALOG_KEY]):
            product = self._insert_product(patch, starting_stock)
        return product

    def _insert_product(self, patch: dict, starting_stock: int) -> Product:
        if self.inventory.sku_taken(patch["sku"]):
            raise ConflictError(f"SKU {patch['sku']!r} already exists", details={"sku": patch["sku"]})
        product = self.inventory.add(Product(**patch))
        movement = initialize_ledger(product, starting_stock, occurred_at=self.clock())
        assert_ledger_tail(product, movement)
        return product

    def update_product(self, product_id: int, payload: dict) -> Product:
        """
        Patch catalog fields. A new absolute "stock" is written to the ledger
        as an ADJUSTMENT for the difference, never set directly.
        """
        product_id = coerce_int(product_id, "product_id")
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
        new_stock = patch.pop("stock", None)

        with self._unit([CATALOG_KEY, product_key(product_id)]):
            product = self._product(product_id)
            if "sku" in patch and self.inventory.sku_taken(patch["sku"], exclude_id=product.id):
                raise ConflictError(f"SKU {patch['sku']!r} already exists", details={"sku": patch["sku"]})
            for key, value in patch.items():
                setattr(product, key, value)
            if new_stock is not None and new_stock != product.stock:
                _, movement = append_movement(
                    product,
                    MOVEMENT_ADJUSTMENT,
                    new_stock - product.stock,
                    reason=MANUAL_UPDATE_REASON,
                    occurred_at=self.clock(),
                )
                assert_ledger_tail(product, movement)
            db.session.flush()
        return product

    def bulk_update_products(self, product_ids: Iterable, payload: dict) -> list[Product]:
        """Apply one catalog-only patch (category, margin, min stock, cost) to many products."""
        ids = []
        for raw in product_ids or []:
            pid = coerce_int(raw, "product_id")
            if pid not in ids:
                ids.append(pid)
        if not ids:
            raise ValidationError("product_ids must not be empty")
        patch = validate_payload(model=Product, payload=payload, policy=BULK_PRODUCT_POLICY, partial=True)
        if not patch:
            raise ValidationError("No fields to update")
        enforce_rules_product(patch)

        with self._unit([product_key(pid) for pid in ids]):
            products = self.inventory.get_many(ids, lock=True)
            missing = [pid for pid in ids if pid not in products]
            if missing:
                raise ProductNotFound(f"Product {missing[0]} not found", details={"product_ids": missing})
            for pid in ids:
                for key, value in patch.items():
                    setattr(products[pid], key, value)
            db.session.flush()
        return [products[pid] for pid in ids]

    def delete_product(self, product_id: int) -> None:
        """
        Remove the product record. Its movements stay behind as an orphaned
        ledger unless RETAIN_ORPHANED_LEDGERS is off. Historical sale lines
        are untouched.
        """
        product_id = coerce_int(product_id, "product_id")
        with self._unit([CATALOG_KEY, product_key(product_id)]):
            product = self._product(product_id)
            self.inventory.delete(product, retain_ledger=self.retain_orphaned_ledgers)
        logger.info("Deleted product %s (ledger retained: %s)", product_id, self.retain_orphaned_ledgers)

    # ------------------------------------------------------------------
    # customers
    # ------------------------------------------------------------------

    def save_customer(self, payload: dict, customer_id: int | None = None) -> Customer:
        """Create or update a customer. Past sales keep their snapshot."""
        if customer_id is not None:
            customer_id = coerce_int(customer_id, "customer_id")
        patch = validate_payload(
            model=Customer,
            payload=payload,
            policy=CUSTOMER_POLICY,
            partial=customer_id is not None,
        )
        keys = [("customer", customer_id)] if customer_id is not None else []
        with self._unit(keys):
            customer = self.customers.upsert(patch, customer_id)
        return customer

    # ------------------------------------------------------------------
    # scan restock
    # ------------------------------------------------------------------

    def restock_from_scan(self, candidates: Iterable) -> list[ScanRestockResult]:
        """
        Restock from extraction output in one unit. Rows matching a product
        (SKU, else name) restock it; other rows become new products whose
        INITIAL stock is the scanned quantity.
        """
        candidates = list(candidates or [])
        if candidates and all(isinstance(c, ScanCandidate) for c in candidates):
            parsed = candidates
        else:
            parsed = parse_scan_candidates(candidates)
        new_fields = [_scan_product_fields(c, i) for i, c in enumerate(parsed)]

        # Holding the catalog lock keeps SKUs and names stable while matching
        with self.locks.hold([CATALOG_KEY], timeout=self.lock_timeout):
            db.session.expire_all()
            catalog = self.inventory.all()
            matched_ids = {
                m.product_id for m in (match_candidate(c, catalog) for c in parsed) if isinstance(m, Matched)
            }

            results: list[ScanRestockResult] = []
            with self._unit([product_key(pid) for pid in matched_ids]):
                self.inventory.get_many(matched_ids, lock=True)
                working = self.inventory.all()
                by_id = {p.id: p for p in working}
                now = self.clock()
                for candidate, fields in zip(parsed, new_fields):
                    match = match_candidate(candidate, working)
                    if isinstance(match, Matched):
                        product = by_id[match.product_id]
                        _, movement = append_movement(
                            product,
                            MOVEMENT_RESTOCK,
                            candidate.quantity,
                            reason=SCAN_RESTOCK_REASON,
                            occurred_at=now,
                        )
                        assert_ledger_tail(product, movement)
                        results.append(ScanRestockResult(match=match, product=product, created=False))
                    else:
                        patch = dict(fields)
                        if "sku" not in patch:
                            patch["sku"] = self._generate_sku(working)
                        product = self._insert_product(patch, candidate.quantity)
                        working.append(product)
                        by_id[product.id] = product
                        results.append(ScanRestockResult(match=match, product=product, created=True))

        logger.info(
            "Scan restock applied: %d matched, %d created",
            sum(1 for r in results if not r.created),
            sum(1 for r in results if r.created),
        )
        return results

    def _generate_sku(self, working: list[Product]) -> str:
        taken = {p.sku for p in working}
        while True:
            sku = f"AUTO-{secrets.token_hex(2).upper()}"
            if sku not in taken and not self.inventory.sku_taken(sku):
                return sku


def get_engine() -> TransactionEngine:
    """Engine wired to the current Flask app's config and lock registry."""
    cfg = current_app.config
    return TransactionEngine(
        locks=current_app.extensions["stockroom_locks"],
        tax_rate_bps=cfg.get("TAX_RATE_BPS", DEFAULT_TAX_RATE_BPS),
        lock_timeout=cfg.get("LOCK_TIMEOUT_SECONDS", DEFAULT_LOCK_TIMEOUT_SECONDS),
        retain_orphaned_ledgers=cfg.get("RETAIN_ORPHANED_LEDGERS", True),
    )
