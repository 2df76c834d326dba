"""
Purchases: price catalog, one-shot idempotent purchase, and the
pending -> completed | failed confirmation flow.

A completed transaction and its credit grant always commit together.
"""

from decimal import Decimal

from looksia.core.exceptions import ConflictError, InvalidInputError, NotFoundError
from looksia.core.logging import get_logger
from looksia.models.ledger import ProductType, Transaction, TransactionStatus
from looksia.storage.base import LedgerSession, get_ledger_store

log = get_logger(__name__)

CURRENCY = "BRL"

# pack size -> price
CATALOG: dict[ProductType, dict[int, Decimal]] = {
    ProductType.SPINS: {
        3: Decimal("2.99"),
        5: Decimal("4.99"),
        10: Decimal("8.99"),
    },
    ProductType.PRO_ANALYSES: {
        1: Decimal("9.99"),
        3: Decimal("16.99"),
        5: Decimal("19.99"),
    },
}


def get_catalog() -> list[dict]:
    return [
        {"product_type": product.value, "quantity": quantity, "amount": str(amount), "currency": CURRENCY}
        for product, packs in CATALOG.items()
        for quantity, amount in packs.items()
    ]


def price_for(product_type: ProductType | str, quantity: int) -> tuple[ProductType, Decimal]:
    try:
        product = ProductType(product_type)
    except ValueError:
        raise InvalidInputError("Unknown product", details={"product_type": str(product_type)}) from None
    amount = CATALOG[product].get(quantity)
    if amount is None:
        raise InvalidInputError(
            "Unknown pack size",
            details={"product_type": product.value, "quantity": quantity},
        )
    return product, amount


def _new_transaction(
    user_id: str,
    product: ProductType,
    quantity: int,
    amount: Decimal,
    status: TransactionStatus,
    idempotency_key: str,
) -> Transaction:
    return Transaction(
        user_id=user_id,
        product_type=product,
        quantity=quantity,
        amount=amount,
        currency=CURRENCY,
        status=status,
        idempotency_key=idempotency_key,
    )


async def purchase(
    user_id: str,
    product_type: ProductType | str,
    quantity: int,
    idempotency_key: str,
) -> tuple[Transaction, bool]:
    """
    Record a completed transaction and grant the credits.
    A repeated idempotency key returns the stored transaction with created=False and grants nothing.
    """
    product, amount = price_for(product_type, quantity)

    async def work(session: LedgerSession) -> tuple[Transaction, bool]:
        existing = await session.find_transaction(idempotency_key)
        if existing:
            return existing, False
        tx = _new_transaction(user_id, product, quantity, amount, TransactionStatus.COMPLETED, idempotency_key)
        await session.balance()
        await session.add_transaction(tx)
        await session.grant(product.credit_kind, quantity)
        return tx, True

    tx, created = await get_ledger_store().run(user_id, work)
    if created:
        log.info(
            "purchase_applied",
            user_id=user_id,
            transaction_id=tx.id,
            product_type=product.value,
            quantity=quantity,
            amount=str(amount),
        )
    else:
        log.info("purchase_replayed", user_id=user_id, transaction_id=tx.id)
    return tx, created


async def open_purchase(
    user_id: str,
    product_type: ProductType | str,
    quantity: int,
    idempotency_key: str,
) -> tuple[Transaction, bool]:
    """Record a pending transaction; no credits move until it is confirmed."""
    product, amount = price_for(product_type, quantity)

    async def work(session: LedgerSession) -> tuple[Transaction, bool]:
        existing = await session.find_transaction(idempotency_key)
        if existing:
            return existing, False
        await session.balance()
        tx = _new_transaction(user_id, product, quantity, amount, TransactionStatus.PENDING, idempotency_key)
        await session.add_transaction(tx)
        return tx, True

    tx, created = await get_ledger_store().run(user_id, work)
    if created:
        log.info("purchase_opened", user_id=user_id, transaction_id=tx.id, product_type=product.value)
    return tx, created


async def confirm_purchase(user_id: str, transaction_id: str) -> Transaction:
    """pending -> completed plus the grant, exactly once. Confirming a completed transaction is a no-op."""

    async def work(session: LedgerSession) -> tuple[Transaction, bool]:
        current = await session.get_transaction(transaction_id)
        if current is None:
            raise NotFoundError("Transaction not found")
        if current.status == TransactionStatus.COMPLETED:
            return current, False
        if current.status == TransactionStatus.FAILED:
            raise ConflictError("Transaction already failed", details={"transaction_id": transaction_id})
        updated = await session.set_transaction_status(
            transaction_id, TransactionStatus.PENDING, TransactionStatus.COMPLETED
        )
        if updated is None:
            raise ConflictError("Transaction status changed", details={"transaction_id": transaction_id})
        await session.grant(updated.product_type.credit_kind, updated.quantity)
        return updated, True

    tx, applied = await get_ledger_store().run(user_id, work)
    if applied:
        log.info(
            "purchase_applied",
            user_id=user_id,
            transaction_id=tx.id,
            product_type=tx.product_type.value,
            quantity=tx.quantity,
            amount=str(tx.amount),
        )
    return tx


async def fail_purchase(user_id: str, transaction_id: str) -> Transaction:
    """pending -> failed, no grant. Failing an already failed transaction is a no-op."""

    async def work(session: LedgerSession) -> Transaction:
        current = await session.get_transaction(transaction_id)
        if current is None:
            raise NotFoundError("Transaction not found")
        if current.status == TransactionStatus.FAILED:
            return current
        if current.status == TransactionStatus.COMPLETED:
            raise ConflictError("Transaction already completed", details={"transaction_id": transaction_id})
        updated = await session.set_transaction_status(
            transaction_id, TransactionStatus.PENDING, TransactionStatus.FAILED
        )
        if updated is None:
            raise ConflictError("Transaction status changed", details={"transaction_id": transaction_id})
        return updated

    tx = await get_ledger_store().run(user_id, work)
    log.info("purchase_failed", user_id=user_id, transaction_id=tx.id)
    return tx
