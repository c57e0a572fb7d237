"""
Ledger - the transactions table is the source of truth for money.

A user's balance is always derived from their ledger rows; the ``credits``
column on the profile is a cached projection kept in step by the same
TransactWriteItems call that appends a row, and reconciled on read.
"""
import uuid
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

from .config import config
from .errors import (
    AlreadyPaid,
    ConcurrentModification,
    DuplicateTransaction,
    InsufficientFunds,
    InvalidRequest,
    InvalidTransition,
    PayoutDestinationMissing,
    TaskNotFound,
)
from .logging import log_transition, logger
from .models import PaymentStatus, TaskStatus, TransactionStatus, TransactionType
from .utils import CENT, isoformat, to_amount, utc_now

ZERO = Decimal('0.00')


def payment_transaction_id(task_id: str) -> str:
    """One payment row per task; the id doubles as the idempotency key."""
    return f'payment#{task_id}'


def derive_balance(transactions: Iterable[Dict[str, Any]], user_id: str) -> Decimal:
    """
    Sum a user's ledger rows into a balance.

    + completed deposits owned by the user
    + completed payments where the user is the recipient
    - completed payments made by the user
    - withdrawals by the user that have not failed (pending ones are reserved)
    """
    balance = ZERO
    for txn in transactions:
        amount = Decimal(str(txn.get('amount', 0)))
        txn_type = txn.get('type')
        status = txn.get('status')

        if txn_type == TransactionType.DEPOSIT:
            if status == TransactionStatus.COMPLETED and txn.get('userId') == user_id:
                balance += amount
        elif txn_type == TransactionType.PAYMENT:
            if status != TransactionStatus.COMPLETED:
                continue
            if txn.get('recipientId') == user_id:
                balance += amount
            if txn.get('userId') == user_id:
                balance -= amount
        elif txn_type == TransactionType.WITHDRAWAL:
            if status != TransactionStatus.FAILED and txn.get('userId') == user_id:
                balance -= amount

    return balance.quantize(CENT)


class Ledger:
    """Balances, task payouts, deposits and withdrawals."""

    def __init__(self, store, clock=utc_now):
        self.store = store
        self.clock = clock

    def balance(self, user_id: str) -> Decimal:
        return derive_balance(self.store.list_transactions(user_id), user_id)

    def reconcile(self, user_id: str) -> Dict[str, Decimal]:
        """
        Bring the cached credits in line with the ledger.

        The cached value and ledger sequence are read before the ledger so the
        compare-and-set only overwrites them if no ledger write landed in
        between. The transaction indexes are eventually consistent: while they
        hold fewer rows than the sequence says were written, the derived sum
        is incomplete, so the cache is left alone and reported as the balance.
        """
        profile = self.store.get_profile(user_id) or {}
        cached = profile.get('credits')
        ledger_seq = int(profile.get('ledgerSeq') or 0)
        rows = self.store.list_transactions(user_id)
        balance = derive_balance(rows, user_id)

        observed = Decimal(str(cached)).quantize(CENT) if cached is not None else None

        if len(rows) < ledger_seq:
            logger.info(f"Ledger index for {user_id} has {len(rows)} of {ledger_seq} rows; cache left as is")
            return {'balance': observed if observed is not None else ZERO, 'cached': observed, 'drift': ZERO}

        drift = balance - (observed if observed is not None else ZERO)

        if observed is None or drift != ZERO:
            if self.store.set_cached_balance(user_id, balance, cached, ledger_seq):
                logger.warning(f"Balance drift for {user_id}: cached={cached} ledger={balance}; cache corrected")
            else:
                logger.info(f"Cached balance for {user_id} moved during reconcile; left for the next read")

        return {'balance': balance, 'cached': observed, 'drift': drift}

    def pay_worker(self, task_id: str) -> Dict[str, Any]:
        """
        Move a verified task's payment from client to worker, exactly once.

        Returns:
            The ledger row written

        Raises:
            TaskNotFound, AlreadyPaid, InvalidTransition, InsufficientFunds,
            ConcurrentModification, PersistenceFailure
        """
        task = self.store.get_task(task_id)
        if not task:
            raise TaskNotFound()

        if task.get('paymentStatus') == PaymentStatus.PAID:
            raise AlreadyPaid()
        if task.get('status') != TaskStatus.VERIFIED or task.get('paymentStatus') != PaymentStatus.PENDING:
            raise InvalidTransition(
                f"Task is '{task.get('status')}' with payment '{task.get('paymentStatus')}'; "
                "only verified tasks with a pending payment can be paid"
            )

        client_id = task.get('clientId')
        worker_id = task.get('workerId')
        if not client_id or not worker_id or client_id == worker_id:
            raise InvalidTransition('Task has no distinct client and worker to settle')

        amount = to_amount(task.get('payment'))
        if amount <= ZERO:
            raise InvalidTransition('Task has no payment to settle')

        available = self.reconcile(client_id)['balance']
        if available < amount:
            self._raise_if_paid(task_id)
            logger.warning(f"Client {client_id} cannot fund task {task_id}: balance {available} < {amount}")
            raise InsufficientFunds(f'Client balance {available} is below the task payment {amount}')

        now = isoformat(self.clock())
        transaction = {
            'transactionId': payment_transaction_id(task_id),
            'type': TransactionType.PAYMENT,
            'status': TransactionStatus.COMPLETED,
            'userId': client_id,
            'recipientId': worker_id,
            'taskId': task_id,
            'amount': amount,
            'currency': config.CURRENCY,
            'createdAt': now,
            'metadata': {'taskTitle': task.get('title', '')},
        }

        try:
            self.store.commit_payment(
                task_id,
                task['version'],
                {'paymentStatus': PaymentStatus.PAID, 'paidAt': now},
                transaction,
                {client_id: -amount, worker_id: amount},
                guard_user=client_id
            )
        except DuplicateTransaction:
            logger.info(f"Payment for task {task_id} already in the ledger")
            raise AlreadyPaid()
        except (ConcurrentModification, InsufficientFunds):
            self._raise_if_paid(task_id)
            raise

        log_transition(
            task_id, PaymentStatus.PENDING, PaymentStatus.PAID, client_id,
            amount=amount, currency=config.CURRENCY, workerId=worker_id
        )
        return transaction

    def _raise_if_paid(self, task_id: str) -> None:
        current = self.store.get_task(task_id) or {}
        if current.get('paymentStatus') == PaymentStatus.PAID:
            logger.info(f"Task {task_id} was paid by a concurrent request")
            raise AlreadyPaid()

    def deposit(
        self,
        user_id: str,
        amount,
        reference: str = None,
        metadata: Dict[str, Any] = None
    ) -> Dict[str, Any]:
        """
        Record a completed deposit.

        The external payment reference is the idempotency key: replaying a
        reference returns the entry already recorded for it. A reference
        recorded for another user raises DuplicateTransaction.
        """
        amount = to_amount(amount)
        if amount <= ZERO:
            raise InvalidRequest('Deposit amount must be positive')
        if amount > config.MAX_DEPOSIT:
            raise InvalidRequest(f'Maximum deposit is ${config.MAX_DEPOSIT}')

        transaction = {
            'transactionId': f'deposit#{reference or uuid.uuid4()}',
            'type': TransactionType.DEPOSIT,
            'status': TransactionStatus.COMPLETED,
            'userId': user_id,
            'amount': amount,
            'currency': config.CURRENCY,
            'createdAt': isoformat(self.clock()),
            'metadata': metadata or {},
        }

        try:
            self.store.append_transaction(transaction, {user_id: amount})
        except DuplicateTransaction:
            existing = self.store.get_transaction(transaction['transactionId']) or {}
            if existing.get('userId') != user_id:
                logger.warning(f"Deposit reference {reference} already used by another account")
                raise DuplicateTransaction('Payment reference already used')
            logger.info(f"Deposit {transaction['transactionId']} already recorded")
            return existing

        logger.info(f"Deposited {amount} {config.CURRENCY} for {user_id}")
        return transaction

    def withdraw(self, user_id: str, amount, destination: Optional[str] = None) -> Dict[str, Any]:
        """
        Record a pending withdrawal to the user's payout destination.

        Raises:
            InvalidRequest, PayoutDestinationMissing, InsufficientFunds,
            PersistenceFailure
        """
        amount = to_amount(amount)
        if amount < config.MIN_WITHDRAWAL:
            raise InvalidRequest(f'Minimum withdrawal is ${config.MIN_WITHDRAWAL}')
        if amount > config.MAX_WITHDRAWAL:
            raise InvalidRequest(f'Maximum withdrawal is ${config.MAX_WITHDRAWAL}')

        if not destination:
            profile = self.store.get_profile(user_id) or {}
            destination = profile.get('walletAddress') or profile.get('payoutMethod')
        if not destination:
            raise PayoutDestinationMissing()

        available = self.reconcile(user_id)['balance']
        if available < amount:
            raise InsufficientFunds(f'Balance {available} is below the requested {amount}')

        transaction = {
            'transactionId': f'withdrawal#{uuid.uuid4()}',
            'type': TransactionType.WITHDRAWAL,
            'status': TransactionStatus.PENDING,
            'userId': user_id,
            'amount': amount,
            'currency': config.CURRENCY,
            'destination': destination,
            'createdAt': isoformat(self.clock()),
            'metadata': {},
        }
        self.store.append_transaction(transaction, {user_id: -amount}, guard_user=user_id)

        logger.info(f"Withdrawal of {amount} {config.CURRENCY} requested by {user_id}")
        return transaction
