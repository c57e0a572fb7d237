"""
Shared fixtures: an in-memory stand-in for DynamoStore and a scripted scorer.
"""
import copy
import os
import sys
import threading
from datetime import datetime, timezone
from decimal import Decimal

import pytest

# Add src to path for import
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from taskhived.auth import Identity  # noqa: E402
from taskhived.errors import (  # noqa: E402
    AIServiceUnavailable,
    ConcurrentModification,
    DuplicateTransaction,
    InsufficientFunds,
)
from taskhived.models import PaymentStatus, TaskStatus, UserRole  # noqa: E402
from taskhived.scoring import ReviewResult, ScoreResult  # noqa: E402

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeStore:
    """
    Same contract as DynamoStore, held in dicts behind one lock.
    Conditional writes fail the same way the DynamoDB conditions do, and
    transactions check every condition before applying anything.
    """

    def __init__(self):
        self.tasks = {}
        self.profiles = {}
        self.transactions = {}
        self.lock = threading.RLock()
        self.update_calls = []

    # Tasks

    def get_task(self, task_id):
        with self.lock:
            return copy.deepcopy(self.tasks.get(task_id))

    def create_task(self, item):
        with self.lock:
            if item['taskId'] in self.tasks:
                raise ConcurrentModification(f"Task {item['taskId']} already exists")
            self.tasks[item['taskId']] = copy.deepcopy(item)
            return item

    def update_task(self, task_id, expected_version, changes, expected_statuses=None):
        with self.lock:
            self.update_calls.append((task_id, expected_version, dict(changes)))
            task = self.tasks.get(task_id)
            if task is None or task.get('version') != expected_version:
                raise ConcurrentModification()
            if expected_statuses and task.get('status') not in expected_statuses:
                raise ConcurrentModification()
            task.update(copy.deepcopy(changes))
            task['version'] = expected_version + 1
            return copy.deepcopy(task)

    def list_tasks_by_status(self, status, submitted_before=None):
        with self.lock:
            return [
                copy.deepcopy(t) for t in self.tasks.values()
                if t.get('status') == status
                and (submitted_before is None or (t.get('submittedAt') or '') < submitted_before)
            ]

    def count_worker_tasks(self, worker_id, status):
        with self.lock:
            return sum(
                1 for t in self.tasks.values()
                if t.get('workerId') == worker_id and t.get('status') == status
            )

    # Profiles

    def get_profile(self, user_id):
        with self.lock:
            return copy.deepcopy(self.profiles.get(user_id))

    def update_profile(self, user_id, changes):
        with self.lock:
            self.profiles.setdefault(user_id, {'userId': user_id}).update(changes)

    def set_cached_balance(self, user_id, balance, observed, ledger_seq=0):
        with self.lock:
            profile = self.profiles.setdefault(user_id, {'userId': user_id})
            if profile.get('ledgerSeq', 0) != ledger_seq:
                return False
            if observed is None:
                if 'credits' in profile:
                    return False
            elif profile.get('credits') != observed:
                return False
            profile['credits'] = balance
            return True

    # Ledger

    def get_transaction(self, transaction_id):
        with self.lock:
            return copy.deepcopy(self.transactions.get(transaction_id))

    def list_transactions(self, user_id):
        with self.lock:
            return [
                copy.deepcopy(t) for t in self.transactions.values()
                if t.get('userId') == user_id or t.get('recipientId') == user_id
            ]

    def append_transaction(self, transaction, balance_deltas, guard_user=None):
        with self.lock:
            self._check_ledger_put(transaction)
            self._check_balances(balance_deltas, guard_user)
            self._apply(transaction, balance_deltas)
            return transaction

    def commit_payment(self, task_id, expected_version, task_changes, transaction, balance_deltas, guard_user):
        with self.lock:
            task = self.tasks.get(task_id)
            if (
                task is None
                or task.get('version') != expected_version
                or task.get('status') != TaskStatus.VERIFIED
                or task.get('paymentStatus') != PaymentStatus.PENDING
            ):
                raise ConcurrentModification(f"Task {task_id} changed before payment")
            self._check_ledger_put(transaction)
            self._check_balances(balance_deltas, guard_user)

            task.update(copy.deepcopy(task_changes))
            task['version'] = expected_version + 1
            self._apply(transaction, balance_deltas)
            return transaction

    def _check_ledger_put(self, transaction):
        if transaction['transactionId'] in self.transactions:
            raise DuplicateTransaction(f"Transaction {transaction['transactionId']} already recorded")

    def _check_balances(self, balance_deltas, guard_user):
        if guard_user is None or guard_user not in balance_deltas:
            return
        credits = self.profiles.get(guard_user, {}).get('credits')
        if credits is None or credits < -balance_deltas[guard_user]:
            raise InsufficientFunds(f"Insufficient balance for {guard_user}")

    def _apply(self, transaction, balance_deltas):
        self.transactions[transaction['transactionId']] = copy.deepcopy(transaction)
        for user_id, delta in balance_deltas.items():
            profile = self.profiles.setdefault(user_id, {'userId': user_id})
            profile['credits'] = profile.get('credits', Decimal('0')) + delta
            profile['ledgerSeq'] = profile.get('ledgerSeq', 0) + 1


class FakeScorer:
    """Returns a scripted result, or raises ``error`` when set."""

    def __init__(self):
        self.result = ScoreResult(Decimal('4'), True, 'Looks complete')
        self.review_result = ReviewResult(Decimal('4'), 'Relevant and thorough')
        self.error = None
        self.calls = []
        self.review_calls = []

    def score(self, title, description, comment, time_taken, has_attachment=False):
        self.calls.append((title, description, comment, time_taken, has_attachment))
        if self.error:
            raise self.error
        return self.result

    def review(self, title, description, submission_text):
        self.review_calls.append((title, description, submission_text))
        if self.error:
            raise self.error
        return self.review_result


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def scorer():
    return FakeScorer()


@pytest.fixture
def timeout_error():
    return AIServiceUnavailable('AI validation request failed: APITimeoutError')


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def worker():
    return Identity('worker-1', 'worker@example.com', (UserRole.WORKER,))


@pytest.fixture
def client_user():
    return Identity('client-1', 'client@example.com', (UserRole.CLIENT,))


@pytest.fixture
def admin():
    return Identity('admin-1', 'admin@example.com', (UserRole.ADMIN,))


@pytest.fixture
def make_task(store):
    """Seed a task assigned to worker-1 by client-1; keyword overrides any field."""
    counter = {'n': 0}

    def _make(**overrides):
        counter['n'] += 1
        task = {
            'taskId': f"task-{counter['n']}",
            'title': 'Label 20 images',
            'description': 'Draw boxes around every car',
            'payment': Decimal('15.00'),
            'clientId': 'client-1',
            'workerId': 'worker-1',
            'status': TaskStatus.ASSIGNED,
            'paymentStatus': PaymentStatus.NONE,
            'createdAt': '2024-06-01T11:30:00+00:00',
            'requiresHumanReview': False,
            'version': 0,
        }
        task.update(overrides)
        store.tasks[task['taskId']] = task
        return copy.deepcopy(task)

    return _make
