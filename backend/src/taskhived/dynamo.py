"""
DynamoDB persistence for tasks, user profiles and the transactions ledger.

Every task mutation is an optimistic, version-conditioned update, and every
ledger write is a single TransactWriteItems call so a ledger row is never
committed without its task and balance changes (or vice versa).
"""
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence

import boto3
from boto3.dynamodb.conditions import Key
from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import BotoCoreError, ClientError

from .config import config
from .errors import (
    ConcurrentModification,
    DuplicateTransaction,
    InsufficientFunds,
    PersistenceFailure,
    TaskHivedError,
)
from .logging import logger
from .models import PaymentStatus, TaskStatus

_serializer = TypeSerializer()


def serialize_item(item: Dict[str, Any]) -> Dict[str, Any]:
    """Convert a plain item to the low-level client attribute format."""
    return {k: _serializer.serialize(v) for k, v in item.items()}


def _error_code(error: ClientError) -> str:
    return error.response.get('Error', {}).get('Code', '')


def _cancellation_codes(error: ClientError) -> List[str]:
    reasons = error.response.get('CancellationReasons') or []
    return [reason.get('Code', 'None') for reason in reasons]


class DynamoStore:
    """Tasks, profiles and ledger tables behind one injectable object."""

    def __init__(
        self,
        resource=None,
        client=None,
        tasks_table: str = None,
        profiles_table: str = None,
        transactions_table: str = None
    ):
        self._resource = resource
        self._client = client
        self.tasks_table = tasks_table or config.TASKS_TABLE
        self.profiles_table = profiles_table or config.USER_PROFILES_TABLE
        self.transactions_table = transactions_table or config.TRANSACTIONS_TABLE

    @property
    def resource(self):
        if self._resource is None:
            self._resource = boto3.resource('dynamodb', region_name=config.AWS_REGION)
        return self._resource

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client('dynamodb', region_name=config.AWS_REGION)
        return self._client

    def _table(self, name: str):
        return self.resource.Table(name)

    # =========================================================================
    # Tasks
    # =========================================================================

    def get_task(self, task_id: str) -> Optional[Dict[str, Any]]:
        """Get a single task (strongly consistent)."""
        try:
            response = self._table(self.tasks_table).get_item(
                Key={'taskId': task_id},
                ConsistentRead=True
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error reading task {task_id}: {e}")
            raise PersistenceFailure(f"Failed to read task {task_id}")
        return response.get('Item')

    def create_task(self, item: Dict[str, Any]) -> Dict[str, Any]:
        try:
            self._table(self.tasks_table).put_item(
                Item=item,
                ConditionExpression='attribute_not_exists(taskId)'
            )
        except ClientError as e:
            if _error_code(e) == 'ConditionalCheckFailedException':
                raise ConcurrentModification(f"Task {item['taskId']} already exists")
            logger.error(f"Error creating task {item.get('taskId')}: {e}")
            raise PersistenceFailure('Failed to save task')
        except BotoCoreError as e:
            logger.error(f"Error creating task {item.get('taskId')}: {e}")
            raise PersistenceFailure('Failed to save task')
        return item

    def update_task(
        self,
        task_id: str,
        expected_version: int,
        changes: Dict[str, Any],
        expected_statuses: Sequence[str] = None
    ) -> Dict[str, Any]:
        """
        Apply ``changes`` to a task in one conditional UpdateItem.

        The write only succeeds when the stored version still equals
        ``expected_version`` (and, if given, the status is one of
        ``expected_statuses``). The version is incremented on success.

        Returns:
            The task item as stored after the update

        Raises:
            ConcurrentModification: the condition failed
            PersistenceFailure: any other DynamoDB error
        """
        names = {'#version': 'version'}
        values = {':expected': expected_version, ':next': expected_version + 1}
        assignments = ['#version = :next']

        for idx, (field, value) in enumerate(changes.items()):
            names[f'#f{idx}'] = field
            values[f':v{idx}'] = value
            assignments.append(f'#f{idx} = :v{idx}')

        condition = '#version = :expected'
        if expected_statuses:
            names['#status'] = 'status'
            placeholders = []
            for idx, status in enumerate(expected_statuses):
                values[f':s{idx}'] = status
                placeholders.append(f':s{idx}')
            condition += f" AND #status IN ({', '.join(placeholders)})"

        try:
            response = self._table(self.tasks_table).update_item(
                Key={'taskId': task_id},
                UpdateExpression='SET ' + ', '.join(assignments),
                ConditionExpression=condition,
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ReturnValues='ALL_NEW'
            )
        except ClientError as e:
            if _error_code(e) == 'ConditionalCheckFailedException':
                logger.warning(f"Version check failed for task {task_id} at version {expected_version}")
                raise ConcurrentModification()
            logger.error(f"Error updating task {task_id}: {e}")
            raise PersistenceFailure(f"Failed to update task {task_id}")
        except BotoCoreError as e:
            logger.error(f"Error updating task {task_id}: {e}")
            raise PersistenceFailure(f"Failed to update task {task_id}")

        return response.get('Attributes', {})

    def list_tasks_by_status(self, status: str, submitted_before: str = None) -> List[Dict[str, Any]]:
        """Query the byStatus index, following pagination."""
        condition = Key('status').eq(status)
        if submitted_before:
            condition = condition & Key('submittedAt').lt(submitted_before)
        return self._query_all(self.tasks_table, 'byStatus', condition)

    def count_worker_tasks(self, worker_id: str, status: str) -> int:
        table = self._table(self.tasks_table)
        params = {
            'IndexName': 'byWorker',
            'KeyConditionExpression': Key('workerId').eq(worker_id) & Key('status').eq(status),
            'Select': 'COUNT'
        }
        total = 0
        try:
            while True:
                response = table.query(**params)
                total += response.get('Count', 0)
                if 'LastEvaluatedKey' not in response:
                    return total
                params['ExclusiveStartKey'] = response['LastEvaluatedKey']
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error counting tasks for worker {worker_id}: {e}")
            raise PersistenceFailure('Failed to count worker tasks')

    # =========================================================================
    # Profiles
    # =========================================================================

    def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        try:
            response = self._table(self.profiles_table).get_item(Key={'userId': user_id})
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error reading profile {user_id}: {e}")
            raise PersistenceFailure(f"Failed to read profile {user_id}")
        return response.get('Item')

    def update_profile(self, user_id: str, changes: Dict[str, Any]) -> None:
        names = {}
        values = {}
        assignments = []
        for idx, (field, value) in enumerate(changes.items()):
            names[f'#f{idx}'] = field
            values[f':v{idx}'] = value
            assignments.append(f'#f{idx} = :v{idx}')
        try:
            self._table(self.profiles_table).update_item(
                Key={'userId': user_id},
                UpdateExpression='SET ' + ', '.join(assignments),
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error updating profile {user_id}: {e}")
            raise PersistenceFailure(f"Failed to update profile {user_id}")

    def set_cached_balance(
        self,
        user_id: str,
        balance: Decimal,
        observed: Optional[Decimal],
        ledger_seq: int = 0
    ) -> bool:
        """
        Overwrite the cached credits projection with a ledger-derived value,
        only if it still holds the value and ledger sequence observed before
        the ledger was read.

        Returns:
            False if a concurrent ledger write changed the cached value first
        """
        names = {'#credits': 'credits', '#seq': 'ledgerSeq'}
        values = {':balance': balance, ':seq': ledger_seq}
        if observed is None:
            condition = 'attribute_not_exists(#credits)'
        else:
            condition = '#credits = :observed'
            values[':observed'] = observed
        if ledger_seq:
            condition += ' AND #seq = :seq'
        else:
            condition += ' AND (attribute_not_exists(#seq) OR #seq = :seq)'
        try:
            self._table(self.profiles_table).update_item(
                Key={'userId': user_id},
                UpdateExpression='SET #credits = :balance',
                ConditionExpression=condition,
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values
            )
        except ClientError as e:
            if _error_code(e) == 'ConditionalCheckFailedException':
                return False
            logger.error(f"Error reconciling balance for {user_id}: {e}")
            raise PersistenceFailure(f"Failed to update balance for {user_id}")
        except BotoCoreError as e:
            logger.error(f"Error reconciling balance for {user_id}: {e}")
            raise PersistenceFailure(f"Failed to update balance for {user_id}")
        return True

    # =========================================================================
    # Ledger
    # =========================================================================

    def get_transaction(self, transaction_id: str) -> Optional[Dict[str, Any]]:
        try:
            response = self._table(self.transactions_table).get_item(Key={'transactionId': transaction_id})
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error reading transaction {transaction_id}: {e}")
            raise PersistenceFailure(f"Failed to read transaction {transaction_id}")
        return response.get('Item')

    def list_transactions(self, user_id: str) -> List[Dict[str, Any]]:
        """All ledger rows where the user is the payer/owner or the recipient."""
        rows = {}
        for index, key in (('byUser', 'userId'), ('byRecipient', 'recipientId')):
            for item in self._query_all(self.transactions_table, index, Key(key).eq(user_id)):
                rows[item['transactionId']] = item
        return list(rows.values())

    def append_transaction(
        self,
        transaction: Dict[str, Any],
        balance_deltas: Dict[str, Decimal],
        guard_user: str = None
    ) -> Dict[str, Any]:
        """
        Insert a ledger row and adjust cached balances atomically.

        Raises:
            DuplicateTransaction: a row with the same transactionId exists
            InsufficientFunds: the guarded user's cached balance is too low
        """
        actions = [self._ledger_put(transaction)]
        handlers = [lambda: DuplicateTransaction(f"Transaction {transaction['transactionId']} already recorded")]
        self._add_balance_updates(actions, handlers, transaction, balance_deltas, guard_user)
        self._transact(actions, handlers)
        return transaction

    def commit_payment(
        self,
        task_id: str,
        expected_version: int,
        task_changes: Dict[str, Any],
        transaction: Dict[str, Any],
        balance_deltas: Dict[str, Decimal],
        guard_user: str
    ) -> Dict[str, Any]:
        """
        Record a task payment: task update, ledger row and balance moves
        in one all-or-nothing transaction.

        Raises:
            ConcurrentModification: task version or payment status changed
            DuplicateTransaction: the payment row already exists
            InsufficientFunds: payer's cached balance is too low
        """
        names = {'#version': 'version', '#paymentStatus': 'paymentStatus', '#status': 'status'}
        values = {
            ':expected': expected_version,
            ':next': expected_version + 1,
            ':verified': TaskStatus.VERIFIED,
            ':pending': PaymentStatus.PENDING,
        }
        assignments = ['#version = :next']
        for idx, (field, value) in enumerate(task_changes.items()):
            names[f'#f{idx}'] = field
            values[f':v{idx}'] = value
            assignments.append(f'#f{idx} = :v{idx}')

        actions = [
            {
                'Update': {
                    'TableName': self.tasks_table,
                    'Key': serialize_item({'taskId': task_id}),
                    'UpdateExpression': 'SET ' + ', '.join(assignments),
                    'ConditionExpression': (
                        '#version = :expected AND #status = :verified AND #paymentStatus = :pending'
                    ),
                    'ExpressionAttributeNames': names,
                    'ExpressionAttributeValues': serialize_item(values)
                }
            },
            self._ledger_put(transaction)
        ]
        handlers = [
            lambda: ConcurrentModification(f"Task {task_id} changed before payment"),
            lambda: DuplicateTransaction(f"Payment for task {task_id} already recorded"),
        ]
        self._add_balance_updates(actions, handlers, transaction, balance_deltas, guard_user)
        self._transact(actions, handlers)
        return transaction

    def _ledger_put(self, transaction: Dict[str, Any]) -> Dict[str, Any]:
        return {
            'Put': {
                'TableName': self.transactions_table,
                'Item': serialize_item(transaction),
                'ConditionExpression': 'attribute_not_exists(transactionId)'
            }
        }

    def _add_balance_updates(
        self,
        actions: list,
        handlers: list,
        transaction: Dict[str, Any],
        balance_deltas: Dict[str, Decimal],
        guard_user: Optional[str]
    ) -> None:
        # ledgerSeq counts the rows written for a user; reconcile only trusts
        # an index read that has caught up with it
        timestamp = transaction.get('createdAt', '')
        for user_id, delta in balance_deltas.items():
            update = {
                'TableName': self.profiles_table,
                'Key': serialize_item({'userId': user_id}),
                'ExpressionAttributeNames': {'#credits': 'credits', '#seq': 'ledgerSeq'},
            }
            if user_id == guard_user:
                amount = -delta
                update['UpdateExpression'] = 'SET #credits = #credits - :amount, updatedAt = :ts ADD #seq :one'
                update['ConditionExpression'] = 'attribute_exists(#credits) AND #credits >= :amount'
                update['ExpressionAttributeValues'] = serialize_item({':amount': amount, ':ts': timestamp, ':one': 1})
                handlers.append(lambda u=user_id: InsufficientFunds(f"Insufficient balance for {u}"))
            else:
                update['UpdateExpression'] = 'SET updatedAt = :ts ADD #credits :delta, #seq :one'
                update['ExpressionAttributeValues'] = serialize_item({':delta': delta, ':ts': timestamp, ':one': 1})
                handlers.append(lambda: ConcurrentModification())
            actions.append({'Update': update})

    def _transact(self, actions: list, handlers: List[Callable[[], TaskHivedError]]) -> None:
        try:
            self.client.transact_write_items(TransactItems=actions)
        except ClientError as e:
            if _error_code(e) == 'TransactionCanceledException':
                codes = _cancellation_codes(e)
                for idx, code in enumerate(codes):
                    if code == 'ConditionalCheckFailed' and idx < len(handlers):
                        raise handlers[idx]()
                logger.error(f"Transaction cancelled: {codes}")
                raise ConcurrentModification('Ledger transaction conflicted; retry')
            logger.error(f"Ledger transaction error: {e}")
            raise PersistenceFailure('Failed to record ledger transaction')
        except BotoCoreError as e:
            logger.error(f"Ledger transaction error: {e}")
            raise PersistenceFailure('Failed to record ledger transaction')

    # =========================================================================
    # Helpers
    # =========================================================================

    def _query_all(self, table_name: str, index_name: str, key_condition) -> List[Dict[str, Any]]:
        """Query an index and follow LastEvaluatedKey until exhausted."""
        table = self._table(table_name)
        params = {'IndexName': index_name, 'KeyConditionExpression': key_condition}
        items = []
        try:
            while True:
                response = table.query(**params)
                items.extend(response.get('Items', []))
                if 'LastEvaluatedKey' not in response:
                    return items
                params['ExclusiveStartKey'] = response['LastEvaluatedKey']
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error querying {table_name}/{index_name}: {e}")
            raise PersistenceFailure(f"Failed to query {index_name}")
