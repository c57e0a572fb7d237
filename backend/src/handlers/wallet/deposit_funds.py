"""
Deposit Funds Handler.
POST /wallet/deposit
"""
from taskhived.auth import get_identity
from taskhived.dynamo import DynamoStore
from taskhived.errors import TaskHivedError
from taskhived.ledger import Ledger
from taskhived.logging import log_event, logger
from taskhived.utils import error_response, format_response, parse_body

store = DynamoStore()


def handler(event, context):
    """
    POST /wallet/deposit
    Body: { "amount": 100.00, "reference": "pi_..." }

    ``reference`` is the payment provider's id for the charge; replaying it
    returns the original deposit instead of crediting twice.
    """
    log_event(event)
    try:
        identity = get_identity(event)
        body = parse_body(event)

        ledger = Ledger(store)
        transaction = ledger.deposit(
            identity.user_id,
            body.get('amount'),
            reference=body.get('reference'),
            metadata={'source': body.get('source', 'card')}
        )
        balance = ledger.reconcile(identity.user_id)['balance']

        return format_response(200, {
            'message': 'Deposit successful',
            'transactionId': transaction['transactionId'],
            'depositAmount': transaction['amount'],
            'newBalance': balance,
        })

    except TaskHivedError as e:
        return error_response(e)
    except Exception as e:
        logger.exception(f"Error depositing funds: {e}")
        return format_response(500, {'error': 'InternalError', 'message': 'Internal Server Error'})
