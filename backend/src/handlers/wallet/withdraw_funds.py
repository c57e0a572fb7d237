"""
Withdraw Funds Handler.
POST /wallet/withdraw
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
    POST /wallet/withdraw
    Body: { "amount": 50.00, "destination": "optional; defaults to the profile payout destination" }

    The withdrawal is recorded as pending and reserved against the balance
    until the payout provider settles it.
    """
    log_event(event)
    try:
        identity = get_identity(event)
        body = parse_body(event)

        ledger = Ledger(store)
        transaction = ledger.withdraw(identity.user_id, body.get('amount'), body.get('destination'))
        balance = ledger.balance(identity.user_id)

        return format_response(200, {
            'message': 'Withdrawal initiated successfully',
            'transactionId': transaction['transactionId'],
            'withdrawalAmount': transaction['amount'],
            'destination': transaction['destination'],
            'status': transaction['status'],
            'newBalance': balance,
        })

    except TaskHivedError as e:
        return error_response(e)
    except Exception as e:
        logger.exception(f"Error withdrawing funds: {e}")
        return format_response(500, {'error': 'InternalError', 'message': 'Internal Server Error'})
