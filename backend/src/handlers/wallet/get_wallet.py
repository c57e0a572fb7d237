"""
Get Wallet Handler.
GET /wallet
"""
from taskhived.auth import get_identity
from taskhived.config import config
from taskhived.dynamo import DynamoStore
from taskhived.errors import TaskHivedError
from taskhived.ledger import Ledger
from taskhived.logging import log_event, logger
from taskhived.utils import error_response, format_response

store = DynamoStore()

RECENT_TRANSACTIONS = 20


def handler(event, context):
    """
    Handler to get the caller's balance, derived from the ledger.
    Reading the wallet also repairs the cached balance if it drifted.
    """
    log_event(event)
    try:
        identity = get_identity(event)

        ledger = Ledger(store)
        result = ledger.reconcile(identity.user_id)

        transactions = store.list_transactions(identity.user_id)
        transactions.sort(key=lambda t: t.get('createdAt', ''), reverse=True)

        return format_response(200, {
            'userId': identity.user_id,
            'balance': result['balance'],
            'currency': config.CURRENCY,
            'transactions': transactions[:RECENT_TRANSACTIONS],
        })

    except TaskHivedError as e:
        return error_response(e)
    except Exception as e:
        logger.exception(f"Error getting wallet: {e}")
        return format_response(500, {'error': 'InternalError', 'message': 'Internal Server Error'})
