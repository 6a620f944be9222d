import asyncio
import logging
import secrets
from datetime import datetime

from config.env import CARD_PROCESSING_DELAY_SECONDS

logger = logging.getLogger(__name__)


class PaymentFailed(Exception):
    pass


class SimulatedPaymentProcessor:
    """
    Stand-in for a payment gateway. Card data has already been
    format-validated; nothing is charged.
    """

    def __init__(self, card_delay_seconds: float = CARD_PROCESSING_DELAY_SECONDS):
        self.card_delay_seconds = card_delay_seconds

    async def process(self, *, method: str, amount: float, reference: str) -> str:
        if method == "card" and self.card_delay_seconds > 0:
            await asyncio.sleep(self.card_delay_seconds)

        transaction_id = new_transaction_id()
        logger.info(
            "PAYMENT_PROCESSED method=%s amount=%.2f ref=%s txn=%s",
            method, amount, reference, transaction_id,
        )
        return transaction_id


def new_transaction_id() -> str:
    return f"TXN_{datetime.utcnow():%Y%m%d%H%M%S}{secrets.token_hex(4).upper()}"


def get_payment_processor():
    return SimulatedPaymentProcessor()
