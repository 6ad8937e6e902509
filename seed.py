import logging
from datetime import timedelta
from decimal import Decimal

from database import session_scope
from models import TransactionType
from periods import utcnow
from schemas import TransactionIn
from services import TransactionService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def sample_transactions() -> list[TransactionIn]:
    today = utcnow().replace(microsecond=0)
    rows = [
        (TransactionType.income, "3200.00", "Salary", "Monthly salary", 0),
        (TransactionType.income, "450.00", "Freelance", "Landing page", 2),
        (TransactionType.expense, "1100.00", "Bills & Utilities", "Rent", 1),
        (TransactionType.expense, "42.50", "Food & Dining", "Dinner", 1),
        (TransactionType.expense, "18.90", "Transportation", "Metro card", 3),
        (TransactionType.expense, "25.00", "Badminton", "Court booking", 4),
    ]
    return [
        TransactionIn(
            type=txn_type,
            amount=Decimal(amount),
            category=category,
            description=description,
            date=today - timedelta(days=days_ago),
        )
        for txn_type, amount, category, description, days_ago in rows
    ]


def main() -> None:
    logger.info("seed: start")
    with session_scope() as session:
        service = TransactionService(session)
        for data in sample_transactions():
            txn = service.create(data)
            logger.info(f"seed: created {txn.type.value} {txn.amount}")
    logger.info("seed: finished")


if __name__ == "__main__":
    main()
