"""
Celery Tasks
Background export of finished orders to the history ledger.
"""

import logging
import time

from qrmenu.celery_worker import celery_app
from qrmenu.services.excel_manager import LedgerManager

logger = logging.getLogger(__name__)


class LedgerBusy(Exception):
    """Ledger lock could not be taken in time; the task is retried."""


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(LedgerBusy, OSError),
    retry_backoff=True
)
def export_order_to_ledger(self, order_data: dict) -> dict:
    """
    Append a complete or cancelled order to the Excel ledger.

    Args:
        order_data: Flat order record (see ``qrmenu.services.gateways.ledger_row``)

    Returns:
        dict: Result of the export operation
    """
    task_id = self.request.id
    order_id = order_data.get('order_id', 'unknown')

    logger.info(f"Task {task_id}: exporting order {order_id}")
    start_time = time.time()

    result = LedgerManager().export_order(order_data)

    elapsed = round(time.time() - start_time, 3)
    result['task_id'] = task_id
    result['processing_time_seconds'] = elapsed

    if not result['success']:
        logger.warning(f"Task {task_id}: order {order_id} not exported - {result['message']}")
        raise LedgerBusy(result['message'])

    logger.info(f"Task {task_id}: order {order_id} exported in {elapsed}s")
    return result
