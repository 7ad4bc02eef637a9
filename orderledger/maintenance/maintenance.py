"""One-shot maintenance job: re-normalize stored orders and rebuild balances.

This is the recovery path when an order write succeeded but the balance
recalculation did not: it never replays writes, it only recomputes cached
columns from what is stored. Run with
``python -m orderledger.maintenance.maintenance``.
"""

import argparse
import os

from prometheus_client import start_http_server

from orderledger.config import FinanceConfig
from orderledger.db.session import get_db_session
from orderledger.ledger.ledger import recalc_all_supplier_balances
from orderledger.logging_config import get_logger
from orderledger.orders.orders import normalize_existing_orders

logger = get_logger(__name__)


def renormalize_job(config: FinanceConfig = None) -> dict:
    """Recompute every order, then every supplier balance, in one transaction.

    Args:
        config (FinanceConfig, optional): Financial constants; read from the
            environment when omitted.

    Returns:
        dict: ``orders`` processed and the resulting ``balances`` by supplier id.
    """
    config = config or FinanceConfig.from_env()
    with get_db_session() as db:
        count = normalize_existing_orders(db, config)
        # Suppliers with adjustments but no orders are not touched above.
        balances = recalc_all_supplier_balances(db)
    logger.info(f"Maintenance completed: orders={count}, suppliers={len(balances)}")
    return {"orders": count, "balances": balances}


def main(argv=None):
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=int(os.getenv("METRICS_PORT", "0")),
        help="Expose Prometheus metrics on this port while running (0 disables).",
    )
    args = parser.parse_args(argv)

    if args.metrics_port:
        start_http_server(args.metrics_port)
    try:
        renormalize_job()
    except Exception:
        logger.exception("Maintenance job failed")
        raise


if __name__ == "__main__":
    main()
