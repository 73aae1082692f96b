"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

SERVICE_NAME = "card-router"


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = SERVICE_NAME


def setup_logging(level: str = "INFO", service_name: Optional[str] = None) -> None:
    """Configure structured JSON logging"""
    global SERVICE_NAME
    if service_name:
        SERVICE_NAME = service_name

    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_decision(
    authorization_id: str,
    category: str,
    instrument_id: str,
    final_status: str,
    settlement_outcome: str,
    needs_reconciliation: bool,
    duration_ms: float,
) -> None:
    """Log structured decision outcome for analysis"""
    logging.getLogger("card_router.decision").info(
        "Authorization resolved",
        extra={
            "authorization_id": authorization_id,
            "step": "decision_complete",
            "category": category,
            "instrument_id": instrument_id,
            "final_status": final_status,
            "settlement_outcome": settlement_outcome,
            "needs_reconciliation": needs_reconciliation,
            "duration_ms": duration_ms,
        },
    )
