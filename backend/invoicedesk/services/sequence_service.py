# Overview: Receipt number minting on top of the atomic year-scoped counters.

from __future__ import annotations

import logging

from . import invoice_repository
from invoicedesk.time_utils import utcnow

logger = logging.getLogger(__name__)

RECEIPT_PREFIX = "INV"
RECEIPT_PAD = 7
RECEIPT_CAPACITY = 10 ** RECEIPT_PAD - 1


def counter_key(year: int) -> str:
    return f"invoice-{year}"


def format_receipt_number(year: int, seq: int) -> str:
    return f"{RECEIPT_PREFIX}-{year}-{seq:0{RECEIPT_PAD}d}"


def next_receipt_number(year: int | None = None) -> str:
    """
    Mint the next receipt number for a calendar year, e.g. "INV-2025-0000042".

    year defaults to the current UTC year. Each year has its own counter, so
    numbering restarts at 1 every January while old counters are kept.
    Past 9,999,999 the sequence keeps counting and the number simply gets wider.

    Runs inside the caller's transaction; storage failures propagate and no
    fallback number is ever produced.
    """
    if year is None:
        year = utcnow().year

    seq = invoice_repository.increment_and_get(counter_key(year))
    if seq > RECEIPT_CAPACITY:
        logger.warning("Receipt sequence for %s exceeded %d digits (seq=%d)", year, RECEIPT_PAD, seq)

    return format_receipt_number(year, seq)
