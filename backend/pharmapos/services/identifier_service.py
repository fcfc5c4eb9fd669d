# Overview: Service-layer operations for sale/payment numbers; generation with collision checks.

"""
Identifier Service - Human-readable sale and payment numbers

FORMAT: {PREFIX}{YYYY}{NNNN}, e.g. SALE20261234 or PAY20265821.
NNNN is a random suffix in 1000..9999, so each prefix/year pair has 9000
numbers. The space is small on purpose (numbers are read out at the counter);
collisions are expected and handled:

- Each candidate is checked against the persisted numbers before use.
- After IDENTIFIER_MAX_ATTEMPTS collisions DuplicateIdentifierError is raised.
- The unique constraints on sales.sale_number / payments.payment_number are the
  final authority. A concurrent writer that picks the same free number loses at
  flush time with IntegrityError and the caller's unit of work is re-run.
"""

from __future__ import annotations

import random
from typing import Callable

from flask import current_app

from ..extensions import db
from ..models import Sale, Payment
from ..time_utils import utcnow


SALE_PREFIX = "SALE"
PAYMENT_PREFIX = "PAY"

SUFFIX_MIN = 1000
SUFFIX_MAX = 9999

DEFAULT_MAX_ATTEMPTS = 10


class DuplicateIdentifierError(Exception):
    """Raised when no free number was found within the attempt budget."""

    def __init__(self, prefix: str, attempts: int):
        super().__init__(f"Could not generate a unique {prefix} number after {attempts} attempts")
        self.prefix = prefix
        self.attempts = attempts
        self.details = {"prefix": prefix, "attempts": attempts}


def _default_draw() -> int:
    return random.randint(SUFFIX_MIN, SUFFIX_MAX)


def generate_number(
    *,
    prefix: str,
    exists: Callable[[str], bool],
    year: int | None = None,
    max_attempts: int | None = None,
    draw: Callable[[], int] | None = None,
) -> str:
    """
    Produce a number not yet taken according to `exists`.

    Args:
        prefix: "SALE", "PAY", ...
        exists: predicate answering whether a candidate is already persisted
        year: defaults to the current UTC year
        max_attempts: defaults to IDENTIFIER_MAX_ATTEMPTS
        draw: suffix source, injectable for tests

    Raises:
        DuplicateIdentifierError: every candidate collided
    """
    if year is None:
        year = utcnow().year
    if max_attempts is None:
        max_attempts = current_app.config.get("IDENTIFIER_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS)
    draw = draw or _default_draw

    for _ in range(max_attempts):
        candidate = f"{prefix}{year}{draw()}"
        if not exists(candidate):
            return candidate

    current_app.logger.error("Identifier space exhausted for prefix %s after %s attempts", prefix, max_attempts)
    raise DuplicateIdentifierError(prefix, max_attempts)


def sale_number_exists(number: str) -> bool:
    return db.session.query(Sale.id).filter(Sale.sale_number == number).first() is not None


def payment_number_exists(number: str) -> bool:
    return db.session.query(Payment.id).filter(Payment.payment_number == number).first() is not None


def next_sale_number(**kwargs) -> str:
    return generate_number(prefix=SALE_PREFIX, exists=sale_number_exists, **kwargs)


def next_payment_number(**kwargs) -> str:
    return generate_number(prefix=PAYMENT_PREFIX, exists=payment_number_exists, **kwargs)
