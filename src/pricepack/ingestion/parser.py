"""Turn the located CSV payload into PriceRecord objects.

Two failure tiers:

- Semantic row defects (too few fields, unparseable id, price or date) skip
  the row and are only logged.
- Syntax errors raised by the csv reader itself, and undecodable bytes,
  abort the whole parse with ``MalformedCSVError``.
"""

from __future__ import annotations

import csv
import io
import logging
import re
from collections.abc import Iterator
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import IO

from pydantic import ValidationError

from pricepack.core.exceptions import MalformedCSVError
from pricepack.core.models import PriceRecord

logger = logging.getLogger(__name__)

DATE_FORMAT = "%Y-%m-%d"
MIN_FIELDS = 5

# Largest DECIMAL(10, 2) value; higher prices are skipped.
MAX_PRICE = Decimal("99999999.99")

# strptime alone accepts unpadded fields such as 2024-1-5.
_DATE_SHAPE = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")

# Column positions
ID_COL, NAME_COL, CATEGORY_COL, PRICE_COL, DATE_COL = range(MIN_FIELDS)


def iter_records(stream: IO[bytes], encoding: str = "utf-8-sig") -> Iterator[PriceRecord]:
    """Lazily parse a binary CSV stream into validated records.

    The first row is a header and is skipped without inspection. The
    returned iterator can only be consumed once.
    """
    text = io.TextIOWrapper(stream, encoding=encoding, newline="")
    reader = csv.reader(text, strict=True)
    accepted = 0
    skipped = 0

    try:
        for index, row in enumerate(reader):
            if index == 0:
                continue
            record = parse_row(row)
            if record is None:
                skipped += 1
                logger.debug("Skipping invalid row at line %d: %r", reader.line_num, row)
                continue
            accepted += 1
            yield record
    except csv.Error as e:
        raise MalformedCSVError(
            f"Malformed CSV at line {reader.line_num}: {e}",
            context={"line": reader.line_num, "reason": str(e)},
        ) from e
    except UnicodeDecodeError as e:
        raise MalformedCSVError(
            f"CSV payload is not valid {encoding}: {e.reason}",
            context={"line": reader.line_num, "reason": str(e)},
        ) from e
    finally:
        # The payload belongs to the locator; don't let the wrapper close it.
        text.detach()

    logger.info("Parsed CSV payload: %d accepted, %d skipped", accepted, skipped)


def parse_records(stream: IO[bytes]) -> list[PriceRecord]:
    """Eagerly parse a binary CSV stream. See ``iter_records``."""
    return list(iter_records(stream))


def parse_row(row: list[str]) -> PriceRecord | None:
    """Validate one data row; return None if it should be skipped."""
    if len(row) < MIN_FIELDS:
        return None

    try:
        source_id = int(row[ID_COL].strip())
    except ValueError:
        return None

    price = _parse_price(row[PRICE_COL])
    if price is None:
        return None

    created = _parse_date(row[DATE_COL])
    if created is None:
        return None

    try:
        return PriceRecord(
            source_id=source_id,
            name=row[NAME_COL].strip(),
            category=row[CATEGORY_COL].strip(),
            price=price,
            create_date=created,
        )
    except ValidationError:
        return None


def _parse_price(raw: str) -> Decimal | None:
    try:
        value = Decimal(raw.strip())
    except InvalidOperation:
        return None
    if not value.is_finite() or value < 0 or value > MAX_PRICE:
        return None
    return value


def _parse_date(raw: str) -> date | None:
    raw = raw.strip()
    if not _DATE_SHAPE.fullmatch(raw):
        return None
    try:
        return datetime.strptime(raw, DATE_FORMAT).date()
    except ValueError:
        return None
