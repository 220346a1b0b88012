from __future__ import annotations
import os
import re
from datetime import timedelta
from decimal import Decimal
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, model_validator

_DURATION_RE = re.compile(r"^\s*(\d+)\s*(ms|s|m|h|d)?\s*$")
_UNITS = {
    "ms": timedelta(milliseconds=1),
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
}


def parse_duration(value: str) -> timedelta:
    """Parse short durations such as "15m", "1h" or "90s". A bare number is milliseconds."""
    match = _DURATION_RE.match(value)
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")
    amount, unit = match.groups()
    return int(amount) * _UNITS[unit or "ms"]


class EngineSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    tax_percent: Decimal = Decimal("9.5")
    working_hours_start: int = Field(default=10, ge=0, le=23)
    working_hours_end: int = Field(default=22, ge=0, le=23)
    min_booking: timedelta = timedelta(hours=1)
    max_booking: timedelta = timedelta(hours=2)
    booking_buffer: timedelta = timedelta(minutes=15)
    allot_table_directly: bool = False
    overlap_mode: Literal["symmetric", "legacy"] = "symmetric"

    @model_validator(mode="after")
    def _check_ranges(self) -> "EngineSettings":
        if self.working_hours_start >= self.working_hours_end:
            raise ValueError("working hours must start before they end")
        if self.min_booking > self.max_booking:
            raise ValueError("min_booking cannot exceed max_booking")
        if self.tax_percent < 0:
            raise ValueError("tax_percent cannot be negative")
        return self


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def load_settings() -> EngineSettings:
    load_dotenv()
    values = {}
    if os.getenv("RESTAURANT_TAX_PERCENT"):
        values["tax_percent"] = Decimal(os.environ["RESTAURANT_TAX_PERCENT"])
    if os.getenv("RESTAURANT_WORKING_HOURS_START"):
        values["working_hours_start"] = int(os.environ["RESTAURANT_WORKING_HOURS_START"])
    if os.getenv("RESTAURANT_WORKING_HOURS_END"):
        values["working_hours_end"] = int(os.environ["RESTAURANT_WORKING_HOURS_END"])
    if os.getenv("RESTAURANT_MIN_BOOKING"):
        values["min_booking"] = parse_duration(os.environ["RESTAURANT_MIN_BOOKING"])
    if os.getenv("RESTAURANT_MAX_BOOKING"):
        values["max_booking"] = parse_duration(os.environ["RESTAURANT_MAX_BOOKING"])
    if os.getenv("RESTAURANT_BOOKING_BUFFER"):
        values["booking_buffer"] = parse_duration(os.environ["RESTAURANT_BOOKING_BUFFER"])
    if os.getenv("RESTAURANT_OVERLAP_MODE"):
        values["overlap_mode"] = os.environ["RESTAURANT_OVERLAP_MODE"]
    values["allot_table_directly"] = _env_bool("RESTAURANT_ALLOT_TABLE_DIRECTLY", False)
    return EngineSettings(**values)
