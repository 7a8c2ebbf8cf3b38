"""
Configuration for a clearinghouse deployment.

The facility's pricing and funding constants are fixed once deployed. They
are held in a frozen dataclass and can be loaded from YAML:

    interest_rate: "0.005"          # annual, as a decimal fraction
    loan_to_collateral: "2892.92"   # debt units lent per collateral unit
    duration: 121d
    fund_cadence: 7d
    fund_amount: "18000000"
    max_reward: "0.1"
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional, Union

import yaml
from marshmallow import Schema, ValidationError, fields
from marshmallow.decorators import post_load

from .core import WAD, DAY, to_wad

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("clearinghouse.yaml")

# Admin roles
ROLE_OVERSEER = "cooler_overseer"
ROLE_EMERGENCY = "emergency_shutdown"

# Keeper reward: 5% of seized collateral, vesting linearly over 7 days
KEEPER_REWARD_PERCENT = 5 * 10 ** 16
AUCTION_RAMP = 7 * DAY

# Major version of every collaborator module this facility was written against
SUPPORTED_MODULE_MAJOR = 1


# ================================================================================================
# Config classes
# ================================================================================================


@dataclass(frozen=True)
class ClearinghouseConfig:
    """
    Immutable facility constants.

    Attributes:
        interest_rate: Annual interest rate, WAD-scaled (5e15 = 0.5%)
        loan_to_collateral: Debt lent per whole collateral unit, WAD-scaled
        duration: Loan term in seconds
        fund_cadence: Minimum seconds between rebalances
        fund_amount: Funding ceiling in debt-asset smallest units
        max_reward: Absolute keeper reward cap per loan in collateral units
    """

    interest_rate: int
    loan_to_collateral: int
    duration: int
    fund_cadence: int
    fund_amount: int
    max_reward: int

    def __post_init__(self):
        for name in (
            "interest_rate",
            "loan_to_collateral",
            "duration",
            "fund_cadence",
            "fund_amount",
            "max_reward",
        ):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{name} must be an int, got {type(value).__name__}")
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")

    @property
    def duration_delta(self) -> timedelta:
        return timedelta(seconds=self.duration)

    @property
    def fund_cadence_delta(self) -> timedelta:
        return timedelta(seconds=self.fund_cadence)


DEFAULT_CONFIG = ClearinghouseConfig(
    interest_rate=5 * 10 ** 15,
    loan_to_collateral=289292 * 10 ** 16,
    duration=121 * DAY,
    fund_cadence=7 * DAY,
    fund_amount=18_000_000 * WAD,
    max_reward=10 ** 17,
)


# ================================================================================================
# Schemas
# ================================================================================================


class WadField(fields.Field):
    """A positive decimal quantity written as a string, stored WAD-scaled."""

    def _serialize(self, value: int, attr, obj, **kwargs):
        return str(Decimal(value) / Decimal(WAD))

    def _deserialize(self, value, attr, data, **kwargs):
        try:
            amount = to_wad(value)
        except (InvalidOperation, ValueError) as error:
            raise ValidationError(f"Unable to parse '{value}' as a decimal") from error
        if amount <= 0:
            raise ValidationError(f"Value must be positive: {value}")
        return amount


_DURATION_UNITS = {"d": DAY, "h": 60 * 60, "m": 60, "s": 1}


def duration_from_str(duration_str: str) -> int:
    """
    Args:
        duration_str: Seconds ("3600") or a count with a unit suffix ("121d", "12h")

    Returns:
        The duration in seconds

    Raises:
        ValueError: If the input string cannot be parsed
    """
    text = duration_str.strip().lower()
    if not text:
        raise ValueError("Empty duration")
    unit = _DURATION_UNITS.get(text[-1])
    if unit is None:
        return int(text)
    return int(text[:-1].strip()) * unit


class DurationField(fields.Field):
    def _serialize(self, value: int, attr, obj, **kwargs):
        if value % DAY == 0:
            return f"{value // DAY}d"
        return str(value)

    def _deserialize(self, value, attr, data, **kwargs):
        if isinstance(value, bool):
            raise ValidationError("Duration cannot be a boolean")
        try:
            seconds = value if isinstance(value, int) else duration_from_str(str(value))
        except ValueError as error:
            raise ValidationError(f"Unable to parse '{value}' as a duration") from error
        if seconds <= 0:
            raise ValidationError(f"Duration must be positive: {value}")
        return seconds


class AmountField(WadField):
    """
    Whole-unit amounts that are commonly written as plain integers in YAML.

    Always scaled to 18 decimals; the facility refuses tokens with any other
    precision.
    """

    def _deserialize(self, value, attr, data, **kwargs):
        return super()._deserialize(str(value), attr, data, **kwargs)


class ClearinghouseConfigSchema(Schema):
    interest_rate = WadField(required=True)
    loan_to_collateral = WadField(required=True)
    duration = DurationField(required=True)
    fund_cadence = DurationField(required=True)
    fund_amount = AmountField(required=True)
    max_reward = AmountField(required=True)

    @post_load
    def make(self, data, **kwargs):
        return ClearinghouseConfig(**data)


# ================================================================================================
# Helpers
# ================================================================================================
# Default yaml Loader for this package
Loader = yaml.SafeLoader


def load_config_from_string(text: str) -> ClearinghouseConfig:
    raw_config = yaml.load(text, Loader=Loader)
    return ClearinghouseConfigSchema().load(raw_config)


def load_config(path: Optional[Union[str, Path]] = None) -> ClearinghouseConfig:
    if path is None:
        path = DEFAULT_CONFIG_PATH
    path = Path(path)
    logger.info(f"Loading config from {path}")
    with path.open() as f:
        raw_config = yaml.load(f, Loader=Loader)
    return ClearinghouseConfigSchema().load(raw_config)


def dump_config(config: ClearinghouseConfig) -> str:
    """Render a config back to YAML in the same format load_config() reads."""
    return yaml.safe_dump(ClearinghouseConfigSchema().dump(config), sort_keys=False)
