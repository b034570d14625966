"""
config.py - Protocol constants for the lending engine.

LendingConfig gathers every tunable number of the protocol in one frozen
dataclass. DEFAULT_CONFIG carries the reference values; programs and compute
functions take a config argument so tests can vary them.
"""

from __future__ import annotations
from dataclasses import dataclass, fields


@dataclass(frozen=True, slots=True)
class LendingConfig:
    """
    Protocol constants.

    Attributes:
        borrow_rate_per_tick: Borrow accrual per tick, scaled by SCALING_FACTOR.
        supply_rate_per_tick: Supply accrual per tick, scaled by SCALING_FACTOR.
        max_accrual_ticks: Upper bound on the ticks accrued by one market accrual.
        max_staleness_ticks: Oracle prices older than this many ticks are unusable.
        max_confidence_divisor: Confidence must not exceed price / divisor.
        confidence_band_divisor: Confidence written on a price update is price / divisor.
        supply_yield_divisor: Each supply grows deposits by deposits / divisor.
        flash_loan_fee_bps: Flash loan fee in basis points.
        liquidation_bonus: Seizure multiplier numerator.
        liquidation_bonus_divisor: Seizure multiplier denominator (per mille).
    """
    borrow_rate_per_tick: int = 25
    supply_rate_per_tick: int = 12
    max_accrual_ticks: int = 216_000
    max_staleness_ticks: int = 100
    max_confidence_divisor: int = 20
    confidence_band_divisor: int = 100
    supply_yield_divisor: int = 100_000
    flash_loan_fee_bps: int = 30
    liquidation_bonus: int = 1100
    liquidation_bonus_divisor: int = 1000

    def validate(self) -> LendingConfig:
        """
        Check every field is a sensible integer.

        Returns:
            self, so it can be chained: ``LendingConfig(...).validate()``

        Raises:
            ValueError: On a non-integer, negative or zero divisor value
        """
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{f.name} must be an int, got {value!r}")
            if value < 0:
                raise ValueError(f"{f.name} cannot be negative, got {value}")
        for name in ("max_confidence_divisor", "confidence_band_divisor",
                     "supply_yield_divisor", "liquidation_bonus_divisor"):
            if getattr(self, name) == 0:
                raise ValueError(f"{name} must be positive")
        if self.liquidation_bonus < self.liquidation_bonus_divisor:
            raise ValueError(
                f"liquidation_bonus {self.liquidation_bonus} would seize less "
                f"collateral than the debt repaid"
            )
        return self


DEFAULT_CONFIG = LendingConfig()
