# engine/guardrails.py
#
# Guyton-Klinger style spending guardrails. The adjuster keeps a running
# spending multiplier so that each cut or raise re-bases later years.
#

from typing import NamedTuple, Optional

from config.expense_assumptions import (
    capital_preservation_rules,
    essential_portion,
    guardrail_min_remaining_years,
    prosperity_rules,
)


class GuardrailDecision(NamedTuple):
    spending_target: float
    reason: str                 # "initial", "none", "capital_preservation", "prosperity", "essential_floor"
    adjusted: bool


class GuardrailAdjuster:
    """
    Adjusts the retirement spending target when the current withdrawal rate
    drifts away from the initial safe-withdrawal rate.

    Capital preservation: the discretionary share of spending is cut when the
    current rate exceeds the initial rate by the configured ratios, but only
    while enough of the horizon remains.
    Prosperity: spending is raised when the current rate falls below the
    configured ratios, under the same remaining-horizon condition.
    Spending never drops below the essential share of the unadjusted target.
    """
    def __init__(self, initial_rate: float, essential_share: float = essential_portion,
                 min_remaining_years: int = guardrail_min_remaining_years):
        self.initial_rate = initial_rate
        self.essential_share = essential_share
        self.min_remaining_years = min_remaining_years
        self.multiplier = 1.0
        self.adjustment_count = 0
        self._started = False

    def adjust(self, unadjusted_target: float, portfolio_value: float, remaining_years: int) -> GuardrailDecision:
        if unadjusted_target <= 0:
            return GuardrailDecision(0.0, "none", False)

        if not self._started:
            self._started = True
            return GuardrailDecision(unadjusted_target, "initial", False)

        planned = unadjusted_target * self.multiplier
        if portfolio_value <= 0 or self.initial_rate <= 0:
            return GuardrailDecision(planned, "none", False)

        ratio = (planned / portfolio_value) / self.initial_rate
        previous = self.multiplier
        reason: Optional[str] = None

        if remaining_years > self.min_remaining_years:
            for threshold, cut in capital_preservation_rules:
                if ratio > threshold:
                    self.multiplier *= 1 - cut * (1 - self.essential_share)
                    reason = "capital_preservation"
                    break

            if reason is None:
                for threshold, raise_pct in prosperity_rules:
                    if ratio < threshold:
                        self.multiplier *= 1 + raise_pct
                        reason = "prosperity"
                        break

        if self.multiplier < self.essential_share:
            self.multiplier = self.essential_share
            reason = "essential_floor"

        if reason is None or self.multiplier == previous:
            return GuardrailDecision(planned, "none", False)

        self.adjustment_count += 1
        return GuardrailDecision(unadjusted_target * self.multiplier, reason, True)
