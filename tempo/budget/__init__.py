"""Remote analysis budget gate."""

from tempo.budget.gate import BudgetGate, BudgetLedger, BudgetReservation

__all__ = ["BudgetGate", "BudgetLedger", "BudgetReservation"]
