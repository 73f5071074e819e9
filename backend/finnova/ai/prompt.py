"""Prompt constants and helpers for the FinNova advisor."""

from __future__ import annotations

import json
from typing import Any

from finnova.summary import FinancialSummary

ACKNOWLEDGMENT = "Understood. I am ready to act as your financial expert using the provided data."

CONNECTION_ERROR_TEXT = "Connection error. Please try again."

STOCK_ANALYSIS_ERROR_TEXT = (
    "### Analysis Error\n"
    "I could not retrieve data for this ticker. Please check the symbol and try again."
)


def _money(value: float) -> str:
    return f"${value:.2f}"


def build_seed_instruction(summary: FinancialSummary) -> str:
    """System instruction embedding the caller's balance, income and expenses."""
    return (
        "You are FinNova, a financial expert.\n"
        "USER DATA:\n"
        f"- Balance: {_money(summary.balance)}\n"
        f"- Income: {_money(summary.total_income)}\n"
        f"- Expenses: {_money(summary.total_expenses)}\n"
        "\n"
        "Act as a professional advisor. Keep answers concise."
    )


def build_welcome_message(summary: FinancialSummary) -> str:
    return (
        "Hello. I have loaded your financial profile "
        f"(Net Balance: {_money(summary.balance)}). I am ready to advise you."
    )


def build_expense_analysis_prompt(expenses: list[dict[str, Any]]) -> str:
    payload = json.dumps(expenses, separators=(",", ":"), default=str)
    return f"Analyze these expenses and give 3 bullet points on spending habits: {payload}"


def build_stock_analysis_prompt(symbol: str) -> str:
    return (
        f"Analyze the stock {symbol} for risk and sentiment. Format as markdown. "
        "End with a single line 'Risk Level: Low', 'Risk Level: Medium' or 'Risk Level: High'."
    )
