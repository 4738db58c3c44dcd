from __future__ import annotations

import math


PricingTable = dict[str, dict[str, tuple[float, float]]]

# USD per 1M input / output tokens when a model is missing from the pricing table.
DEFAULT_PRICE_PER_MILLION: tuple[float, float] = (3.0, 15.0)


def estimate_tokens(text: str) -> int:
  """Approximate token count at roughly four characters per token."""
  return math.ceil(len(text) / 4) if text else 0


def price_for(model: str, pricing_table: PricingTable | None = None, provider: str | None = None) -> tuple[float, float]:
  """Return (input, output) USD per 1M tokens for a model."""
  pricing = pricing_table or {}
  provider_rates = pricing.get(str(provider or "").strip().lower(), {})
  return provider_rates.get(model.strip(), DEFAULT_PRICE_PER_MILLION)


def estimate_call_cost(prompt_tokens: int, completion_tokens: int, *, model: str, pricing_table: PricingTable | None = None, provider: str | None = None) -> float:
  price_in, price_out = price_for(model, pricing_table, provider)
  call_cost = (int(prompt_tokens) / 1_000_000) * price_in
  call_cost += (int(completion_tokens) / 1_000_000) * price_out
  return round(call_cost, 6)


