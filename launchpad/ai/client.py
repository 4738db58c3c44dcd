"""Budget-gated, cache-aware text generation."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from launchpad.ai.budget import BudgetGuard
from launchpad.ai.cache import ResponseCache
from launchpad.ai.providers.base import AIModel, Provider
from launchpad.ai.utils.cost import PricingTable, estimate_call_cost, estimate_tokens
from launchpad.jobs.errors import BudgetExceededError, PermanentJobError
from launchpad.storage.budgets_repo import UsageRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationResult:
  text: str
  model: str
  prompt_tokens: int
  completion_tokens: int
  estimated_cost: float
  cached: bool
  cache_key: str

  @property
  def total_tokens(self) -> int:
    return self.prompt_tokens + self.completion_tokens


class GenerationClient:
  """
  Wrap one provider call per cache miss.

  Order per request: admission check, cache lookup, provider call, cache store, usage accounting. Admission denial
  raises BudgetExceededError; provider errors propagate so the job retry policy can handle them.
  """

  def __init__(self, provider: Provider | None, cache: ResponseCache, budget: BudgetGuard, *, default_model: str, default_max_tokens: int = 8000, pricing: PricingTable | None = None) -> None:
    self._provider = provider
    self._cache = cache
    self._budget = budget
    self._default_model = default_model
    self._default_max_tokens = default_max_tokens
    self._pricing = pricing or {}
    self._models: dict[str, AIModel] = {}

  def _model(self, name: str) -> AIModel:
    if self._provider is None:
      raise PermanentJobError("No generation provider is configured; set LAUNCHPAD_GENERATION_API_KEY")
    if name not in self._models:
      self._models[name] = self._provider.get_model(name)
    return self._models[name]

  async def generate(
    self,
    prompt: str,
    *,
    operation: str,
    system_prompt: str | None = None,
    model: str | None = None,
    max_tokens: int | None = None,
    temperature: float | None = None,
    client_id: str | None = None,
    user_id: str | None = None,
    use_cache: bool = True,
  ) -> GenerationResult:
    decision = await self._budget.check_admission()
    if not decision.allowed:
      logger.warning("Generation blocked for %s: %s", operation, decision.reason)
      raise BudgetExceededError(decision.reason or "Token budget exceeded", period=decision.period)

    model_name = model or self._default_model
    token_cap = max_tokens or self._default_max_tokens
    cache_key = self._cache.cache_key(prompt, model_name, temperature=temperature, max_tokens=token_cap, system_prompt=system_prompt)

    if use_cache:
      cached = await self._cache.lookup(cache_key)
      if cached is not None:
        saved = estimate_tokens(prompt) + estimate_tokens(cached.response)
        await self._cache.record_saved_tokens(cache_key, saved)
        await self._budget.log_usage(UsageRecord(operation=operation, model=model_name, cache_hit=True, cache_key=cache_key, client_id=client_id, user_id=user_id))
        logger.info("Served %s from cache (saved ~%d tokens)", operation, saved)
        return GenerationResult(text=cached.response, model=cached.model, prompt_tokens=0, completion_tokens=0, estimated_cost=0.0, cached=True, cache_key=cache_key)

    response = await self._model(model_name).generate(prompt, system_prompt=system_prompt, max_tokens=token_cap, temperature=temperature)
    usage = response.usage or {}
    prompt_tokens = int(usage.get("prompt_tokens") or estimate_tokens((system_prompt or "") + prompt))
    completion_tokens = int(usage.get("completion_tokens") or estimate_tokens(response.content))
    cost = estimate_call_cost(prompt_tokens, completion_tokens, model=model_name, pricing_table=self._pricing, provider=self._provider.name if self._provider else None)

    if use_cache:
      await self._cache.store(cache_key, response.content, model=model_name, prompt=prompt)
    await self._budget.log_usage(
      UsageRecord(operation=operation, model=model_name, prompt_tokens=prompt_tokens, completion_tokens=completion_tokens, estimated_cost=cost, cache_hit=False, cache_key=cache_key, client_id=client_id, user_id=user_id)
    )
    logger.info("Generated %s with %s: %d prompt + %d completion tokens ($%.4f)", operation, model_name, prompt_tokens, completion_tokens, cost)
    return GenerationResult(text=response.content, model=model_name, prompt_tokens=prompt_tokens, completion_tokens=completion_tokens, estimated_cost=cost, cached=False, cache_key=cache_key)
