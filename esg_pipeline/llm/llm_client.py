"""
Claude completion client using LiteLLM.

The client makes exactly one upstream request per call. Retries belong to
BackoffInvoker, so LiteLLM's own retries are disabled.

Usage:
    from esg_pipeline.llm.llm_client import LLMClient

    client = LLMClient(model="claude-3-7-sonnet-20250219", api_key=key)
    response = await client.create_completion(user_prompt, system_prompt=system)
"""

import hashlib
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import litellm
from litellm import acompletion, completion_cost

from ..constants import DEFAULT_MAX_TOKENS, DEFAULT_MODEL, DEFAULT_REQUEST_TIMEOUT_SECONDS, DEFAULT_TEMPERATURE

# Suppress verbose LiteLLM logging
litellm.suppress_debug_info = True

logging.getLogger("LiteLLM").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)


# =============================================================================
# MODEL REGISTRY - Costs and LiteLLM mapping
# =============================================================================

MODEL_CLAUDE_37_SONNET = "claude-3-7-sonnet-20250219"
MODEL_CLAUDE_35_SONNET = "claude-3-5-sonnet-20241022"
MODEL_CLAUDE_35_HAIKU = "claude-3-5-haiku-20241022"

MODEL_REGISTRY: Dict[str, Dict[str, Any]] = {
    MODEL_CLAUDE_37_SONNET: {
        "litellm_name": f"anthropic/{MODEL_CLAUDE_37_SONNET}",
        "cost_per_1m_input": 3.00,
        "cost_per_1m_output": 15.00,
        "context_window": 200_000,
    },
    MODEL_CLAUDE_35_SONNET: {
        "litellm_name": f"anthropic/{MODEL_CLAUDE_35_SONNET}",
        "cost_per_1m_input": 3.00,
        "cost_per_1m_output": 15.00,
        "context_window": 200_000,
    },
    MODEL_CLAUDE_35_HAIKU: {
        "litellm_name": f"anthropic/{MODEL_CLAUDE_35_HAIKU}",
        "cost_per_1m_input": 0.80,
        "cost_per_1m_output": 4.00,
        "context_window": 200_000,
    },
}


def get_model_config(model: str) -> Dict[str, Any]:
    """Registry entry for a model; unregistered Claude models get Sonnet pricing."""
    if model in MODEL_REGISTRY:
        return MODEL_REGISTRY[model]
    return {
        "litellm_name": model if "/" in model else f"anthropic/{model}",
        "cost_per_1m_input": 3.00,
        "cost_per_1m_output": 15.00,
        "context_window": 200_000,
    }


@dataclass
class LLMResponse:
    """Response from one completion call with usage and tracking metadata."""

    text: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0
    finish_reason: Optional[str] = None
    prompt_hash: str = ""  # SHA256 prefix of the prompt sent
    timestamp: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)


class LLMClient:
    """Async Claude client with usage and cost tracking."""

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        api_key: Optional[str] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        logger=None,
    ):
        """
        Initialize LLM client.

        Args:
            model: Claude model id
            api_key: Anthropic API key (falls back to ANTHROPIC_API_KEY)
            timeout: Per-request timeout in seconds
            logger: Optional logger instance
        """
        self.model_name = model
        self.model_config = get_model_config(model)
        self.api_key = api_key
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)

        if api_key and not os.environ.get("ANTHROPIC_API_KEY"):
            os.environ["ANTHROPIC_API_KEY"] = api_key

    def _compute_prompt_hash(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        """Compute SHA256 hash of the full prompt for tracking."""
        full_prompt = f"{system_prompt or ''}|||{prompt}"
        return hashlib.sha256(full_prompt.encode()).hexdigest()[:16]

    async def create_completion(
        self,
        user_prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = DEFAULT_TEMPERATURE,
    ) -> LLMResponse:
        """
        Send one completion request.

        Raises:
            Whatever LiteLLM raises for transport/API errors (classified by
            utils.errors.classify_error), or RuntimeError on an empty response
        """
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_prompt})

        kwargs = {
            "model": self.model_config["litellm_name"],
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "timeout": self.timeout,
            "num_retries": 0,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key

        response = await acompletion(**kwargs)

        if not response.choices:
            raise RuntimeError(
                f"LLM API returned empty choices array. "
                f"Model: {self.model_name}, Response: {getattr(response, 'id', 'unknown')}"
            )

        text = response.choices[0].message.content or ""

        usage = getattr(response, "usage", None)
        if usage:
            input_tokens = getattr(usage, "prompt_tokens", 0) or 0
            output_tokens = getattr(usage, "completion_tokens", 0) or 0
        else:
            input_tokens = 0
            output_tokens = 0

        try:
            cost = completion_cost(completion_response=response)
        except Exception:
            cost = (input_tokens / 1_000_000) * self.model_config["cost_per_1m_input"] + (
                output_tokens / 1_000_000
            ) * self.model_config["cost_per_1m_output"]

        llm_response = LLMResponse(
            text=text,
            model=self.model_name,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=cost,
            finish_reason=response.choices[0].finish_reason,
            prompt_hash=self._compute_prompt_hash(user_prompt, system_prompt),
            timestamp=datetime.now(timezone.utc).isoformat(),
            metadata={"raw_response_id": getattr(response, "id", None)},
        )

        self.logger.debug(
            f"LLM call: {self.model_name} | "
            f"Tokens: {llm_response.input_tokens}->{llm_response.output_tokens} | "
            f"Cost: ${llm_response.cost_usd:.6f}"
        )
        if llm_response.finish_reason == "length":
            self.logger.warning(f"Response truncated at max_tokens={max_tokens}; recovery may need repair")

        return llm_response
