"""
OpenAI-backed insight capabilities with retry logic and cost tracking.

OllamaCapability reuses the same client against Ollama's OpenAI-compatible
endpoint, which is how the local DeepSeek and Gemma models are served.
"""

import os
import time
from typing import Optional

from openai import OpenAI, OpenAIError, RateLimitError, APITimeoutError

from revengo.core.errors import CapabilityError
from revengo.models.base import InsightCapability, register_capability
from revengo.utils.config import get_analysis_option
from revengo.utils.cost_tracker import CostTracker
from revengo.utils.logger import RevEnGoLogger, get_logger

logger = get_logger(__name__)


@register_capability("openai")
class OpenAICapability(InsightCapability):
    """Chat-completion models through the OpenAI SDK (client is thread-safe)."""

    thread_safe = True
    label = "OpenAI"

    def __init__(
        self,
        name: str = "openai",
        model: str = "gpt-4o-mini",
        temperature: float = 0.2,
        max_tokens: int = 2048,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        cost_tracker: Optional[CostTracker] = None,
        timeout: Optional[float] = None,
        max_retries: int = 3,
    ):
        """
        Initialize OpenAI capability.

        Args:
            name: Capability name as configured
            model: Model name
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate
            api_key: OpenAI API key (defaults to OPENAI_API_KEY env var)
            base_url: Alternate OpenAI-compatible endpoint
            cost_tracker: CostTracker instance for logging costs
            timeout: Per-request timeout in seconds (defaults to the task timeout)
            max_retries: Maximum retry attempts
        """
        super().__init__(name)
        self.api_key = self._resolve_api_key(api_key)
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.max_retries = max_retries
        self.cost_tracker = cost_tracker
        self.timeout = float(timeout or get_analysis_option("task_timeout_seconds", 120))

        # SDK retries are disabled; generate() owns the retry loop
        self.client = OpenAI(
            api_key=self.api_key,
            base_url=base_url,
            timeout=self.timeout,
            max_retries=0,
        )

        logger.info(f"{self.label} capability initialized | Model: {model}")

    def _resolve_api_key(self, api_key: Optional[str]) -> str:
        api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise ValueError("OpenAI API key not provided")
        return api_key

    def generate(self, prompt: str) -> str:
        """
        Send one prompt as a chat completion with retry logic.

        Returns:
            Text of the first choice

        Raises:
            CapabilityError: every attempt failed
        """
        start_time = time.time()
        last_error = None

        for attempt in range(self.max_retries):
            try:
                logger.debug(f"{self.label} API call attempt {attempt + 1}/{self.max_retries} | Model: {self.model}")

                response = self.client.chat.completions.create(
                    model=self.model,
                    messages=[{"role": "user", "content": prompt}],
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                )

                duration = time.time() - start_time
                usage = response.usage
                input_tokens = usage.prompt_tokens if usage else 0
                output_tokens = usage.completion_tokens if usage else 0

                cost = 0.0
                if self.cost_tracker:
                    cost = self.cost_tracker.record_call(
                        model=self.model,
                        input_tokens=input_tokens,
                        output_tokens=output_tokens,
                        duration_seconds=duration,
                        success=True
                    )
                RevEnGoLogger.log_model_call(logger, self.model, input_tokens, output_tokens, cost)
                logger.info(
                    f"{self.label} call successful | Model: {self.model} | "
                    f"Tokens: {input_tokens}+{output_tokens} | Duration: {duration:.2f}s"
                )

                return response.choices[0].message.content or ""

            except RateLimitError as e:
                last_error = e
                wait_time = (2 ** attempt) * 2  # Exponential backoff: 2, 4, 8 seconds
                logger.warning(f"Rate limit hit. Waiting {wait_time}s before retry {attempt + 1}/{self.max_retries}")
                time.sleep(wait_time)

            except APITimeoutError as e:
                last_error = e
                logger.warning(f"API timeout on attempt {attempt + 1}/{self.max_retries}")
                time.sleep(2 ** attempt)

            except OpenAIError as e:
                last_error = e
                logger.error(f"{self.label} API error: {str(e)}")
                if attempt < self.max_retries - 1:
                    time.sleep(2 ** attempt)
                else:
                    break

            except Exception as e:
                last_error = e
                logger.error(f"Unexpected error: {str(e)}", exc_info=True)
                break

        duration = time.time() - start_time
        if self.cost_tracker:
            self.cost_tracker.record_call(
                model=self.model,
                input_tokens=0,
                output_tokens=0,
                duration_seconds=duration,
                success=False,
                error_message=str(last_error)
            )

        raise CapabilityError(f"{self.label} API call failed after {self.max_retries} retries: {str(last_error)}")


@register_capability("ollama")
class OllamaCapability(OpenAICapability):
    """Locally served models (DeepSeek, Gemma) via Ollama's /v1 endpoint."""

    label = "Ollama"

    def __init__(self, name: str = "ollama", model: str = "deepseek-r1:8b", base_url: Optional[str] = None, **kwargs):
        base_url = base_url or get_analysis_option("ollama_base_url", "http://localhost:11434/v1")
        super().__init__(name=name, model=model, base_url=base_url, **kwargs)

    def _resolve_api_key(self, api_key: Optional[str]) -> str:
        # Ollama ignores the key but the SDK requires one
        return api_key or os.getenv("OLLAMA_API_KEY") or "ollama"
