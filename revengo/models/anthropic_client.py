"""
Anthropic-backed insight capability with retry logic and cost tracking.
"""

import os
import time
from typing import Optional

import anthropic
from anthropic import Anthropic, APIError, APITimeoutError, RateLimitError

from revengo.core.errors import CapabilityError
from revengo.models.base import InsightCapability, register_capability
from revengo.utils.config import get_analysis_option
from revengo.utils.cost_tracker import CostTracker
from revengo.utils.logger import RevEnGoLogger, get_logger

logger = get_logger(__name__)


@register_capability("anthropic")
class AnthropicCapability(InsightCapability):
    """Claude models through the Anthropic SDK (client is thread-safe)."""

    thread_safe = True

    def __init__(
        self,
        name: str = "anthropic",
        model: str = "claude-3-5-sonnet-20241022",
        temperature: float = 0.2,
        max_tokens: int = 2048,
        system: Optional[str] = None,
        api_key: Optional[str] = None,
        cost_tracker: Optional[CostTracker] = None,
        timeout: Optional[float] = None,
        max_retries: int = 3,
    ):
        """
        Initialize Anthropic capability.

        Args:
            name: Capability name as configured
            model: Model name
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate
            system: Optional system prompt
            api_key: Anthropic API key (defaults to ANTHROPIC_API_KEY env var)
            cost_tracker: CostTracker instance for logging costs
            timeout: Per-request timeout in seconds (defaults to the task timeout)
            max_retries: Maximum retry attempts
        """
        super().__init__(name)
        self.api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if not self.api_key:
            raise ValueError("Anthropic API key not provided")

        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.system = system
        self.max_retries = max_retries
        self.cost_tracker = cost_tracker
        self.timeout = float(timeout or get_analysis_option("task_timeout_seconds", 120))

        # SDK retries are disabled; generate() owns the retry loop
        self.client = Anthropic(api_key=self.api_key, timeout=self.timeout, max_retries=0)

        logger.info(f"Anthropic capability initialized | Model: {model}")

    def generate(self, prompt: str) -> str:
        """
        Send one prompt to Claude with retry logic.

        Returns:
            Concatenated text blocks of the reply

        Raises:
            CapabilityError: every attempt failed
        """
        start_time = time.time()
        last_error = None

        for attempt in range(self.max_retries):
            try:
                logger.debug(f"Anthropic API call attempt {attempt + 1}/{self.max_retries} | Model: {self.model}")

                response = self.client.messages.create(
                    model=self.model,
                    messages=[{"role": "user", "content": prompt}],
                    system=self.system if self.system else anthropic.NOT_GIVEN,
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                )

                duration = time.time() - start_time
                input_tokens = response.usage.input_tokens
                output_tokens = response.usage.output_tokens

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
                    f"Anthropic call successful | Model: {self.model} | "
                    f"Tokens: {input_tokens}+{output_tokens} | Duration: {duration:.2f}s"
                )

                content_text = ""
                for block in response.content or []:
                    if hasattr(block, "text"):
                        content_text += block.text
                return content_text

            except RateLimitError as e:
                last_error = e
                wait_time = (2 ** attempt) * 2  # Exponential backoff: 2, 4, 8 seconds
                logger.warning(f"Rate limit hit. Waiting {wait_time}s before retry {attempt + 1}/{self.max_retries}")
                time.sleep(wait_time)

            except APITimeoutError as e:
                last_error = e
                logger.warning(f"API timeout on attempt {attempt + 1}/{self.max_retries}")
                time.sleep(2 ** attempt)

            except APIError as e:
                last_error = e
                logger.error(f"Anthropic API error: {str(e)}")
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

        raise CapabilityError(f"Anthropic API call failed after {self.max_retries} retries: {str(last_error)}")
