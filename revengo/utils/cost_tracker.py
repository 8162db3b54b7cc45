"""
Usage and cost accounting for insight capability calls.

Pricing comes from the ``capabilities`` table of model_config.json
(``cost_per_1k_input_tokens`` / ``cost_per_1k_output_tokens``); models
without pricing (local Ollama models) are recorded at zero cost.
"""

import json
import threading
from collections import defaultdict
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from revengo.utils.config import get_config


@dataclass
class UsageRecord:
    """One capability call."""
    timestamp: str
    model: str
    provider: str
    input_tokens: int
    output_tokens: int
    cost: float
    duration_seconds: float
    success: bool
    error_message: Optional[str] = None


@dataclass(frozen=True)
class ModelPricing:
    provider: str
    input_per_1k: float = 0.0
    output_per_1k: float = 0.0

    def price(self, input_tokens: int, output_tokens: int) -> float:
        return (input_tokens / 1000) * self.input_per_1k + (output_tokens / 1000) * self.output_per_1k


class CostTracker:
    """Accumulates capability usage for the life of the process.

    Capabilities are invoked from the orchestrator's worker threads, so the
    record list is only touched under ``_lock``.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.pricing = self._pricing_table(config or get_config())
        self.calls: List[UsageRecord] = []
        self.session_start = datetime.now()
        self._lock = threading.Lock()

    @staticmethod
    def _pricing_table(config: Dict[str, Any]) -> Dict[str, ModelPricing]:
        table = {}
        for entry in config.get('capabilities', {}).values():
            model = entry.get('model')
            if not model:
                continue
            table[model] = ModelPricing(
                provider=entry.get('provider', 'unknown'),
                input_per_1k=entry.get('cost_per_1k_input_tokens', 0),
                output_per_1k=entry.get('cost_per_1k_output_tokens', 0),
            )
        return table

    def calculate_cost(self, model: str, input_tokens: int, output_tokens: int) -> float:
        """Cost in USD of a call; 0.0 for unpriced models."""
        pricing = self.pricing.get(model)
        return pricing.price(input_tokens, output_tokens) if pricing else 0.0

    def record_call(
        self,
        model: str,
        input_tokens: int,
        output_tokens: int,
        duration_seconds: float,
        success: bool = True,
        error_message: Optional[str] = None
    ) -> float:
        """
        Record a capability call.

        Returns:
            Cost of the call in USD
        """
        pricing = self.pricing.get(model)
        cost = self.calculate_cost(model, input_tokens, output_tokens)
        record = UsageRecord(
            timestamp=datetime.now().isoformat(),
            model=model,
            provider=pricing.provider if pricing else 'unknown',
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost=cost,
            duration_seconds=duration_seconds,
            success=success,
            error_message=error_message,
        )
        with self._lock:
            self.calls.append(record)
        return cost

    def _snapshot(self) -> List[UsageRecord]:
        with self._lock:
            return list(self.calls)

    def get_total_cost(self) -> float:
        return sum(record.cost for record in self._snapshot())

    def _cost_by(self, key: str) -> Dict[str, float]:
        totals: Dict[str, float] = defaultdict(float)
        for record in self._snapshot():
            totals[getattr(record, key)] += record.cost
        return dict(totals)

    def get_cost_by_model(self) -> Dict[str, float]:
        return self._cost_by('model')

    def get_cost_by_provider(self) -> Dict[str, float]:
        return self._cost_by('provider')

    def get_token_usage(self) -> Dict[str, int]:
        records = self._snapshot()
        tokens_in = sum(r.input_tokens for r in records)
        tokens_out = sum(r.output_tokens for r in records)
        return {
            'total_input_tokens': tokens_in,
            'total_output_tokens': tokens_out,
            'total_tokens': tokens_in + tokens_out,
        }

    def get_call_statistics(self) -> Dict[str, Any]:
        records = self._snapshot()
        count = len(records)
        succeeded = sum(1 for r in records if r.success)
        if not count:
            return {'total_calls': 0, 'successful_calls': 0, 'failed_calls': 0,
                    'success_rate': 0, 'average_duration': 0, 'avg_cost_per_call': 0}
        return {
            'total_calls': count,
            'successful_calls': succeeded,
            'failed_calls': count - succeeded,
            'success_rate': succeeded / count,
            'average_duration': sum(r.duration_seconds for r in records) / count,
            'avg_cost_per_call': sum(r.cost for r in records) / count,
        }

    def summary(self) -> Dict[str, Any]:
        """Compact totals for the health endpoint and the shutdown log."""
        stats = self.get_call_statistics()
        return {
            'calls': stats['total_calls'],
            'failed_calls': stats['failed_calls'],
            'total_tokens': self.get_token_usage()['total_tokens'],
            'total_cost_usd': round(self.get_total_cost(), 6),
        }

    def export_report(self) -> str:
        """Full session report as JSON."""
        return json.dumps({
            'session_start': self.session_start.isoformat(),
            'total_cost_usd': self.get_total_cost(),
            'cost_by_model': self.get_cost_by_model(),
            'cost_by_provider': self.get_cost_by_provider(),
            'token_usage': self.get_token_usage(),
            'call_statistics': self.get_call_statistics(),
            'detailed_calls': [asdict(record) for record in self._snapshot()],
        }, indent=2)

    def reset(self):
        with self._lock:
            self.calls = []
        self.session_start = datetime.now()
