"""
Token usage accounting for direct and batch extractions.

One tracker instance per run. Costs use the per-million-token prices of
the configured model; batch usage is billed at the batch discount.
"""

import json
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

from ..constants import BATCH_COST_DISCOUNT

# Claude 3.7 Sonnet list prices (USD per 1M tokens)
DEFAULT_INPUT_COST_PER_1M = 3.00
DEFAULT_OUTPUT_COST_PER_1M = 15.00


@dataclass
class TokenUsage:
    record_id: str
    input_tokens: int
    output_tokens: int
    mode: str  # "direct" | "batch"
    cost_usd: float
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class TokenTracker:
    """Collects per-record token usage and summarizes it."""

    def __init__(
        self,
        input_cost_per_1m: float = DEFAULT_INPUT_COST_PER_1M,
        output_cost_per_1m: float = DEFAULT_OUTPUT_COST_PER_1M,
    ):
        self.input_cost_per_1m = input_cost_per_1m
        self.output_cost_per_1m = output_cost_per_1m
        self.usage: Dict[str, TokenUsage] = {}
        self._lock = threading.Lock()

    def estimate_cost(self, input_tokens: int, output_tokens: int, batch: bool = False) -> float:
        cost = (input_tokens / 1_000_000) * self.input_cost_per_1m + (
            output_tokens / 1_000_000
        ) * self.output_cost_per_1m
        return cost * BATCH_COST_DISCOUNT if batch else cost

    def record(
        self,
        record_id: str,
        input_tokens: int,
        output_tokens: int,
        batch: bool = False,
        cost_usd: Optional[float] = None,
    ) -> TokenUsage:
        """
        Record usage for one record; a later call for the same id replaces it.

        Args:
            cost_usd: Provider-reported cost; estimated from token counts when None
        """
        if cost_usd is None:
            cost_usd = self.estimate_cost(input_tokens, output_tokens, batch)
        usage = TokenUsage(
            record_id=record_id,
            input_tokens=input_tokens or 0,
            output_tokens=output_tokens or 0,
            mode="batch" if batch else "direct",
            cost_usd=cost_usd,
        )
        with self._lock:
            self.usage[record_id] = usage
        return usage

    def totals(self) -> dict:
        with self._lock:
            entries = list(self.usage.values())
        return {
            "records": len(entries),
            "direct_calls": sum(1 for u in entries if u.mode == "direct"),
            "batch_calls": sum(1 for u in entries if u.mode == "batch"),
            "input_tokens": sum(u.input_tokens for u in entries),
            "output_tokens": sum(u.output_tokens for u in entries),
            "cost_usd": round(sum(u.cost_usd for u in entries), 4),
        }

    def generate_report(self) -> str:
        """Human-readable usage summary."""
        totals = self.totals()
        lines = [
            "TOKEN USAGE REPORT",
            "=" * 40,
            f"Records:        {totals['records']}",
            f"Direct calls:   {totals['direct_calls']}",
            f"Batch calls:    {totals['batch_calls']}",
            f"Input tokens:   {totals['input_tokens']:,}",
            f"Output tokens:  {totals['output_tokens']:,}",
            f"Estimated cost: ${totals['cost_usd']:.4f}",
        ]
        return "\n".join(lines)

    def save(self, path: Path) -> Path:
        """Write totals and per-record usage as JSON."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            records = {rid: {**asdict(u), "total_tokens": u.total_tokens} for rid, u in self.usage.items()}
        with open(path, "w") as f:
            json.dump({"totals": self.totals(), "records": records}, f, indent=2)
        return path
