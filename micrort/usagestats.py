"""Summaries of the published usage metrics."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

import requests

DEFAULT_URL = "https://micro.mu/usage?date=2019"


def format_count(key: str, value: int) -> Optional[str]:
    """A "micro key: count" line with a b/m/k suffix; None for a zero count."""
    if value == 0:
        return None
    unit = ""
    if value > 1e9:
        count, unit = value / 1e9, "b"
    elif value > 1e6:
        count, unit = value / 1e6, "m"
    elif value > 1e4:
        count, unit = value / 1e3, "k"
    else:
        count = float(value)
    return f"micro {key}:\t{count:.2f}{unit}"


@dataclass
class UsageSummary:
    """Request totals, daily highs and monthly totals per service."""

    totals: dict[str, int] = field(default_factory=dict)
    highest: dict[str, int] = field(default_factory=dict)
    monthly: dict[str, int] = field(default_factory=dict)

    def render(self) -> str:
        """The report as printed: totals, highest, then monthly in key order."""
        lines = ["Total requests:"]
        lines += [line for k, v in self.totals.items() if (line := format_count(k, v))]
        lines.append("\nHighest requests:")
        lines += [line for k, v in self.highest.items() if (line := format_count(k, v))]
        lines.append("\nMonthly requests:")
        lines += [
            line for k in sorted(self.monthly) if (line := format_count(k, self.monthly[k]))
        ]
        return "\n".join(lines) + "\n"


def _requests(entry: Any) -> int:
    if not isinstance(entry, Mapping):
        return 0
    counts = entry.get("count") or {}
    return int(counts.get("requests") or 0)


def summarize(results: Mapping[str, Any], key_filter: str = "") -> UsageSummary:
    """Fold "YYYYMMDD-micro.service" entries into per-service figures."""
    summary = UsageSummary()
    for name, entry in results.items():
        parts = name.split(".")
        if len(parts) < 2:
            continue
        key = parts[-1]
        if key_filter and key != key_filter:
            continue
        count = _requests(entry)
        summary.totals[key] = summary.totals.get(key, 0) + count
        if count > summary.highest.get(key, 0):
            summary.highest[key] = count
        month_key = f"{key} ({parts[0][:6]})"
        summary.monthly[month_key] = summary.monthly.get(month_key, 0) + count
    return summary


def fetch_usage(url: str = DEFAULT_URL) -> dict[str, Any]:
    """Download the usage metrics as a mapping of day-service key to counts."""
    rsp = requests.get(url, timeout=30)
    data = rsp.json()
    if not isinstance(data, dict):
        raise ValueError("unexpected usage response")
    return data