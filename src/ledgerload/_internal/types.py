"""Shared type aliases for ledgerload."""

from __future__ import annotations

from collections.abc import Mapping, Sequence

# HTTP headers dictionary.
Headers = dict[str, str]

# Metric sample tags.
Tags = Mapping[str, str]

# k6-style threshold declaration: metric name -> expressions.
ThresholdSpec = Mapping[str, Sequence[str]]
