"""
EdgeFinder - edge discovery for sports-betting markets.

Ingests odds from independent providers, normalizes them, detects
arbitrage / value / steam opportunities, enforces risk limits and hands
approved opportunities to an execution or alerting path.

Architecture:
- feeds/: provider clients, quote normalizers, resilient fetcher
- engine/: event registry, odds aggregator, strategy engine, dispatcher
- strategies/: pluggable opportunity evaluators
- risk/: exposure ledger, stake sizing, risk manager
- modes/: execution boundary (shadow, alert, live)
- storage/: append-only journal
"""

__version__ = "0.1.0"
