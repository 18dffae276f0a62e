"""Core (UI-agnostic) invoice analytics logic.

This package contains:
- settings and request options (pydantic-settings, frozen dataclasses)
- data access (Supabase PostgREST -> records)
- the efficiency engine (scores, error rankings, correlations)
- page compute functions (JSON-serializable payloads)
- chart helpers (Altair -> Vega-Lite spec dict)
"""
