"""
Feature ingestion sources.

Submodules:
  http_provider  — external daily feature provider (HTTP JSON, retries)
  stub           — deterministic synthetic rows for offline runs

Credential placement (.env, gitignored):
  DATA_PROVIDER_BASE_URL  — provider root URL
  DATA_PROVIDER_API_KEY   — sent as ``x-api-key`` (optional)
"""
