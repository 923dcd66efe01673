"""
LLM provider client — prompts, vendor backends, contract validation and repair.

Submodules:
  base       — ``LlmProvider`` / ``CompletionBackend`` protocols
  client     — ``RecommendationClient`` (one repair pass)
  contract   — JSON extraction and response validation
  prompts    — request and repair prompt rendering
  factory    — ``LlmConfig`` → provider
  backends/  — openai, anthropic, stub

Credential placement (.env, gitignored):
  OPENAI_API_KEY, ANTHROPIC_API_KEY
"""
