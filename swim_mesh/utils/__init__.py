"""Cross-cutting utilities: config, logging, LLM factory, resilience."""
