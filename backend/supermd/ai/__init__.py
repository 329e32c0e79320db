"""AI integrations (summarization model providers)."""
