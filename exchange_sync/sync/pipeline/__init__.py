"""Record parsing, transformation, persistence and orchestration."""
