"""Narrative summarization and the pipeline aggregator."""
