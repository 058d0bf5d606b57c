"""Scheduled short-form video republishing engine."""
