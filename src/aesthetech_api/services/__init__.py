"""Transactional services behind the HTTP endpoints and scheduled jobs."""
