"""Integration tests for docsync.

These tests drive a complete DocsEngine with its real thread pool executor
and wall clock, against the in-memory repository or a real git repository
in a temporary directory. They cover whole journeys across components:
pull/push round trips, change request merges, webhook deliveries and the
stuck-sync watchdog.

Tests needing a git executable are skipped when git is not installed.
"""
