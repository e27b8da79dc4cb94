"""E2E tests for the outreach engine.

These tests drive the engine through discovery, outreach and health checks
against a real SQLite lead store, with every external provider mocked.
"""
