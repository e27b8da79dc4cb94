"""Integration tests for the outreach engine.

These tests verify the integration between components:
- Discovery provider results to LeadStore persistence
- LeadStore batches to the outreach send pipeline
"""
