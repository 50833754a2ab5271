"""Durable event log and state snapshots."""
