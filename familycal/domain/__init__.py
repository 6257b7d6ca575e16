"""Sync domain: calendar store, sync orchestration, scheduling and service facade."""
