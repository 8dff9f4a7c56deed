"""Conversation orchestration: fact ledger, reducer, phases, snapshot and the turn handler."""
