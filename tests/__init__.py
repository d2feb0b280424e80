"""
Test Suite for the Reposignal Bot

This package contains all tests for the bot components:
- command grammar, context validation and action dispatch
- cleanup queue, scheduler and worker pool
- backend / GitHub clients, activity log, installation sync
- webhook event table and the FastAPI receiver
"""
