"""
Room booking lifecycle core.

Subpackages:
- fsm: booking state machine, service tracks, status vocabulary, auto-approval
- services: transition gateway, side effects, legacy fallback, penalties, history
- workers: scheduled jobs (declined auto-cancel, auto-checkout)
"""
