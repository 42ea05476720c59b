"""Scheduled jobs that move bookings on without a human actor."""
