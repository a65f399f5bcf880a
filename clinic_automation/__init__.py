"""Appointment lifecycle automation engine."""
