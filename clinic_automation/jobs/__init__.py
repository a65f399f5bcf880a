"""Job-type registry and job handlers for the scheduler."""
