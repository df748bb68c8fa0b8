"""Ops surface of the CRM service: health routes, background job routes and Celery tasks."""
