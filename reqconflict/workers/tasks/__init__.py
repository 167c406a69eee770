"""Celery tasks module.

Celery autodiscovery loads tasks from this package.
"""
