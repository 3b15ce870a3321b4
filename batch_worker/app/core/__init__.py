"""Shared service-wide values."""
SERVICE_NAME = "batch_worker"
