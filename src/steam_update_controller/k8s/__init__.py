"""Minimal async Kubernetes API client used for workload restarts."""
