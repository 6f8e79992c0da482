"""Shared helpers: logging, retries, circuit breaker, alerts and local time"""
