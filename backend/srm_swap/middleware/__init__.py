"""Middleware package for the application."""

from srm_swap.middleware.request_id import RequestIdMiddleware

__all__ = ["RequestIdMiddleware"]
