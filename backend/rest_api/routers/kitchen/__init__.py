"""
Kitchen routers - /api/kitchen/*
Kitchen display feed and fulfilment steps.
"""

from .orders import router

__all__ = ["router"]
