"""
Handler registry and dispatch router.
"""

from .registry import HandlerRegistry
from .router import dispatch, route, priority_chain, handler_args

__all__ = [
    'HandlerRegistry',
    'dispatch',
    'route',
    'priority_chain',
    'handler_args',
]
