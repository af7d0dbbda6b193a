"""Collaborators: market data, broker, execution and state."""
from .client import AlpacaClient
from .data import DataFetcher
from .executor import ExecutionResult, OrderExecutor
from .state import StateManager

__all__ = [
    'AlpacaClient',
    'DataFetcher',
    'ExecutionResult',
    'OrderExecutor',
    'StateManager'
]
