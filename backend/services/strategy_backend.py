"""
Strategy Backend Interface.
Abstract interface for the REST backend the wizard commits against.

Implementations:
- HttpStrategyBackend (integrations/http_backend.py): real REST backend
- PaperStrategyBackend (services/paper_backend.py): in-memory stand-in
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from api.models import (
    Ack,
    AddIndicatorRequest,
    ApiKey,
    Indicator,
    Sharing,
    StrategyInstancePayload,
    StrategyTemplate,
    StrategyUpdatePayload,
    Symbol,
)


class BackendError(Exception):
    """Raised when a backend call fails."""

    def __init__(self, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"Backend error {status_code}: {detail}" if status_code else detail)


class AuthenticationError(BackendError):
    """Raised when the backend rejects the session (HTTP 401)."""

    def __init__(self, detail: str = "Session expired or invalid"):
        super().__init__(401, detail)


class StrategyBackendInterface(ABC):
    """
    Abstract strategy backend.

    Every wizard side effect goes through this interface. All calls are
    coroutines so callers can cancel them; none of them blocks the event loop.
    """

    @abstractmethod
    async def search_symbols(self, api_key_id: str, query: str) -> List[Symbol]:
        """
        Search tradable symbols on the exchange behind an API key.

        Args:
            api_key_id: API key whose exchange is searched
            query: Search text (at least two characters)

        Returns:
            Matching symbols
        """
        pass

    @abstractmethod
    async def create_strategy_instance(self, payload: StrategyInstancePayload) -> str:
        """
        Create a strategy instance.

        Returns:
            Id of the new instance
        """
        pass

    @abstractmethod
    async def update_strategy_instance(self, payload: StrategyUpdatePayload) -> str:
        """
        Update the parameters of an existing instance.

        Returns:
            Id of the updated instance
        """
        pass

    @abstractmethod
    async def add_indicator(self, request: AddIndicatorRequest) -> Ack:
        """
        Attach an indicator to an instance.

        Adding an indicator key already attached to the instance must be
        acknowledged without creating a duplicate.
        """
        pass

    @abstractmethod
    async def remove_indicator(self, indicator_id: str) -> Ack:
        """
        Detach an indicator.

        Removing an id that no longer exists must be acknowledged.
        """
        pass

    @abstractmethod
    async def list_strategy_templates(self) -> List[StrategyTemplate]:
        """Saved per-side strategy parameter sets."""
        pass

    @abstractmethod
    async def list_sharings(self) -> List[Sharing]:
        """Sharing records of the user's instances."""
        pass

    @abstractmethod
    async def list_api_keys(self) -> List[ApiKey]:
        """Exchange API keys registered by the user."""
        pass

    @abstractmethod
    async def get_strategy_parameters(self, strategy_id: str) -> Optional[StrategyTemplate]:
        """Parameters of one side strategy, or None when unknown."""
        pass

    @abstractmethod
    async def get_indicators_by_instance(self, instance_id: str) -> List[Indicator]:
        """Indicators currently attached to an instance."""
        pass

    async def close(self) -> None:
        """
        Optional: release transport resources.
        Default implementation does nothing.
        """
        return None
