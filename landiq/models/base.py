from typing import Protocol

from ..schemas import PropertyInput, ValuationResult

class ValuationProvider(Protocol):
    async def produce_valuation(self, prop: PropertyInput) -> ValuationResult:
        """
        Returns a normalized ValuationResult for the property.
        Raises ValuationGenerationError when the upstream call fails.
        """
        ...
