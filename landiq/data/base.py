from typing import Any, Dict, List, Optional, Protocol

from .tables import Valuation

# A chat transcript: role-tagged messages in the shape the chat API accepts
Transcript = List[Dict[str, Any]]

# ----- Protocols (interfaces) -----

class ValuationStore(Protocol):
    async def create_valuation(self, values: Dict[str, Any]) -> Valuation: ...
    async def get_valuation(self, valuation_id: int) -> Optional[Valuation]: ...
    async def get_recent_valuations(self, limit: int = 10) -> List[Valuation]: ...
    async def get_valuations_by_location(self, location: str, limit: int = 5) -> List[Valuation]: ...

class SessionStore(Protocol):
    async def get(self, session_id: str) -> Optional[Transcript]: ...
    async def put(self, session_id: str, messages: Transcript) -> None: ...
    async def evict(self, session_id: str) -> None: ...
