"""Selected customer model (POS mode)."""
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class Customer:
    """Customer an operator is transacting for at the point of sale."""

    id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Customer':
        return cls(
            id=str(data['id']),
            name=data['name'],
            email=data.get('email'),
            phone=data.get('phone'),
        )
