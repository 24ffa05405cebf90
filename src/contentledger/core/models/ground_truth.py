"""
GroundTruth model: the external source of record (read-only).
"""

from pydantic import BaseModel, Field

from contentledger.core.exceptions import InvalidArgumentsError


class GroundTruth(BaseModel):
    """
    Key populations and overrides supplied by the external source of record.

    Attributes:
        populations: scope name -> keys requiring processing in that scope
        manual: keys whose content is handled manually (override list)
        deny: keys explicitly excluded from processing
    """

    populations: dict[str, set[str]] = Field(default_factory=dict)
    manual: set[str] = Field(default_factory=set)
    deny: set[str] = Field(default_factory=set)

    def population(self, scope: str) -> set[str]:
        if scope not in self.populations:
            known = ", ".join(sorted(self.populations)) or "none"
            raise InvalidArgumentsError(f"Unknown scope '{scope}' (configured: {known})")
        return self.populations[scope]
