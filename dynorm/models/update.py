"""
Partial update specification.

An update applies exactly one action to a set of attributes. The mapping form
``{"$SET": {...}}`` / ``{"$ADD": {...}}`` / ``{"$DELETE": {...}}`` is accepted through
UpdateSpec.from_mapping().
"""

from enum import Enum
from typing import Any, Dict, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field

from ..exceptions import ConfigurationError


class UpdateAction(str, Enum):
    """DynamoDB UpdateExpression clause."""
    SET = "SET"
    ADD = "ADD"
    DELETE = "DELETE"


class UpdateSpec(BaseModel):
    """One update action and the attributes it applies to."""

    action: UpdateAction = Field(default=UpdateAction.SET)
    attributes: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @classmethod
    def from_mapping(cls, update: Mapping[str, Any]) -> 'UpdateSpec':
        """Build an UpdateSpec from ``{"$SET" | "$ADD" | "$DELETE": {attr: value}}``.

        Raises:
            ConfigurationError: Zero or several verbs, or an unknown key
        """
        verbs = {f"${action.value}": action for action in UpdateAction}
        unknown = [k for k in update if k not in verbs]
        if unknown:
            raise ConfigurationError(f"Unknown update verbs {unknown}, expected one of {list(verbs)}")
        present = [k for k in update if update[k] is not None]
        if len(present) != 1:
            raise ConfigurationError(f"Exactly one update verb is required, got {present}")
        verb = present[0]
        return cls(action=verbs[verb], attributes=dict(update[verb]))

    @classmethod
    def coerce(cls, update: Union['UpdateSpec', Mapping[str, Any]]) -> 'UpdateSpec':
        if isinstance(update, UpdateSpec):
            return update.model_copy(update={'attributes': dict(update.attributes)})
        return cls.from_mapping(update)
