"""Authorization collaborators.

The circulation core does not resolve identities or permissions itself. It
asks an ``Authorizer`` whether an actor may perform a privileged action and
refuses the action when the answer is no.
"""

from enum import Enum
from typing import Iterable, Protocol, Union


class Action(str, Enum):
    """Privileged actions guarded by the authorizer."""

    CREATE_ITEM = "create_item"
    MODIFY_ITEM = "modify_item"


class Authorizer(Protocol):
    """Capability check consulted before privileged operations."""

    def can_perform(self, actor_id: str, action: Union[Action, str]) -> bool:
        ...


class AllowAllAuthorizer:
    """Authorizer that grants every action. Suitable for single-user setups."""

    def can_perform(self, actor_id: str, action: Union[Action, str]) -> bool:
        return True


class StaticRoleAuthorizer:
    """Grants privileged actions to a fixed set of librarian ids."""

    def __init__(self, librarians: Iterable[str]):
        self.librarians = frozenset(librarians)

    def can_perform(self, actor_id: str, action: Union[Action, str]) -> bool:
        Action(action)  # reject unknown actions
        return actor_id in self.librarians


def default_authorizer() -> Authorizer:
    """Build the authorizer described by configuration.

    With no librarians configured every actor is trusted.
    """
    from .config import get_config

    config = get_config()
    if config.has_librarians():
        return StaticRoleAuthorizer(config.librarians)
    return AllowAllAuthorizer()
