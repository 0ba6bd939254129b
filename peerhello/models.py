from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Union


class RejectReason(str, Enum):
    LOOKUP_FAILED = "lookup_failed"
    HOST_UNIDENTIFIED = "host_unidentified"
    TAGGED_NODE = "tagged_node"
    USER_UNIDENTIFIED = "user_unidentified"

    @property
    def message(self) -> str:
        return _REASON_MESSAGES[self]


_REASON_MESSAGES = {
    RejectReason.LOOKUP_FAILED: "lookup failed",
    RejectReason.HOST_UNIDENTIFIED: "failed to identify remote host",
    RejectReason.TAGGED_NODE: "tagged nodes do not have a user identity",
    RejectReason.USER_UNIDENTIFIED: "failed to identify remote user",
}


@dataclass(frozen=True)
class Identity:
    login_name: str = ""
    display_name: str = ""
    is_tagged: bool = False


@dataclass(frozen=True)
class Accepted:
    identity: Identity
    first_initial: str

    @property
    def accepted(self) -> bool:
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": "accepted",
            "login_name": self.identity.login_name,
            "display_name": self.identity.display_name,
            "first_initial": self.first_initial,
        }


@dataclass(frozen=True)
class Rejected:
    reason: RejectReason

    @property
    def accepted(self) -> bool:
        return False

    @property
    def message(self) -> str:
        return self.reason.message

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": "rejected",
            "reason": self.reason.value,
            "message": self.message,
        }


ResolutionOutcome = Union[Accepted, Rejected]


def first_initial(identity: Identity) -> str:
    """First code point of the display name, falling back to the login name.

    Returns an empty string when both are empty.
    """
    name = identity.display_name or identity.login_name
    return name[0] if name else ""
