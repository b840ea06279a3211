from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True)
class Student:
    id: str
    kind: str = "student"

    @property
    def ref(self) -> str:
        return f"{self.kind}:{self.id}"


@dataclass(frozen=True)
class Teacher:
    id: str
    kind: str = "teacher"

    @property
    def ref(self) -> str:
        return f"{self.kind}:{self.id}"


@dataclass(frozen=True)
class Admin:
    id: str
    kind: str = "admin"

    @property
    def ref(self) -> str:
        return f"{self.kind}:{self.id}"


# Resolved once at the boundary and passed around as a value
PayerIdentity = Union[Student, Teacher, Admin]

_KINDS = {"student": Student, "teacher": Teacher, "admin": Admin}


def payer_from_ref(kind: str, payer_id: str) -> PayerIdentity:
    """Rebuild an identity from its stored kind and id."""
    try:
        identity_cls = _KINDS[kind.lower()]
    except KeyError:
        raise ValueError(f"Unknown payer kind: {kind}") from None
    return identity_cls(id=str(payer_id))


@dataclass(frozen=True)
class Payer:
    """Payer identity plus the contact data the gateway asks for when issuing a QR."""
    identity: PayerIdentity
    full_name: str
    document_id: str
    phone: Optional[str] = None
    email: Optional[str] = None
