"""Request bodies accepted at the HTTP boundary.

Finish payloads form a tagged union on ``kind`` so a registration
attestation can never be fed into the login ceremony (or the reverse).
"""

from typing import Annotated, Any, Dict, Literal, Optional, Union

from fido2.utils import websafe_decode, websafe_encode
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from .users import USERNAME_MAX_LENGTH


class UsernameIn(BaseModel):
    username: str = Field(min_length=1, max_length=USERNAME_MAX_LENGTH, pattern=r"^[A-Za-z0-9_]+$")


class _CeremonyPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    correlation_id: str = Field(alias="correlationId", min_length=1, max_length=64)
    credential: Dict[str, Any]

    @field_validator("credential")
    @classmethod
    def check_credential_shape(cls, value: Dict[str, Any]) -> Dict[str, Any]:
        if not isinstance(value.get("id"), str) or not value["id"]:
            raise ValueError("credential.id is required")
        if value.get("type", "public-key") != "public-key":
            raise ValueError("credential.type must be public-key")
        if not isinstance(value.get("response"), dict):
            raise ValueError("credential.response is required")
        return value

    @property
    def credential_id(self) -> str:
        """Canonical (unpadded base64url) form of the asserted credential id."""
        raw = self.credential.get("rawId") or self.credential["id"]
        try:
            return websafe_encode(websafe_decode(raw))
        except ValueError:
            return raw


class RegistrationAttestation(_CeremonyPayload):
    kind: Literal["registration"] = "registration"

    @field_validator("credential")
    @classmethod
    def check_attestation(cls, value: Dict[str, Any]) -> Dict[str, Any]:
        response = value.get("response") or {}
        if "attestationObject" not in response or "clientDataJSON" not in response:
            raise ValueError("attestation response is incomplete")
        return value


class AuthenticationAssertion(_CeremonyPayload):
    kind: Literal["authentication"] = "authentication"

    @field_validator("credential")
    @classmethod
    def check_assertion(cls, value: Dict[str, Any]) -> Dict[str, Any]:
        response = value.get("response") or {}
        for name in ("authenticatorData", "clientDataJSON", "signature"):
            if name not in response:
                raise ValueError(f"assertion response is missing {name}")
        return value


CeremonyPayload = Annotated[
    Union[RegistrationAttestation, AuthenticationAssertion],
    Field(discriminator="kind"),
]

_payload_adapter = TypeAdapter(CeremonyPayload)


def parse_ceremony_payload(
    data: Any, default_kind: Optional[str] = None
) -> Union[RegistrationAttestation, AuthenticationAssertion]:
    """Validate a finish body against the union; a missing ``kind`` takes ``default_kind``."""
    if default_kind is not None and isinstance(data, dict) and "kind" not in data:
        data = {**data, "kind": default_kind}
    return _payload_adapter.validate_python(data)
