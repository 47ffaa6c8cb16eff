"""Ceremony options and response verification, backed by ``fido2``.

The orchestrator only talks to the ``AttestationVerifier`` protocol; this
module supplies the ``fido2.server.Fido2Server`` implementation. Server
state is never kept between begin and complete: it is rebuilt from the
challenge the ledger stored, with user verification forced to REQUIRED.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Protocol, Sequence, Tuple

import cbor2
from fido2.cose import CoseKey
from fido2.server import Fido2Server
from fido2.utils import websafe_decode, websafe_encode
from fido2.webauthn import (
    Aaguid,
    AttestationConveyancePreference,
    AttestedCredentialData,
    AuthenticationResponse,
    PublicKeyCredentialDescriptor,
    PublicKeyCredentialParameters,
    PublicKeyCredentialRpEntity,
    PublicKeyCredentialType,
    PublicKeyCredentialUserEntity,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from .credentials import CredentialRecord
from .logs import get_logger
from .users import UserRecord

ES256 = -7
RS256 = -257

logger = get_logger(__name__)


@dataclass(frozen=True)
class CeremonyPolicy:
    user_verification: str = UserVerificationRequirement.PREFERRED
    resident_key: Optional[str] = None
    algorithms: Tuple[int, ...] = ()
    timeout_ms: int = 60000


REGISTRATION_POLICY = CeremonyPolicy(
    resident_key=ResidentKeyRequirement.PREFERRED,
    algorithms=(ES256, RS256),
)
AUTHENTICATION_POLICY = CeremonyPolicy()


@dataclass(frozen=True)
class CeremonyOptions:
    options: dict
    challenge: str


@dataclass(frozen=True)
class VerificationResult:
    verified: bool
    credential_id: Optional[str] = None
    public_key: Optional[bytes] = None
    new_counter: Optional[int] = None
    reason: Optional[str] = field(default=None, compare=False)


class AttestationVerifier(Protocol):
    def registration_options(
        self, rp_id: str, user: UserRecord, policy: CeremonyPolicy, exclude: Sequence[str] = ()
    ) -> CeremonyOptions: ...

    def authentication_options(
        self, rp_id: str, allow_credentials: Sequence[str], policy: CeremonyPolicy
    ) -> CeremonyOptions: ...

    def verify_registration(
        self,
        response: Mapping[str, Any],
        expected_challenge: str,
        expected_origin: str,
        expected_rp_id: str,
        require_user_verification: bool = True,
    ) -> VerificationResult: ...

    def verify_authentication(
        self,
        response: Mapping[str, Any],
        expected_challenge: str,
        expected_origin: str,
        expected_rp_id: str,
        credential: CredentialRecord,
        require_user_verification: bool = True,
    ) -> VerificationResult: ...


def make_json_safe(value: Any) -> Any:
    """Recursively turn fido2 option objects into plain JSON data."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return websafe_encode(bytes(value))
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Mapping):
        return {key: make_json_safe(val) for key, val in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [make_json_safe(item) for item in value]
    return value


def encode_public_key(public_key: CoseKey) -> bytes:
    return cbor2.dumps(dict(public_key))


def _descriptor(credential_id: str) -> PublicKeyCredentialDescriptor:
    return PublicKeyCredentialDescriptor(type="public-key", id=websafe_decode(credential_id))


def _attested(credential: CredentialRecord) -> AttestedCredentialData:
    # public_key is COSE (CBOR) bytes -> dict -> CoseKey
    cose_key = CoseKey.parse(cbor2.loads(credential.public_key))
    return AttestedCredentialData.create(
        aaguid=Aaguid.NONE,
        credential_id=websafe_decode(credential.id),
        public_key=cose_key,
    )


def _state(challenge: str, require_user_verification: bool) -> dict:
    uv = UserVerificationRequirement.REQUIRED if require_user_verification else UserVerificationRequirement.PREFERRED
    return {"challenge": challenge, "user_verification": uv}


class Fido2Verifier:
    """AttestationVerifier built on ``fido2.server.Fido2Server``."""

    def __init__(self, rp_name: str):
        self.rp_name = rp_name

    def _server(self, rp_id: str, policy: CeremonyPolicy | None = None, expected_origin: str | None = None) -> Fido2Server:
        rp = PublicKeyCredentialRpEntity(id=rp_id, name=self.rp_name)
        verify_origin = None
        if expected_origin is not None:
            verify_origin = lambda origin: origin == expected_origin  # noqa: E731
        server = Fido2Server(rp, attestation=AttestationConveyancePreference.NONE, verify_origin=verify_origin)
        if policy is not None:
            server.timeout = policy.timeout_ms
            if policy.algorithms:
                server.allowed_algorithms = [
                    PublicKeyCredentialParameters(type=PublicKeyCredentialType.PUBLIC_KEY, alg=alg)
                    for alg in policy.algorithms
                ]
        return server

    def registration_options(self, rp_id, user, policy=REGISTRATION_POLICY, exclude=()):
        server = self._server(rp_id, policy)
        user_entity = PublicKeyCredentialUserEntity(
            id=user.id.encode(), name=user.username, display_name=user.username
        )
        options, state = server.register_begin(
            user=user_entity,
            credentials=[_descriptor(c) for c in exclude],  # becomes excludeCredentials
            resident_key_requirement=ResidentKeyRequirement(policy.resident_key) if policy.resident_key else None,
            user_verification=UserVerificationRequirement(policy.user_verification),
            authenticator_attachment=None,  # allow both platform/cross-platform
        )
        return CeremonyOptions(options=make_json_safe(options), challenge=state["challenge"])

    def authentication_options(self, rp_id, allow_credentials, policy=AUTHENTICATION_POLICY):
        server = self._server(rp_id, policy)
        options, state = server.authenticate_begin(
            credentials=[_descriptor(c) for c in allow_credentials],
            user_verification=UserVerificationRequirement(policy.user_verification),
        )
        return CeremonyOptions(options=make_json_safe(options), challenge=state["challenge"])

    def verify_registration(self, response, expected_challenge, expected_origin, expected_rp_id,
                            require_user_verification=True):
        server = self._server(expected_rp_id, expected_origin=expected_origin)
        try:
            auth_data = server.register_complete(_state(expected_challenge, require_user_verification), response)
        except (ValueError, KeyError, TypeError) as exc:
            logger.info("registration response rejected: %s", exc)
            return VerificationResult(False, reason=str(exc))

        cred = auth_data.credential_data
        if cred is None:
            return VerificationResult(False, reason="no attested credential data")
        return VerificationResult(
            True,
            credential_id=websafe_encode(cred.credential_id),
            public_key=encode_public_key(cred.public_key),
            new_counter=auth_data.counter,
        )

    def verify_authentication(self, response, expected_challenge, expected_origin, expected_rp_id,
                              credential, require_user_verification=True):
        server = self._server(expected_rp_id, expected_origin=expected_origin)
        try:
            parsed = AuthenticationResponse.from_dict(response)
            server.authenticate_complete(
                _state(expected_challenge, require_user_verification), [_attested(credential)], parsed
            )
        except (ValueError, KeyError, TypeError) as exc:
            logger.info("authentication response rejected: %s", exc)
            return VerificationResult(False, reason=str(exc))

        return VerificationResult(
            True,
            credential_id=credential.id,
            new_counter=parsed.response.authenticator_data.counter,
        )
