import hashlib
import os
import secrets
import time

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SESSION_SECRET", "test-session-secret")
os.environ.setdefault("RP_ID", "passgate.test")
os.environ.setdefault("ORIGIN", "https://passgate.test")
os.environ.setdefault("ADMISSION_ENABLED", "false")

import cbor2
import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from fido2.cose import ES256
from fido2.utils import websafe_decode, websafe_encode
from fido2.webauthn import (
    Aaguid,
    AttestedCredentialData,
    AuthenticatorData,
    CollectedClientData,
)
from sqlalchemy.orm import sessionmaker

from passgate import models  # noqa: F401  registers tables
from passgate.ceremonies import CeremonyOrchestrator
from passgate.challenges import ChallengeLedger
from passgate.credentials import CredentialVault
from passgate.db import Base, make_engine
from passgate.sessions import SessionIssuer
from passgate.users import UserDirectory
from passgate.webauthn import CeremonyOptions, VerificationResult

RP_ID = "passgate.test"
ORIGIN = "https://passgate.test"
SECRET = "test-session-secret"


class Clock:
    """Injectable epoch-seconds clock anchored at the real time."""

    def __init__(self):
        self.now = int(time.time())

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


class FakeVerifier:
    """Scripted AttestationVerifier; records what the orchestrator asked for."""

    def __init__(self):
        self.calls = []
        self.registration_result = None
        self.authentication_result = None
        self.next_counter = 1

    def registration_options(self, rp_id, user, policy, exclude=()):
        challenge = websafe_encode(secrets.token_bytes(32))
        self.calls.append(("registration_options", rp_id, user, policy, tuple(exclude)))
        options = {"publicKey": {"challenge": challenge, "rp": {"id": rp_id}, "user": {"name": user.username}}}
        return CeremonyOptions(options=options, challenge=challenge)

    def authentication_options(self, rp_id, allow_credentials, policy):
        challenge = websafe_encode(secrets.token_bytes(32))
        self.calls.append(("authentication_options", rp_id, tuple(allow_credentials), policy))
        options = {
            "publicKey": {
                "challenge": challenge,
                "allowCredentials": [{"type": "public-key", "id": c} for c in allow_credentials],
            }
        }
        return CeremonyOptions(options=options, challenge=challenge)

    def verify_registration(self, response, expected_challenge, expected_origin, expected_rp_id,
                            require_user_verification=True):
        self.calls.append(("verify_registration", expected_challenge, expected_origin, expected_rp_id,
                           require_user_verification))
        if self.registration_result is not None:
            return self.registration_result
        return VerificationResult(True, credential_id=response["id"], public_key=b"cose-key", new_counter=0)

    def verify_authentication(self, response, expected_challenge, expected_origin, expected_rp_id,
                              credential, require_user_verification=True):
        self.calls.append(("verify_authentication", expected_challenge, expected_origin, expected_rp_id,
                           credential, require_user_verification))
        if self.authentication_result is not None:
            return self.authentication_result
        return VerificationResult(True, credential_id=credential.id, new_counter=self.next_counter)


class SoftAuthenticator:
    """Minimal software authenticator producing real WebAuthn responses (ES256, "none" attestation)."""

    def __init__(self, rp_id=RP_ID, origin=ORIGIN):
        self.rp_id = rp_id
        self.origin = origin
        self.key = ec.generate_private_key(ec.SECP256R1())
        self.cose_key = ES256.from_cryptography_key(self.key.public_key())
        self.credential_id = secrets.token_bytes(16)
        self.counter = 0

    @property
    def credential_id_b64(self) -> str:
        return websafe_encode(self.credential_id)

    def _auth_data(self, flags, credential_data=b"") -> bytes:
        rp_id_hash = hashlib.sha256(self.rp_id.encode()).digest()
        return bytes(AuthenticatorData.create(rp_id_hash, flags, self.counter, credential_data))

    def attest(self, challenge: str, origin=None, user_verified=True) -> dict:
        flags = AuthenticatorData.FLAG.UP | AuthenticatorData.FLAG.AT
        if user_verified:
            flags |= AuthenticatorData.FLAG.UV
        client_data = CollectedClientData.create(
            CollectedClientData.TYPE.CREATE, websafe_decode(challenge), origin or self.origin
        )
        cred_data = AttestedCredentialData.create(Aaguid.NONE, self.credential_id, self.cose_key)
        auth_data = self._auth_data(flags, bytes(cred_data))
        attestation_object = cbor2.dumps({"fmt": "none", "attStmt": {}, "authData": auth_data})
        return {
            "id": self.credential_id_b64,
            "rawId": self.credential_id_b64,
            "type": "public-key",
            "response": {
                "clientDataJSON": websafe_encode(bytes(client_data)),
                "attestationObject": websafe_encode(attestation_object),
            },
            "clientExtensionResults": {},
        }

    def assertion(self, challenge: str, origin=None, user_verified=True, counter_step=1) -> dict:
        self.counter += counter_step
        flags = AuthenticatorData.FLAG.UP
        if user_verified:
            flags |= AuthenticatorData.FLAG.UV
        client_data = CollectedClientData.create(
            CollectedClientData.TYPE.GET, websafe_decode(challenge), origin or self.origin
        )
        auth_data = self._auth_data(flags)
        signature = self.key.sign(auth_data + client_data.hash, ec.ECDSA(hashes.SHA256()))
        return {
            "id": self.credential_id_b64,
            "rawId": self.credential_id_b64,
            "type": "public-key",
            "response": {
                "clientDataJSON": websafe_encode(bytes(client_data)),
                "authenticatorData": websafe_encode(auth_data),
                "signature": websafe_encode(signature),
            },
            "clientExtensionResults": {},
        }


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def session_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'passgate.db'}")
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def ledger(session_factory, clock):
    return ChallengeLedger(session_factory, now=clock)


@pytest.fixture
def vault(session_factory):
    return CredentialVault(session_factory)


@pytest.fixture
def users(session_factory):
    return UserDirectory(session_factory)


@pytest.fixture
def issuer(session_factory, clock):
    return SessionIssuer(SECRET, session_factory, now=clock)


@pytest.fixture
def verifier():
    return FakeVerifier()


@pytest.fixture
def orchestrator(users, ledger, vault, issuer, verifier):
    return CeremonyOrchestrator(
        users=users,
        challenges=ledger,
        credentials=vault,
        sessions=issuer,
        verifier=verifier,
        rp_id=RP_ID,
        origin=ORIGIN,
    )


@pytest.fixture
def authenticator():
    return SoftAuthenticator()


def registration_payload(correlation_id, credential_id="Y3JlZC0x"):
    return {
        "correlationId": correlation_id,
        "credential": {
            "id": credential_id,
            "rawId": credential_id,
            "type": "public-key",
            "response": {"clientDataJSON": "e30", "attestationObject": "oA"},
        },
    }


def assertion_payload(correlation_id, credential_id="Y3JlZC0x"):
    return {
        "correlationId": correlation_id,
        "credential": {
            "id": credential_id,
            "rawId": credential_id,
            "type": "public-key",
            "response": {"clientDataJSON": "e30", "authenticatorData": "AA", "signature": "AA"},
        },
    }
