from urllib.parse import parse_qs

import httpx
import pytest

from gearmarket.core.exceptions import ChallengeFailedError, ChallengeRequiredError
from gearmarket.services.challenge import ChallengeGate, ChallengeVerifier, TurnstileVerifier

VALID_PROOF = "valid-proof"


class StubVerifier(ChallengeVerifier):
    def __init__(self):
        self.calls = []

    def verify(self, proof, remote_ip=None):
        self.calls.append((proof, remote_ip))
        return proof == VALID_PROOF


def test_gate_demands_proof_only_at_threshold():
    gate = ChallengeGate(StubVerifier(), threshold=3)
    assert [gate.requires_challenge(count) for count in [1, 2, 3, 4, 5]] == [False, False, True, False, False]


def test_gate_enforce():
    verifier = StubVerifier()
    gate = ChallengeGate(verifier, threshold=3)

    gate.enforce(2, None)
    gate.enforce(4, None)
    assert verifier.calls == []

    with pytest.raises(ChallengeRequiredError):
        gate.enforce(3, None)
    with pytest.raises(ChallengeFailedError):
        gate.enforce(3, "bogus", "10.0.0.1")
    gate.enforce(3, VALID_PROOF, "10.0.0.1")
    assert verifier.calls == [("bogus", "10.0.0.1"), (VALID_PROOF, "10.0.0.1")]


def _turnstile(handler, secret="secret"):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return TurnstileVerifier(secret, "https://turnstile.test/siteverify", client=client)


def test_turnstile_accepts_successful_verification():
    seen = {}

    def handler(request):
        seen.update(parse_qs(request.content.decode()))
        return httpx.Response(200, json={"success": True})

    assert _turnstile(handler).verify("proof-1", "10.0.0.1") is True
    assert seen == {"secret": ["secret"], "response": ["proof-1"], "remoteip": ["10.0.0.1"]}


def test_turnstile_rejects_failed_or_broken_verification():
    def failed(request):
        return httpx.Response(200, json={"success": False, "error-codes": ["invalid-input-response"]})

    def broken(request):
        return httpx.Response(503, text="unavailable")

    assert _turnstile(failed).verify("proof-1") is False
    assert _turnstile(broken).verify("proof-1") is False


def test_turnstile_short_circuits_without_proof_or_secret():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"success": True})

    assert _turnstile(handler).verify("") is False
    assert _turnstile(handler, secret="").verify("proof-1") is False
    assert calls == []
