"""Queue-delivery signature checks: key rotation, tampering, claim validation."""

import pytest
from jose import jwt

from solvegraph.errors import AuthenticationError
from solvegraph.signature import ALGORITHM, SignatureVerifier, body_digest, sign_body

from conftest import CURRENT_KEY, NEXT_KEY

URL = "https://app.example.com/api/queue/graph-writer"
BODY = b'{"userId":"u1","problem":{"url":"https://leetcode.com/problems/two-sum","name":"Two Sum","domain":"Array","approachName":"Hash Map"}}'


@pytest.fixture
def verifier():
    return SignatureVerifier(CURRENT_KEY, NEXT_KEY)


def _flip_char(token: str, index: int = 5) -> str:
    header, payload, sig = token.split(".")
    replacement = "A" if sig[index] != "A" else "B"
    return ".".join([header, payload, sig[:index] + replacement + sig[index + 1:]])


class TestVerify:
    def test_current_key_accepted(self, verifier, now):
        assert verifier.verify(BODY, sign_body(CURRENT_KEY, BODY, URL, now), URL)

    def test_next_key_accepted(self, verifier, now):
        """Messages signed after a key rollover still verify."""
        assert verifier.verify(BODY, sign_body(NEXT_KEY, BODY, URL, now), URL)

    def test_unknown_key_rejected(self, verifier, now):
        assert not verifier.verify(BODY, sign_body("some-other-key", BODY, URL, now), URL)

    def test_tampered_signature_rejected(self, verifier, now):
        token = sign_body(CURRENT_KEY, BODY, URL, now)
        assert not verifier.verify(BODY, _flip_char(token), URL)

    def test_tampered_body_rejected(self, verifier, now):
        token = sign_body(CURRENT_KEY, BODY, URL, now)
        assert not verifier.verify(BODY.replace(b"Two Sum", b"Two Sun"), token, URL)

    def test_missing_signature_rejected(self, verifier):
        assert not verifier.verify(BODY, None, URL)
        assert not verifier.verify(BODY, "", URL)

    def test_garbage_signature_rejected(self, verifier):
        assert not verifier.verify(BODY, "not-a-jwt", URL)

    def test_expired_token_rejected(self, verifier, now):
        token = sign_body(CURRENT_KEY, BODY, URL, now - 1000, ttl=300)
        assert not verifier.verify(BODY, token, URL)

    def test_wrong_subject_rejected(self, verifier, now):
        token = sign_body(CURRENT_KEY, BODY, "https://elsewhere.example.com/hook", now)
        assert not verifier.verify(BODY, token, URL)

    def test_subject_not_checked_without_url(self, verifier, now):
        token = sign_body(CURRENT_KEY, BODY, "https://elsewhere.example.com/hook", now)
        assert verifier.verify(BODY, token)

    def test_wrong_issuer_rejected(self, verifier, now):
        claims = {"iss": "Someone", "sub": URL, "nbf": now, "exp": now + 300, "body": body_digest(BODY)}
        token = jwt.encode(claims, CURRENT_KEY, algorithm=ALGORITHM)
        assert not verifier.verify(BODY, token, URL)

    def test_padded_body_claim_accepted(self, verifier, now):
        claims = {"iss": "Upstash", "sub": URL, "nbf": now, "exp": now + 300, "body": body_digest(BODY) + "="}
        token = jwt.encode(claims, CURRENT_KEY, algorithm=ALGORITHM)
        assert verifier.verify(BODY, token, URL)

    def test_no_keys_rejects_everything(self, now):
        verifier = SignatureVerifier(None, None)
        assert not verifier.verify(BODY, sign_body(CURRENT_KEY, BODY, URL, now), URL)


class TestRequire:
    def test_raises_authentication_error(self, verifier):
        with pytest.raises(AuthenticationError) as exc:
            verifier.require(BODY, "bad", URL)
        assert exc.value.status_code == 401
        assert exc.value.public_message == "Invalid signature"

    def test_passes_silently_when_valid(self, verifier, now):
        verifier.require(BODY, sign_body(CURRENT_KEY, BODY, URL, now), URL)
