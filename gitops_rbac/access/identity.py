"""
GITOPS RBAC - Identity and Claim Verification

Identity is the verified claim set handed to the authorization engine.
The claim verifier turns a bearer token into an Identity; the engine never
looks at tokens or keys itself.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Iterable, Optional, Protocol, Sequence

import jwt
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError, PyJWKClientError

from gitops_rbac.core.exceptions import ConfigurationError, VerificationError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """Verified, per-request identity. Not persisted."""

    subject: str
    groups: FrozenSet[str] = field(default_factory=frozenset)
    issuer: str = ""
    expires_at: Optional[datetime] = None
    email: Optional[str] = None

    def __post_init__(self):
        # Naive expiry times are UTC, as in the audit trail.
        if self.expires_at is not None and self.expires_at.tzinfo is None:
            object.__setattr__(self, "expires_at", self.expires_at.replace(tzinfo=timezone.utc))

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return self.expires_at <= now

    @classmethod
    def of(
        cls,
        subject: str,
        groups: Iterable[str] = (),
        issuer: str = "",
        expires_at: Optional[datetime] = None,
        email: Optional[str] = None,
    ) -> "Identity":
        return cls(
            subject=subject,
            groups=frozenset(groups),
            issuer=issuer,
            expires_at=expires_at,
            email=email,
        )


class ClaimVerifier(Protocol):
    """Turns an opaque bearer token into a verified Identity."""

    def verify(self, token: str) -> Identity:
        """Raise VerificationError if the token cannot be trusted."""
        ...


# ============================================================
# JWT / OIDC Verifier
# ============================================================


class JWTClaimVerifier:
    """
    Claim verifier for OIDC ID tokens (JWT).

    The signing key comes from exactly one of: a shared HMAC secret, a PEM
    public key, or a JWKS endpoint published by the identity provider.
    """

    def __init__(
        self,
        issuers: Sequence[str] = (),
        audience: Optional[str] = None,
        secret: Optional[str] = None,
        public_key: Optional[str] = None,
        jwks_url: Optional[str] = None,
        algorithms: Sequence[str] = ("RS256",),
        groups_claim: str = "groups",
        leeway_seconds: int = 0,
    ):
        sources = [s for s in (secret, public_key, jwks_url) if s]
        if len(sources) != 1:
            raise ConfigurationError(
                "Exactly one of secret, public_key or jwks_url must be configured",
                code="OIDC_KEY",
            )

        self.issuers = list(issuers)
        self.audience = audience
        self.algorithms = list(algorithms)
        self.groups_claim = groups_claim
        self.leeway_seconds = leeway_seconds
        self._key = secret or public_key
        self._jwks_client = jwt.PyJWKClient(jwks_url) if jwks_url else None

    @classmethod
    def from_settings(cls, settings) -> "JWTClaimVerifier":
        return cls(
            issuers=settings.OIDC_ISSUERS,
            audience=settings.OIDC_AUDIENCE,
            secret=settings.OIDC_SECRET,
            public_key=settings.OIDC_PUBLIC_KEY,
            jwks_url=settings.OIDC_JWKS_URL,
            algorithms=settings.OIDC_ALGORITHMS,
            groups_claim=settings.OIDC_GROUPS_CLAIM,
            leeway_seconds=settings.OIDC_LEEWAY_SECONDS,
        )

    def _signing_key(self, token: str) -> Any:
        if self._jwks_client is None:
            return self._key
        try:
            return self._jwks_client.get_signing_key_from_jwt(token).key
        except PyJWKClientError as e:
            raise VerificationError(f"Signing key lookup failed: {e}", code="JWKS") from e

    def verify(self, token: str) -> Identity:
        if not token:
            raise VerificationError("Missing bearer token", code="MISSING_TOKEN")

        options = {"require": ["exp", "sub"], "verify_aud": self.audience is not None}
        try:
            claims = jwt.decode(
                token,
                self._signing_key(token),
                algorithms=self.algorithms,
                audience=self.audience,
                issuer=self.issuers or None,
                leeway=self.leeway_seconds,
                options=options,
            )
        except ExpiredSignatureError as e:
            raise VerificationError("Token has expired", code="EXPIRED") from e
        except InvalidTokenError as e:
            raise VerificationError(f"Invalid token: {e}", code="INVALID_TOKEN") from e

        return self._identity_from_claims(claims)

    def _identity_from_claims(self, claims: Dict[str, Any]) -> Identity:
        raw_groups = claims.get(self.groups_claim) or []
        if isinstance(raw_groups, str):
            raw_groups = [raw_groups]
        if not isinstance(raw_groups, list):
            raise VerificationError(
                f"Claim '{self.groups_claim}' must be a list of strings",
                code="INVALID_CLAIMS",
            )

        identity = Identity.of(
            subject=str(claims["sub"]),
            groups=(str(g) for g in raw_groups),
            issuer=str(claims.get("iss", "")),
            expires_at=datetime.fromtimestamp(claims["exp"], tz=timezone.utc),
            email=claims.get("email"),
        )
        logger.debug(f"Verified token for {identity.subject} from {identity.issuer or '-'}")
        return identity
