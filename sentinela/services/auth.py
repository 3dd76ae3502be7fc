# SPDX-License-Identifier: Apache-2.0

"""
Authentication service for JWT token management and password hashing.

Access tokens are RS256-signed and carry the user's role and permissions;
refresh tokens only identify the user. Passwords are hashed with bcrypt.
"""

import os
import uuid
import jwt
import bcrypt
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, Tuple
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from opentelemetry import trace
import logging

from ..models.entities import User
from ..domain.authorization import build_user_permissions

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)


class AuthenticationError(Exception):
    """Raised when authentication fails."""
    pass


class TokenValidationError(Exception):
    """Raised when token validation fails."""
    pass


def generate_dev_key_pair() -> Tuple[str, str]:
    """Generate an RSA key pair (PEM) for development use."""
    private_key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=2048
    )

    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    ).decode('utf-8')

    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    ).decode('utf-8')

    return private_pem, public_pem


class AuthService:
    """
    JWT authentication service with RS256 signing and bcrypt password hashing.
    """

    def __init__(self, private_key: Optional[str] = None, public_key: Optional[str] = None):
        """
        Initialize the authentication service.

        Keys come from the arguments, then JWT_PRIVATE_KEY / JWT_PUBLIC_KEY.
        When neither is set a single development key pair is generated.

        Args:
            private_key: RS256 private key for token signing (PEM format)
            public_key: RS256 public key for token verification (PEM format)
        """
        private_key = private_key or os.getenv("JWT_PRIVATE_KEY")
        public_key = public_key or os.getenv("JWT_PUBLIC_KEY")

        if not private_key or not public_key:
            logger.warning("JWT key pair not configured, generating development key pair")
            private_key, public_key = generate_dev_key_pair()

        # Keys set through the environment may carry escaped newlines
        self.private_key = private_key.replace("\\n", "\n")
        self.public_key = public_key.replace("\\n", "\n")
        self.algorithm = "RS256"
        self.access_token_expire_minutes = 15
        self.refresh_token_expire_days = 7

    def hash_password(self, password: str) -> str:
        """Hash a password using bcrypt with salt."""
        with tracer.start_as_current_span("auth.hash_password"):
            salt = bcrypt.gensalt(rounds=12)
            return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')

    def verify_password(self, password: str, hashed_password: str) -> bool:
        """
        Verify a password against its hash.

        Returns:
            True if password matches, False otherwise (including malformed hashes)
        """
        with tracer.start_as_current_span("auth.verify_password") as span:
            try:
                result = bcrypt.checkpw(
                    password.encode('utf-8'),
                    hashed_password.encode('utf-8')
                )
            except ValueError as e:
                span.set_attribute("auth.verification_result", "error")
                logger.error(f"Password verification error: {str(e)}")
                return False

            span.set_attribute("auth.verification_result", "success" if result else "failed")
            return result

    def _access_payload(self, user: User, now: datetime, expires: datetime) -> Dict[str, Any]:
        return {
            "sub": user.id,
            "org_id": user.organization_id,
            "email": user.email,
            "name": user.name,
            "role": user.role,
            "permissions": build_user_permissions(user),
            "iat": now,
            "exp": expires,
            "jti": uuid.uuid4().hex,
            "type": "access"
        }

    def generate_tokens(self, user: User) -> Dict[str, Any]:
        """
        Generate access and refresh tokens for a user.

        Args:
            user: Active user to generate tokens for

        Returns:
            Dictionary containing access_token, refresh_token, and metadata
        """
        with tracer.start_as_current_span("auth.generate_tokens") as span:
            span.set_attributes({
                "user.id": user.id,
                "organization.id": user.organization_id,
                "user.role": user.role
            })

            now = datetime.now(timezone.utc)
            access_exp = now + timedelta(minutes=self.access_token_expire_minutes)
            refresh_exp = now + timedelta(days=self.refresh_token_expire_days)

            refresh_payload = {
                "sub": user.id,
                "org_id": user.organization_id,
                "iat": now,
                "exp": refresh_exp,
                "jti": uuid.uuid4().hex,
                "type": "refresh"
            }

            try:
                access_token = jwt.encode(
                    self._access_payload(user, now, access_exp),
                    self.private_key,
                    algorithm=self.algorithm
                )
                refresh_token = jwt.encode(
                    refresh_payload,
                    self.private_key,
                    algorithm=self.algorithm
                )
            except (ValueError, TypeError, jwt.PyJWTError) as e:
                logger.error(f"Token generation failed: {str(e)}")
                raise AuthenticationError(f"Failed to generate tokens: {str(e)}")

            logger.info(
                "JWT tokens generated",
                extra={
                    "user_id": user.id,
                    "organization_id": user.organization_id,
                    "access_expires_at": access_exp.isoformat()
                }
            )

            return {
                "access_token": access_token,
                "refresh_token": refresh_token,
                "token_type": "Bearer",
                "expires_in": self.access_token_expire_minutes * 60,
                "access_expires_at": access_exp.isoformat(),
                "refresh_expires_at": refresh_exp.isoformat()
            }

    def validate_token(self, token: str, token_type: str = "access") -> Dict[str, Any]:
        """
        Validate and decode a JWT token.

        Args:
            token: JWT token string to validate
            token_type: Expected token type ("access" or "refresh")

        Returns:
            Decoded token payload

        Raises:
            TokenValidationError: If token is invalid or expired
        """
        with tracer.start_as_current_span("auth.validate_token") as span:
            span.set_attribute("auth.token_type", token_type)

            try:
                payload = jwt.decode(
                    token,
                    self.public_key,
                    algorithms=[self.algorithm],
                    options={"verify_exp": True}
                )
            except jwt.ExpiredSignatureError:
                span.set_attribute("auth.validation_result", "expired")
                logger.warning("Token validation failed: token expired")
                raise TokenValidationError("Token has expired")
            except jwt.InvalidTokenError as e:
                span.set_attribute("auth.validation_result", "invalid")
                logger.warning(f"Token validation failed: {str(e)}")
                raise TokenValidationError(f"Invalid token: {str(e)}")

            if payload.get("type") != token_type:
                span.set_attribute("auth.validation_result", "wrong_type")
                raise TokenValidationError(f"Invalid token type. Expected {token_type}")

            span.set_attributes({
                "auth.validation_result": "success",
                "user.id": payload.get("sub"),
                "organization.id": payload.get("org_id")
            })
            return payload

    def refresh_access_token(self, refresh_token: str, user: User) -> Dict[str, Any]:
        """
        Issue a new access token from a valid refresh token.

        The user is reloaded by the caller so role changes and deactivation
        take effect on refresh.

        Args:
            refresh_token: Valid refresh token
            user: Current state of the token's subject

        Returns:
            New access token and metadata

        Raises:
            TokenValidationError: If the refresh token is invalid or belongs to another user
            AuthenticationError: If the user can no longer log in
        """
        with tracer.start_as_current_span("auth.refresh_access_token") as span:
            refresh_payload = self.validate_token(refresh_token, "refresh")

            if refresh_payload.get("sub") != user.id:
                raise TokenValidationError("Refresh token subject mismatch")
            if not user.is_active():
                raise AuthenticationError("User account is inactive")

            now = datetime.now(timezone.utc)
            access_exp = now + timedelta(minutes=self.access_token_expire_minutes)
            access_token = jwt.encode(
                self._access_payload(user, now, access_exp),
                self.private_key,
                algorithm=self.algorithm
            )

            span.set_attribute("auth.refresh_result", "success")
            logger.info("Access token refreshed", extra={"user_id": user.id})

            return {
                "access_token": access_token,
                "token_type": "Bearer",
                "expires_in": self.access_token_expire_minutes * 60,
                "expires_at": access_exp.isoformat()
            }

    def extract_token_id(self, token: str) -> str:
        """
        Unique identifier of a token for blocklist purposes.

        Raises:
            TokenValidationError: If the token cannot be decoded
        """
        try:
            payload = jwt.decode(token, options={"verify_signature": False})
        except jwt.InvalidTokenError as e:
            logger.error(f"Failed to extract token ID: {str(e)}")
            raise TokenValidationError(f"Invalid token format: {str(e)}")

        if payload.get("jti"):
            return payload["jti"]
        return f"{payload.get('sub')}:{payload.get('iat')}:{payload.get('type')}"

    @staticmethod
    def remaining_ttl_seconds(payload: Dict[str, Any]) -> int:
        """Seconds until a decoded token expires (0 when already expired)."""
        exp = payload.get("exp")
        if exp is None:
            return 0
        remaining = int(exp - datetime.now(timezone.utc).timestamp())
        return max(remaining, 0)
