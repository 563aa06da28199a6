"""
Unit tests for authentication module
"""
from datetime import datetime, timedelta

import pytest
from fastapi.security import HTTPAuthorizationCredentials
from jose import jwt

from studygen.auth import ALGORITHM, SECRET_KEY, create_access_token, decode_token, get_current_user_id
from studygen.services.errors import AuthenticationError


class TestJWTTokens:
    def test_create_access_token(self):
        """Test access token creation"""
        user_id = "test_user_123"
        token = create_access_token(user_id)

        assert token is not None
        assert isinstance(token, str)
        assert decode_token(token) == user_id

    def test_token_expiration(self):
        """Test token expiration"""
        token = create_access_token("test_user_123", expires_delta=timedelta(seconds=-1))
        assert decode_token(token) is None

    def test_invalid_token(self):
        """Test invalid token handling"""
        assert decode_token("invalid.token.here") is None

    def test_wrong_secret(self):
        """Test tokens signed with another key are rejected"""
        token = jwt.encode({"sub": "u", "type": "access"}, "other-secret", algorithm=ALGORITHM)
        assert decode_token(token) is None

    def test_wrong_token_type(self):
        """Test only access tokens authenticate"""
        payload = {"sub": "u", "type": "refresh", "exp": datetime.utcnow() + timedelta(minutes=5)}
        token = jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)
        assert decode_token(token) is None


class TestCurrentUser:
    def test_valid_credentials(self):
        """Test the bearer token resolves to its subject"""
        credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials=create_access_token("student-7"))
        assert get_current_user_id(credentials) == "student-7"

    def test_missing_credentials(self):
        """Test no header raises an authentication error"""
        with pytest.raises(AuthenticationError) as exc:
            get_current_user_id(None)
        assert exc.value.status_code == 401

    def test_rejected_token(self):
        """Test an invalid token raises an authentication error"""
        credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials="nope")
        with pytest.raises(AuthenticationError):
            get_current_user_id(credentials)
