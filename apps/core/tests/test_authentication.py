"""
Tests for bearer token authentication.
"""
import pytest
from django.test import override_settings
from rest_framework.exceptions import AuthenticationFailed
from rest_framework.test import APIRequestFactory

from apps.core.authentication import JWTAuthentication
from apps.rbac.services import AuthService, Credential


def request_with(header=None):
    extra = {'HTTP_AUTHORIZATION': header} if header is not None else {}
    return APIRequestFactory().get('/v1/auth/me', **extra)


class TestJWTAuthentication:

    def test_no_header(self):
        assert JWTAuthentication().authenticate(request_with()) is None

    def test_other_scheme_is_ignored(self):
        assert JWTAuthentication().authenticate(request_with('Basic dXNlcjpwYXNz')) is None

    def test_header_without_token(self):
        with pytest.raises(AuthenticationFailed):
            JWTAuthentication().authenticate(request_with('Bearer'))

    def test_authenticate_header(self):
        assert JWTAuthentication().authenticate_header(request_with()) == 'Bearer'

    @pytest.mark.django_db
    def test_invalid_token(self):
        with pytest.raises(AuthenticationFailed):
            JWTAuthentication().authenticate(request_with('Bearer abc.def.ghi'))

    @pytest.mark.django_db
    def test_valid_token(self, login, user):
        result = login(user)

        authenticated_user, credential = JWTAuthentication().authenticate(request_with(f'Bearer {result.token}'))

        assert authenticated_user == user
        assert isinstance(credential, Credential)
        assert credential.session_id == result.session_id

    @pytest.mark.django_db
    def test_keyword_is_case_insensitive(self, login, user):
        result = login(user)
        authenticated_user, _ = JWTAuthentication().authenticate(request_with(f'bearer {result.token}'))
        assert authenticated_user == user

    @pytest.mark.django_db
    def test_token_signed_with_another_key(self, user):
        token = AuthService().issue_credential(user, 'session-1', set())
        with override_settings(JWT_SECRET_KEY='a-verifying-key-that-differs-from-the-signer'):
            with pytest.raises(AuthenticationFailed):
                JWTAuthentication().authenticate(request_with(f'Bearer {token}'))
