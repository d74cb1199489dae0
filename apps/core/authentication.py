"""
Custom DRF authentication classes.
"""
from rest_framework.authentication import BaseAuthentication, get_authorization_header
from rest_framework.exceptions import AuthenticationFailed


class JWTAuthentication(BaseAuthentication):
    """
    Bearer token authentication backed by AuthService.

    Sets ``request.user`` to the User and ``request.auth`` to the decoded
    Credential, so permission checks can read the login-time permission
    snapshot without another query.
    """

    keyword = 'Bearer'

    def authenticate(self, request):
        """
        Returns:
            tuple: (user, credential) for a valid token, None if no bearer
            token was sent
        """
        auth = get_authorization_header(request).split()

        if not auth or auth[0].lower() != self.keyword.lower().encode():
            return None

        if len(auth) != 2:
            raise AuthenticationFailed('Invalid Authorization header. Expected: Bearer <token>')

        try:
            token = auth[1].decode()
        except UnicodeError:
            raise AuthenticationFailed('Invalid token')

        from apps.core.exceptions import Unauthenticated
        from apps.rbac.services import AuthService

        try:
            return AuthService().authenticate_token(token)
        except Unauthenticated as e:
            raise AuthenticationFailed(e.message)

    def authenticate_header(self, request):
        return self.keyword
