"""Credentials for the HTTP transport."""

import logging

from requests.auth import AuthBase, HTTPBasicAuth
from requests_ntlm import HttpNtlmAuth

from .config import Settings
from .exceptions import AuthenticationError


class BearerTokenAuth(AuthBase):
    """OAuth2 access token sent as an Authorization header."""

    def __init__(self, token: str):
        self.token = token

    def __call__(self, request):
        request.headers["Authorization"] = f"Bearer {self.token}"
        return request


class AuthHandler:
    """Builds the requests auth object configured in settings."""

    def __init__(self, config: Settings):
        self.config = config
        self.logger = logging.getLogger(__name__)

    def get_credentials(self) -> AuthBase:
        auth_type = self.config.ews_auth_type
        self.logger.info(f"Using {auth_type} authentication")

        if auth_type == "oauth2":
            if not self.config.ews_access_token:
                raise AuthenticationError("EWS_ACCESS_TOKEN is required for oauth2 authentication")
            return BearerTokenAuth(self.config.ews_access_token)

        username = self.config.ews_username or self.config.ews_email
        if not username or not self.config.ews_password:
            raise AuthenticationError(f"A username and EWS_PASSWORD are required for {auth_type} authentication")

        if auth_type == "ntlm":
            return HttpNtlmAuth(username, self.config.ews_password)
        return HTTPBasicAuth(username, self.config.ews_password)
