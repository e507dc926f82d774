from .oauth import (  # noqa: F401
    OAUTH_SCOPES,
    STATE_TTL_SECONDS,
    OAuthError,
    OAuthStateStore,
    TwitchOAuthClient,
)
