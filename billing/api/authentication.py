from rest_framework.authentication import TokenAuthentication


class BearerTokenAuthentication(TokenAuthentication):
    """DRF token auth reading ``Authorization: Bearer <token>``."""

    keyword = "Bearer"
