"""Error taxonomy shared by the fetchers, providers, stores and handlers."""


class SignalRelayError(Exception):
    pass


class Unauthorized(SignalRelayError):
    """Webhook signature mismatch. Terminal: the request is rejected."""


class RateLimited(SignalRelayError):
    def __init__(self, user_id=None, scope="user"):
        self.user_id = user_id
        self.scope = scope
        super().__init__(f"Rate limited ({scope}): {user_id or 'global'}")


class UpstreamUnavailable(SignalRelayError):
    """Quote or model provider failed."""


class MalformedModelOutput(UpstreamUnavailable):
    """Model text did not parse as the signal schema."""


class CacheUnavailable(SignalRelayError):
    """Store read/write failed."""
