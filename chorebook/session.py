class SessionContext:
    """
    Credentials for one signed-in actor (customer or provider).

    Passed explicitly to every component that talks to the server. Any component
    may read it; only Gateway.sign_in / refresh / sign_out write it.
    """

    def __init__(
        self,
        token: str | None = None,
        refresh_token: str | None = None,
        user_email: str | None = None,
    ):
        self._token = token
        self._refresh_token = refresh_token
        self.user_email = user_email

    @property
    def token(self) -> str | None:
        return self._token

    @property
    def refresh_token(self) -> str | None:
        return self._refresh_token

    @property
    def is_authenticated(self) -> bool:
        return bool(self._token)

    def _store(self, token: str, refresh_token: str | None = None) -> None:
        self._token = token
        if refresh_token is not None:
            self._refresh_token = refresh_token

    def _clear(self) -> None:
        self._token = None
        self._refresh_token = None
