import enum

__all__ = ('Credentials', 'TokenKind')


class TokenKind(enum.Enum):
    BOT = 'Bot'
    BEARER = 'Bearer'


class Credentials:
    """Token used to authenticate against the REST API and the gateway.

    Tokens may be passed with their 'Bot ' or 'Bearer ' prefix, a token
    without a prefix is treated as a bot token.
    """

    __slots__ = ('_token', '_kind')

    def __init__(self, token: str) -> None:
        if not token:
            raise ValueError('A token is required')

        kind = TokenKind.BOT
        for candidate in TokenKind:
            prefix = candidate.value + ' '
            if token.startswith(prefix):
                kind = candidate
                token = token[len(prefix):]
                break

        self._token = token
        self._kind = kind

    def __repr__(self) -> str:
        return f'<Credentials kind={self._kind.name}>'

    @property
    def kind(self) -> TokenKind:
        return self._kind

    @property
    def is_bot(self) -> bool:
        return self._kind is TokenKind.BOT

    @property
    def is_bearer(self) -> bool:
        return self._kind is TokenKind.BEARER

    @property
    def token(self) -> str:
        """The bare token, as sent in IDENTIFY and RESUME."""
        return self._token

    @property
    def authorization(self) -> str:
        """Value for the Authorization header of REST requests."""
        return f'{self._kind.value} {self._token}'
