import logging
import os
from typing import Optional, Union
from urllib.parse import quote

import msgspec

__all__ = (
    'ProxyConfiguration',
    'Configuration',
    'load_configuration',
    'save_configuration',
)


logger = logging.getLogger(__name__)

PathLike = Union[str, 'os.PathLike[str]']


class ProxyConfiguration(msgspec.Struct, kw_only=True):
    """HTTP proxy used for both REST requests and the gateway socket."""

    use_proxy: bool = False
    address: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None

    @property
    def url(self) -> Optional[str]:
        """Proxy URL with the credentials embedded, None if it is unused."""
        if not self.use_proxy or not self.address:
            return None

        address = self.address if '://' in self.address else 'http://' + self.address
        if self.username is None:
            return address

        scheme, rest = address.split('://', 1)
        userinfo = quote(self.username, safe='')
        if self.password is not None:
            userinfo += ':' + quote(self.password, safe='')
        return f'{scheme}://{userinfo}@{rest}'


class Configuration(msgspec.Struct, kw_only=True):
    """Settings for connecting to Discord, persisted as JSON.

    `last_session` and `last_sequence` are kept up to date by the connector
    so that a saved configuration allows resuming after a restart.
    """

    auth_token: Optional[str] = None
    last_session: Optional[str] = None
    last_sequence: Optional[int] = None
    user_agent_url: str = 'www'
    version: str = '0.1a'
    encoding: str = 'json'
    proxy: ProxyConfiguration = msgspec.field(default_factory=ProxyConfiguration)


def save_configuration(config: Configuration, path: PathLike) -> None:
    """Write `config` to `path` as indented JSON."""
    data = msgspec.json.format(msgspec.json.encode(config), indent=2)
    with open(path, 'wb') as f:
        f.write(data)


def load_configuration(path: PathLike) -> Configuration:
    """Read the configuration stored at `path`.

    When there is no file at `path` a default configuration is saved there
    and returned.

    Raises:
        msgspec.ValidationError: The file doesn't hold a configuration.
        msgspec.DecodeError: The file isn't valid JSON.
    """
    if not os.path.exists(path):
        logger.info('No configuration at %s, writing the defaults', path)
        config = Configuration()
        save_configuration(config, path)
        return config

    with open(path, 'rb') as f:
        return msgspec.json.decode(f.read(), type=Configuration)
