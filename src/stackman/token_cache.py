import os
import json
from datetime import datetime
from typing import Dict, Any, Optional

from stackman import log
from stackman.exceptions import TokenExpiredError, TokenNotFoundError
from stackman.models import Token

DEFAULT_CACHE_DIR = '~/.config/stackman'


class TokenCache:
    """
    The stackman token cache

    Tokens are kept per host in a single json file that only the owner can
    read:

      - the cache directory: ~/.config/stackman
      - the tokens file: ~/.config/stackman/tokens.json

    The file has the layout ``{"tokens": {<host>: <token>}}``.
    """
    def __init__(self, cache_dir: Optional[str] = None):
        """
        Initialize the token cache handler object

        Args:
            cache_dir: the directory of the tokens file, ~/.config/stackman
              by default
        """
        #: str: the path to the cache directory where the tokens are stored
        self.cache_dir = os.path.expanduser(cache_dir or DEFAULT_CACHE_DIR)

        #: str: the path to the tokens file
        self.tokens_file = os.path.join(self.cache_dir, 'tokens.json')

    def create_dir(self):
        """
        Create the cache directory if it does not exist
        """
        if not os.path.exists(self.cache_dir):
            os.makedirs(self.cache_dir, mode=0o700, exist_ok=True)
            log.info(f"cache directory created at: {self.cache_dir}")

    def _read(self) -> Dict[str, Any]:
        if not os.path.exists(self.tokens_file):
            return {}

        with open(self.tokens_file, 'r') as fobj:
            data = json.load(fobj)
        return data.get('tokens') or {}

    def _write(self, tokens: Dict[str, Any]):
        self.create_dir()
        fd = os.open(self.tokens_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, 'w') as fobj:
            json.dump({'tokens': tokens}, fobj, indent=4)
        os.chmod(self.tokens_file, 0o600)

    def save_token(self, token: Token):
        """
        Store a token, replacing the token cached for the same host.

        Args:
            token: the token to store
        """
        tokens = self._read()
        tokens[token.host] = token.to_dict()
        self._write(tokens)
        log.debug(f"token for '{token.host}' saved to {self.tokens_file}")

    def load_token(self, host: str, now: Optional[datetime] = None) -> Token:
        """
        Return the cached token of a host.

        Args:
            host: the control plane host
            now: the reference time of the expiry check, the current time
              by default

        Raises:
            TokenNotFoundError: when no token is cached for the host
            TokenExpiredError: when the cached token has expired
        """
        tokens = self._read()
        if host not in tokens:
            raise TokenNotFoundError(
                f"no token cached for host '{host}', run 'stackman auth' first")

        token = Token.from_dict(tokens[host])
        if token.is_expired(now):
            raise TokenExpiredError(
                f"the token for host '{host}' expired at "
                f"{token.expires_at.isoformat()}, run 'stackman auth' again")
        return token

    def remove_token(self, host: str) -> bool:
        """
        Remove the cached token of a host.

        Returns:
            True if a token was removed, False otherwise
        """
        tokens = self._read()
        if host not in tokens:
            log.warning(f"no token cached for host '{host}', nothing to remove")
            return False

        tokens.pop(host)
        self._write(tokens)
        log.info(f"token for host '{host}' removed from the cache")
        return True
