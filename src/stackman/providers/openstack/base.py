import re
from typing import Any, Callable, Dict, Iterable, List, Optional

from stackman import log
from stackman.exceptions import PreconditionError
from .client import ApiResponse, RestClient

_UUID_RE = re.compile(
    r'^[0-9a-fA-F]{8}-?[0-9a-fA-F]{4}-?[0-9a-fA-F]{4}-?[0-9a-fA-F]{4}-?[0-9a-fA-F]{12}$')


def is_uuid(value: str) -> bool:
    return bool(_UUID_RE.match(value or ''))


class ServiceBase:
    """
    Base class of the per service api wrappers.

    A service knows its base url (taken from the token catalog), the token
    and the rest client used to talk to it.
    """

    #: str: the catalog service type, used in error messages
    service_type = None

    def __init__(self, client: RestClient, base_url: str, token: str):
        """
        Args:
            client: the rest client
            base_url: the public endpoint of the service
            token: the auth token value
        """
        #: RestClient: the rest client used for every call
        self.client = client

        #: str: the endpoint of the service without a trailing slash
        self.base_url = base_url.rstrip('/')

        #: str: the auth token value
        self.token = token

        #: logging.Logger: Logger instance
        self.logger = log

    def url(self, *parts: str) -> str:
        return '/'.join([self.base_url] + [str(p).strip('/') for p in parts])

    def request(self,
                method: str,
                path: str,
                expected: Iterable[int],
                body: Optional[Dict[str, Any]] = None,
                what: str = 'request') -> ApiResponse:
        """
        Send a request to the service and check its status.

        Raises:
            ApiError: when the status is not one of *expected*
        """
        return self.client.expect(
            method,
            self.url(path),
            expected,
            token=self.token,
            body=body,
            what=what)

    def resolve_id(self,
                   ref: str,
                   list_items: Callable[[], List[Dict[str, Any]]],
                   kind: str) -> str:
        """
        Resolve a resource name to its id.

        UUIDs are returned unchanged. Otherwise the items whose name
        contains *ref* are looked up, an exact name match wins over a
        substring match.

        Raises:
            PreconditionError: when no item or more than one item matches
        """
        if is_uuid(ref):
            return ref

        items = list_items()
        exact = [item for item in items if item.get('name') == ref]
        if len(exact) == 1:
            return exact[0]['id']

        matches = [item for item in items if ref in (item.get('name') or '')]
        if not matches:
            raise PreconditionError(f"no {kind} found matching '{ref}'")
        if len(matches) > 1:
            names = ', '.join(sorted(item.get('name') or item['id'] for item in matches))
            raise PreconditionError(
                f"{kind} reference '{ref}' is ambiguous, it matches: {names}")
        return matches[0]['id']
