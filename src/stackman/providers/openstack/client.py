import html
import json
import re
from typing import Any, Dict, Iterable, Mapping, Optional

import requests

from stackman import log
from stackman import metadata
from stackman.exceptions import ApiError

#: the wrapper keys used by the openstack services around error bodies
ERROR_WRAPPERS = (
    'badRequest',
    'NeutronError',
    'itemNotFound',
    'computeFault',
    'unauthorizedError',
    'notFound',
    'forbidden',
    'conflictingRequest',
    'overLimit',
    'serverCapacityUnavailable',
    'serviceUnavailable',
    'volumeBackendAPIException',
    'HTTPBadRequest',
    'internalServerError',
    'invalidInput',
    'resourceNotFound',
    'quotaExceeded',
    'imageUnacceptable',
    'connectionRefused',
    'volumeFault',
    'deploymentErrors',
    'resourceInUse',
)

_TAG_RE = re.compile(r'<[^>]+>')
_WS_RE = re.compile(r'\s+')


def clean_error_message(message: str) -> str:
    """
    Strip html tags and entities from an error message and collapse
    whitespace.
    """
    message = _TAG_RE.sub(' ', message)
    message = html.unescape(message)
    return _WS_RE.sub(' ', message).strip()


def format_error_response(body: bytes) -> str:
    """
    Extract the human readable message from an error response body.

    The known fault wrappers (e.g. ``{"itemNotFound": {"message": ...}}``)
    are unwrapped first, then the top level ``message`` / ``error`` keys are
    tried. Non json bodies are returned cleaned.
    """
    text = body.decode('utf-8', errors='replace') if isinstance(body, bytes) else str(body)
    try:
        data = json.loads(text)
    except ValueError:
        return clean_error_message(text)

    if not isinstance(data, dict):
        return clean_error_message(text)

    for key in ERROR_WRAPPERS:
        wrapped = data.get(key)
        if isinstance(wrapped, dict):
            message = wrapped.get('message') or wrapped.get('Message')
            if message:
                return clean_error_message(str(message))

    for key in ('message', 'Message', 'error', 'error_message'):
        message = data.get(key)
        if isinstance(message, dict):
            message = message.get('message') or message.get('Message')
        if message:
            return clean_error_message(str(message))

    return clean_error_message(text)


class ApiResponse:
    """
    The answer of one rest call.
    """
    def __init__(self, status_code: int, headers: Mapping[str, str], body: bytes):
        #: int: the http status code
        self.status_code = status_code

        #: Mapping[str, str]: the response headers (case insensitive)
        self.headers = headers

        #: bytes: the raw response body
        self.body = body

    def json(self) -> Dict[str, Any]:
        """
        Return the decoded json body, an empty dict for an empty body.
        """
        if not self.body:
            return {}
        return json.loads(self.body)

    @property
    def error_message(self) -> str:
        return format_error_response(self.body)


class RestClient:
    """
    Thin json client over ``requests`` for the openstack rest apis.

    Every call sends the auth token, the user agent and the compute
    microversion. Transport failures are raised as :class:`ApiError`.
    """
    def __init__(self,
                 session: Optional[requests.Session] = None,
                 timeout: float = 30.0,
                 verify: bool = True,
                 compute_api_version: Optional[str] = '2.72'):
        """
        Args:
            session: the http session to use, a new one by default
            timeout: the timeout in seconds of every call
            verify: verify the tls certificates of the endpoints
            compute_api_version: the compute microversion to request
        """
        #: requests.Session: the underlying http session
        self.session = session or requests.Session()

        #: float: the timeout in seconds of every call
        self.timeout = timeout

        #: bool: verify the tls certificates of the endpoints
        self.verify = verify

        #: str: the value of the X-OpenStack-Nova-API-Version header
        self.compute_api_version = compute_api_version

        #: logging.Logger: Logger instance
        self.logger = log

    def headers(self, token: Optional[str] = None, has_body: bool = False) -> Dict[str, str]:
        headers = {
            'Accept': 'application/json',
            'User-Agent': metadata.user_agent,
        }
        if has_body:
            headers['Content-Type'] = 'application/json'
        if token:
            headers['X-Auth-Token'] = token
        if self.compute_api_version:
            headers['X-OpenStack-Nova-API-Version'] = self.compute_api_version
        return headers

    def call(self,
             method: str,
             url: str,
             token: Optional[str] = None,
             body: Optional[Dict[str, Any]] = None) -> ApiResponse:
        """
        Send one request and return the response whatever its status.

        Args:
            method: the http verb
            url: the full url
            token: the auth token, omitted when None
            body: the json payload, omitted when None

        Returns:
            the response

        Raises:
            ApiError: when the request could not be sent or answered
        """
        data = json.dumps(body) if body is not None else None
        if data is not None:
            self.logger.debug(f"{method} {url}\n{json.dumps(body, indent=2)}")
        else:
            self.logger.debug(f"{method} {url}")

        try:
            response = self.session.request(
                method,
                url,
                headers=self.headers(token, has_body=data is not None),
                data=data,
                timeout=self.timeout,
                verify=self.verify)
        except requests.RequestException as exc:
            raise ApiError(
                f"{method} {url} failed: {exc}", method=method, url=url) from exc

        self.logger.debug(
            f"{method} {url} -> {response.status_code}\n"
            f"{response.content.decode('utf-8', errors='replace')}")

        return ApiResponse(response.status_code, response.headers, response.content)

    def expect(self,
               method: str,
               url: str,
               expected: Iterable[int],
               token: Optional[str] = None,
               body: Optional[Dict[str, Any]] = None,
               what: str = 'request') -> ApiResponse:
        """
        Send one request and raise :class:`ApiError` unless the status is
        one of *expected*.

        Args:
            expected: the accepted status codes
            what: a short description of the call used in the error message
        """
        expected = tuple(expected)
        response = self.call(method, url, token=token, body=body)
        if response.status_code not in expected:
            detail = response.error_message
            raise ApiError(
                f"{what} failed: [{response.status_code}] {detail}",
                method=method,
                url=url,
                status_code=response.status_code,
                detail=detail)
        return response
