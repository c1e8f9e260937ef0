from typing import Any, Dict, Optional

from stackman import log
from stackman.exceptions import ApiError, TokenError
from stackman.models import Token, parse_timestamp
from stackman.token_cache import TokenCache
from .client import RestClient


def auth_payload(domain: str, project: str, username: str, password: str) -> Dict[str, Any]:
    """
    Build the keystone v3 password authentication payload scoped to a
    project.
    """
    return {
        'auth': {
            'identity': {
                'methods': ['password'],
                'password': {
                    'user': {
                        'name': username,
                        'domain': {'name': domain},
                        'password': password,
                    },
                },
            },
            'scope': {
                'project': {
                    'name': project,
                    'domain': {'name': domain},
                },
            },
        },
    }


def public_endpoints(catalog: list) -> Dict[str, str]:
    """
    Map every service type of a token catalog to its public endpoint url.
    """
    endpoints = {}
    for service in catalog or []:
        for endpoint in service.get('endpoints', []):
            if endpoint.get('interface') == 'public':
                endpoints[service.get('type')] = endpoint.get('url')
    return endpoints


def authenticate(host: str,
                 domain: str,
                 project: str,
                 username: str,
                 password: str,
                 client: Optional[RestClient] = None,
                 cache: Optional[TokenCache] = None,
                 force: bool = False) -> Token:
    """
    Return a token for *host* scoped to *project*.

    A valid cached token of the same project is reused unless *force* is
    set, otherwise a new token is requested and cached.

    Raises:
        ApiError: when authentication is refused
    """
    cache = cache or TokenCache()
    client = client or RestClient()

    if not force:
        try:
            cached = cache.load_token(host)
        except TokenError as exc:
            log.debug(f"not reusing the cached token: {exc}")
        else:
            if cached.project == project:
                log.info(f"using existing token for {host}, project {project}")
                return cached

    url = f'https://{host}:5000/v3/auth/tokens'
    response = client.expect(
        'POST', url, (201,),
        body=auth_payload(domain, project, username, password),
        what=f"authentication of '{username}' on {host}")

    value = response.headers.get('X-Subject-Token')
    if not value:
        raise ApiError(
            f"authentication on {host} returned no token",
            method='POST', url=url, status_code=response.status_code)

    token_data = response.json().get('token', {})
    token = Token(
        value=value,
        host=host,
        expires_at=parse_timestamp(token_data['expires_at']),
        endpoints=public_endpoints(token_data.get('catalog')),
        project=project)

    cache.save_token(token)
    log.info(f"authenticated on {host}, token valid until {token.expires_at.isoformat()}")
    return token
