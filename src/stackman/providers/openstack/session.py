from datetime import datetime
from functools import cached_property
from typing import Optional

from stackman import log
from stackman.config import StackmanSettings
from stackman.exceptions import PreconditionError, TokenExpiredError
from stackman.models import Token
from .client import RestClient
from .compute import ComputeService
from .images import ImageService
from .network import NetworkService
from .volumes import VolumeService


class OpenStackSession:
    """
    The services of one control plane, bound to a token.

    Service endpoints are taken from the token catalog. The services are
    built lazily so that a missing endpoint only matters when the service
    is actually needed.
    """
    def __init__(self,
                 token: Token,
                 settings: Optional[StackmanSettings] = None,
                 client: Optional[RestClient] = None):
        """
        Args:
            token: the token and its service catalog
            settings: the run settings
            client: the rest client, built from the settings when None
        """
        #: Token: the token used for every call
        self.token = token

        #: StackmanSettings: the run settings
        self.settings = settings or StackmanSettings()

        #: RestClient: the rest client shared by all the services
        self.client = client or RestClient(
            timeout=self.settings.request_timeout,
            verify=self.settings.verify_tls,
            compute_api_version=self.settings.compute_api_version)

        #: logging.Logger: the logger instance
        self.logger = log

    @property
    def host(self) -> str:
        return self.token.host

    def ensure_token_valid(self, now: Optional[datetime] = None):
        """
        Raises:
            TokenExpiredError: when the token has expired
        """
        if self.token.is_expired(now):
            raise TokenExpiredError(
                f"the token for host '{self.token.host}' expired at "
                f"{self.token.expires_at.isoformat()}, run 'stackman auth' again")

    def endpoint(self, service_type: str) -> str:
        """
        Return the public endpoint of a service.

        Raises:
            PreconditionError: when the token catalog has no such endpoint
        """
        url = self.token.endpoints.get(service_type)
        if not url:
            raise PreconditionError(
                f"no '{service_type}' endpoint found in token; "
                f"re-auth or check your catalog")
        return url

    def require_endpoints(self, *service_types: str):
        for service_type in service_types:
            self.endpoint(service_type)

    @cached_property
    def compute(self) -> ComputeService:
        return ComputeService(self.client, self.endpoint('compute'), self.token.value)

    @cached_property
    def volumes(self) -> VolumeService:
        return VolumeService(self.client, self.endpoint('volumev3'), self.token.value)

    @cached_property
    def network(self) -> NetworkService:
        return NetworkService(self.client, self.endpoint('network'), self.token.value)

    @cached_property
    def images(self) -> ImageService:
        return ImageService(self.client, self.endpoint('image'), self.token.value)
