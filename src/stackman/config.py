"""
Settings for stackman.

The settings file is a yaml document (default ~/.config/stackman/stackman.yml)
that is rendered as a jinja2 template before it is parsed, e.g.

    host: {{ env_required("OS_HOST") }}
    domain: default
    project: admin
    username: {{ env("OS_USERNAME", default="admin") }}
    poll_interval: 10
    compute_api_version: "2.72"
    networks:
      - provisioning

Scalar keys can be overridden from the environment with the ``STACKMAN_``
prefix, e.g. ``STACKMAN_HOST`` or ``STACKMAN_POLL_INTERVAL``.
"""

import os
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Mapping, Optional, Tuple, Union, get_args, get_origin

import yaml

from stackman import log
from stackman.exceptions import PreconditionError
from stackman.utils.templating import render_file

DEFAULT_CONFIG_PATH = '~/.config/stackman/stackman.yml'
ENV_PREFIX = 'STACKMAN_'


@dataclass(frozen=True)
class StackmanSettings:
    """
    Immutable run configuration, passed explicitly to the orchestrators.
    """

    #: str: the control plane host, identity is expected on port 5000
    host: Optional[str] = None

    #: str: the identity domain name
    domain: str = 'default'

    #: str: the project (tenant) name the token is scoped to
    project: Optional[str] = None

    #: str: the user name used by ``stackman auth``
    username: Optional[str] = None

    #: str: the flavor used when none is passed on the command line
    flavor: Optional[str] = None

    #: str: the image used when none is passed on the command line
    image: Optional[str] = None

    #: tuple: the networks used when none are passed on the command line
    networks: Tuple[str, ...] = ()

    #: float: seconds between two status polls
    poll_interval: float = 10.0

    #: int: number of status polls before giving up
    poll_max_attempts: int = 30

    #: float: seconds to wait after each successful interface attach
    settle_delay: float = 10.0

    #: float: seconds between two polls of a temporary image
    image_ready_interval: float = 3.0

    #: int: number of polls of a temporary image before giving up
    image_ready_max_attempts: int = 5

    #: int: boot volume size in GiB for image-backed servers
    default_volume_size: int = 10

    #: str: the disk bus of the boot volume when none is requested
    default_disk_bus: str = 'scsi'

    #: str: the block storage volume type, omitted from requests when unset
    volume_type: Optional[str] = None

    #: float: seconds between two upload progress reports
    upload_progress_interval: float = 1.0

    #: float: the smoothing factor of the upload throughput average
    upload_smoothing: float = 0.5

    #: float: timeout in seconds of a single rest call
    request_timeout: float = 30.0

    #: bool: verify the tls certificates of the api endpoints
    verify_tls: bool = True

    #: str: the compute microversion sent with every request
    compute_api_version: str = '2.72'

    #: tuple: path prefixes of sources that are read once before uploading
    warmup_prefixes: Tuple[str, ...] = ('/mnt/vmdk/',)

    #: str: the directory where the token cache is kept
    token_cache_dir: str = '~/.config/stackman'

    def override(self, **kwargs) -> 'StackmanSettings':
        """Return a copy with the non-None values of *kwargs* applied."""
        return replace(self, **{k: v for k, v in kwargs.items() if v is not None})


def _field_kind(annotation: Any) -> Any:
    """
    Return the plain type behind a field annotation (Optional and Tuple
    are unwrapped).
    """
    if get_origin(annotation) is Union:
        annotation = next(a for a in get_args(annotation) if a is not type(None))
    if get_origin(annotation) is tuple:
        return tuple
    return annotation


def _coerce(name: str, annotation: Any, value: Any) -> Any:
    """
    Convert a raw yaml or environment value to the type of the field *name*.
    """
    if value is None:
        return None

    kind = _field_kind(annotation)
    try:
        if kind is bool:
            if isinstance(value, bool):
                return value
            return str(value).strip().lower() in ('1', 'true', 'yes', 'on')
        if kind is int:
            return int(value)
        if kind is float:
            return float(value)
        if kind is tuple:
            if isinstance(value, str):
                return tuple(v.strip() for v in value.split(',') if v.strip())
            return tuple(str(v) for v in value)
    except (TypeError, ValueError) as exc:
        raise PreconditionError(
            f"invalid value {value!r} for setting '{name}': {exc}") from exc

    # yaml reads an unquoted 2.10 as the float 2.1
    if not isinstance(value, str):
        raise PreconditionError(
            f"setting '{name}' must be a string, got {value!r}; "
            f"quote it in the settings file (e.g. {name}: \"{value}\")")
    return value


def settings_from_mapping(raw: Mapping[str, Any]) -> StackmanSettings:
    """
    Build settings from a mapping, unknown keys are ignored.
    """
    kinds = {f.name: f.type for f in fields(StackmanSettings)}
    values: Dict[str, Any] = {}
    for key, value in raw.items():
        if key not in kinds:
            log.debug(f"ignoring unknown setting '{key}'")
            continue
        coerced = _coerce(key, kinds[key], value)
        if coerced is not None:
            values[key] = coerced
    return StackmanSettings(**values)


def env_overrides(environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """
    Collect the ``STACKMAN_*`` settings overrides from the environment.
    """
    environ = os.environ if environ is None else environ
    names = {f.name for f in fields(StackmanSettings)}
    overrides = {}
    for key, value in environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        name = key[len(ENV_PREFIX):].lower()
        if name in names:
            overrides[name] = value
    return overrides


def load_settings(path: Optional[str] = None,
                  environ: Optional[Mapping[str, str]] = None) -> StackmanSettings:
    """
    Load the settings file, apply the environment overrides and return the
    settings.

    A missing default settings file is not an error, a missing explicit
    one is.

    Args:
        path: the path to the settings file, the default location is used
          when None
        environ: the environment to read overrides from, ``os.environ`` by
          default

    Returns:
        the resolved settings
    """
    explicit = path is not None
    fpath = os.path.expanduser(path or DEFAULT_CONFIG_PATH)

    raw: Dict[str, Any] = {}
    if os.path.isfile(fpath):
        try:
            content = render_file(fpath)
        except ValueError as exc:
            raise PreconditionError(f"failed to render '{fpath}': {exc}") from exc
        raw = yaml.safe_load(content) or {}
        if not isinstance(raw, dict):
            raise PreconditionError(f"settings file '{fpath}' is not a mapping")
        log.debug(f"loaded settings from {fpath}")
    elif explicit:
        raise PreconditionError(f"settings file '{fpath}' does not exist")

    raw.update(env_overrides(environ))
    return settings_from_mapping(raw)
