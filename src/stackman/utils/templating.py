"""
Jinja2 helpers for stackman settings files and user-data templates.

The following functions are available inside templates rendered by
stackman (e.g. stackman.yml or cloud-init user-data ending in ``.j2``):

    {{ env("OS_PASSWORD") }}
    {{ env("OS_PROJECT", default="admin") }}
    {{ env_required("OS_HOST") }}
    {{ env_required("OS_HOST", "OS_HOST must be set") }}
    {{ env_is_set("OS_DOMAIN") }}
"""

import base64
import os
from typing import Optional

from jinja2 import Environment, FileSystemLoader

from stackman.exceptions import PreconditionError


def env(var_name: str, default: str = "") -> str:
    """
    Return the value of environment variable *var_name*.

    If the variable is not set, return *default* (empty string by default).
    """
    return os.environ.get(var_name, default)


def env_required(var_name: str, message: str = None) -> str:
    """
    Return the value of environment variable *var_name*.

    Raises ``ValueError`` if the variable is not set or is empty.
    """
    value = os.environ.get(var_name)
    if not value:
        msg = message or f"required environment variable '{var_name}' is not set"
        raise ValueError(msg)
    return value


def env_is_set(var_name: str) -> bool:
    """
    Return ``True`` if the environment variable *var_name* is set and non-empty.
    """
    return bool(os.environ.get(var_name))


def create_jinja_env(search_path: str) -> Environment:
    """
    Create a Jinja2 :class:`Environment` with the stackman helper functions
    registered as globals.

    Args:
        search_path: Directory to use as the Jinja2 template search path.

    Returns:
        A configured :class:`jinja2.Environment`.
    """
    jinja_env = Environment(loader=FileSystemLoader(search_path))
    jinja_env.globals["env"] = env
    jinja_env.globals["env_required"] = env_required
    jinja_env.globals["env_is_set"] = env_is_set
    return jinja_env


def render_file(path: str) -> str:
    """
    Render the template at *path* and return the text.

    Args:
        path: path of the template, relative includes are searched next to it
    """
    path = os.path.abspath(os.path.expanduser(path))
    jinja_env = create_jinja_env(os.path.dirname(path))
    template = jinja_env.get_template(os.path.basename(path))
    return template.render()


def read_user_data(path: Optional[str]) -> Optional[str]:
    """
    Read a cloud-init user-data file and return it base64 encoded.

    Files ending in ``.j2`` are rendered first.

    Args:
        path: path to the user-data file, None when there is no user-data

    Returns:
        the base64 payload as expected by server creation, or None
    """
    if not path:
        return None

    fpath = os.path.expanduser(path)
    if not os.path.isfile(fpath):
        raise PreconditionError(f"user-data file '{path}' does not exist")

    if fpath.endswith('.j2'):
        content = render_file(fpath).encode('utf-8')
    else:
        with open(fpath, 'rb') as fobj:
            content = fobj.read()

    return base64.b64encode(content).decode('ascii')
