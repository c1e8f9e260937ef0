from importlib.metadata import version as _get_version, PackageNotFoundError

package = 'stackman'
project = 'stackman'
project_no_spaces = project.replace(' ', '')

try:
    version = _get_version(package)
except PackageNotFoundError:
    version = '0.1.0'

description = (
    'Stackman (stack manager) – provision and migrate VMs on an '
    'OpenStack-compatible cloud'
)
authors = ['John Smith']
authors_string = ', '.join(authors)
emails = ['john@example.com']
license = 'MIT'
copyright = '20XX ' + authors_string
url = 'https://stackman.example.com'

#: str: the user agent sent with every api request
user_agent = f'{package}/{version}'
