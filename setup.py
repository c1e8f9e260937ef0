import os
import sys

from setuptools import setup

sys.path.append('src')
from stackman import metadata


setup(
    name=metadata.package,
    version=metadata.version,
    description=metadata.description,
    author=metadata.authors_string,
    author_email=', '.join(metadata.emails),
    url=metadata.url,
    license=metadata.license,
    python_requires='>=3.10',
    packages=[
        'stackman',
        'stackman.loggers',
        'stackman.scripts',
        'stackman.providers',
        'stackman.providers.openstack',
        'stackman.utils',
    ],
    package_dir={
        'stackman': os.path.join('src', 'stackman')
    },
    install_requires=[
        'requests',
        'PyYAML',
        'Jinja2',
        'invoke',
        'typer',
    ],
    extras_require={
        'test': ['pytest'],
    },
    entry_points={
        'console_scripts': [
            'stackman=stackman.scripts.app:main',
            'stackman-migrate=stackman.scripts.migrate:main',
        ],
    }
)
