import codecs
import re

from setuptools import setup, find_packages


def long_description() -> str:
    with codecs.open('README.md', encoding='utf-8') as fd:
        return fd.read()


def version() -> str:
    with codecs.open('grizzly_scheduler/__version__.py', encoding='utf-8') as fd:
        match = re.search(r"__version__ = '([^']+)'", fd.read())

    if match is None:
        message = 'could not find __version__ in grizzly_scheduler/__version__.py'
        raise RuntimeError(message)

    return match.group(1)


setup(
    name='grizzly-scheduler',
    version=version(),
    description='Load function algebra, weighted fleet distribution and agent side drivers for distributed load tests',
    long_description=long_description(),
    long_description_content_type='text/markdown',
    project_urls={
        'Code': 'https://github.com/biometria-se/grizzly/',
        'Tracker': 'https://github.com/Biometria-se/grizzly/issues',
    },
    url='https://github.com/Biometria-se/grizzly',
    author='Biometria',
    author_email='opensource@biometria.se',
    license='MIT',
    packages=find_packages(exclude=['*tests', '*tests.*']),
    package_data={
        'grizzly_scheduler': ['py.typed'],
    },
    python_requires='>=3.12',
    install_requires=[
        'gevent>=23.9.0',
        'Jinja2>=3.0.3',
        'locust>=2.20.0',
        'PyYAML>=6.0.1',
    ],
    keywords=[
        'locust',
        'load',
        'loadtest',
        'performance',
        'traffic generator',
        'scheduler',
    ],
    classifiers=[
        'Development Status :: 4 - Beta',
        'License :: OSI Approved :: MIT License',
        'Natural Language :: English',
        'Programming Language :: Python',
        'Programming Language :: Python :: 3 :: Only',
        'Programming Language :: Python :: 3.12',
        'Programming Language :: Python :: 3.13',
        'Programming Language :: Python :: Implementation :: CPython',
        'Operating System :: POSIX :: Linux',
    ],
    extras_require={
        'dev': [
            'mypy>=1.5.0',
            'flake8>=6.0.0',
            'pytest>=7.0.0',
            'pytest-cov>=3.0.0',
            'pytest-mock>=3.7.0',
            'pytest-timeout>=2.1.0',
            'types-PyYAML>=6.0.0',
        ],
    },
)
