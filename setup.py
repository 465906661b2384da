"""
Setup script for RelayChat - peer-to-peer chat relay node and terminal viewer.

This package provides:
- A relay node archiving every conversation in memory
- Node-to-node message forwarding over a TCP peer channel
- A local HTTP and WebSocket API with live new-message pushes
- A terminal viewer (Linux, Windows, macOS)
"""

from setuptools import setup, find_packages
import os

this_directory = os.path.abspath(os.path.dirname(__file__))
with open(os.path.join(this_directory, 'README.md'), encoding='utf-8') as f:
    long_description = f.read()

setup(
    name='relaychat',
    version='0.3.0',
    author='RelayChat contributors',
    description='A minimal peer-to-peer chat relay with an HTTP/WebSocket API and a terminal viewer',
    long_description=long_description,
    long_description_content_type='text/markdown',
    package_dir={'': 'src'},
    packages=find_packages(where='src'),
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Developers',
        'Topic :: Communications :: Chat',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Operating System :: OS Independent',
        'Environment :: Console',
        'Framework :: AsyncIO',
    ],
    python_requires='>=3.10',
    install_requires=[
        'aiohttp>=3.9.0',
        'textual>=0.47.0',
        'rich>=13.7.0',
        'tomli>=2.0.1; python_version<"3.11"',
    ],
    extras_require={
        'test': [
            'pytest>=7.4.0',
            'pytest-asyncio>=0.23.0',
        ],
    },
    entry_points={
        'console_scripts': [
            'relaychat=relaychat.main:main',
            'relaychat-node=relaychat.server:main',
        ],
    },
)
