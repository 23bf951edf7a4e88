#!/usr/bin/env python3

from setuptools import setup, find_packages
import os

def read_readme():
    if os.path.exists('README.md'):
        with open('README.md', 'r', encoding='utf-8') as f:
            return f.read()
    return "DNS Track Exporter"

def read_requirements():
    if os.path.exists('requirements.txt'):
        with open('requirements.txt', 'r') as f:
            return [line.strip() for line in f if line.strip() and not line.startswith('#')]
    return ['twisted>=21.2.0', 'prometheus_client>=0.12.0', 'PyYAML>=5.1']

setup(
    name='dns-track-exporter',
    version='1.0.0',
    description='Prometheus exporter tracking DNS resolution latency and results',
    long_description=read_readme(),
    long_description_content_type='text/markdown',
    author='DNS Track Exporter Team',
    author_email='admin@example.com',
    url='https://github.com/example/dns-track-exporter',

    packages=find_packages(exclude=['tests', 'tests.*']),
    include_package_data=True,

    install_requires=read_requirements(),
    extras_require={
        'test': ['pytest>=7.0'],
    },

    entry_points={
        'console_scripts': [
            'dns-track-exporter=dns_track_exporter.main:main',
        ],
    },

    classifiers=[
        'Development Status :: 5 - Production/Stable',
        'Environment :: No Input/Output (Daemon)',
        'Intended Audience :: System Administrators',
        'License :: OSI Approved :: MIT License',
        'Operating System :: POSIX :: Linux',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Topic :: Internet :: Name Service (DNS)',
        'Topic :: System :: Monitoring',
        'Topic :: System :: Networking :: Monitoring',
    ],

    python_requires='>=3.9',
)
