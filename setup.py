from setuptools import find_packages, setup

setup(
    name='persistent-jobqueue',
    version='1.0.0',
    description='Persistent background job repository with audit history',
    packages=find_packages(exclude=[
        'jobqueue.test',
        'jobqueue.test.*',
    ]),
    python_requires='>=3.8',
    install_requires=[
        'aiosqlite',
        'asyncpg',
        'python-dateutil',
        'simplejson',
        'SQLAlchemy[asyncio]>=2.0',
    ],
    extras_require={
        'test': [
            'mock>=4.0',
            'pytest',
        ],
    },
)
