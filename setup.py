from setuptools import setup

setup(
    name='discord-connector',
    version='0.1.0',
    description='asyncio connector for the Discord gateway built on a sans-I/O WebSocket core.',
    packages=['discord_connector'],
    python_requires='>=3.11',
    install_requires=['wsproto', 'h11', 'msgspec', 'httpx>=0.26'],
    extras_require={
        'etf': ['erlpack'],
        'perf': ['ujson'],
        'test': ['pytest', 'pytest-asyncio'],
    },
)
