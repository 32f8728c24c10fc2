from setuptools import setup, find_packages
setup(
    name="cta-bustime",
    version='0.1.0',
    packages=['ctabustime'],
    license='LICENSE',
    description='Python wrapper for the Chicago Transit Authority realtime bus information (Bustime) API.',
    install_requires=['requests', 'pytz'],
    extras_require={'example': ['flask']}
)
