from setuptools import setup

setup(
    name='mdpreview',
    version='0.1.0',
    author="J M Franck",
    description="Live markdown preview server and static HTML builder",
    packages=['mdpreview',],
    package_data={'mdpreview': ['templates/*.html']},
    python_requires='>=3.10',
    install_requires=[
        'markdown',
        'pygments',
        'jinja2',
        'watchdog',
    ],
    extras_require={'test': ['pytest']},
    entry_points=dict(
        console_scripts=["mdpreview = mdpreview.command_line:main",])
)
