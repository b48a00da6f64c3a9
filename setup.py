import os.path
import re

from setuptools import find_packages, setup

try:
    # Import all script providers so that ENTRYPOINTS gets populated.
    from servicelib.scripts import bulk, service  # noqa: F401
    from servicelib.scripts.utils import ENTRYPOINTS
except ImportError:
    # Avoid chicken-and-egg dependency requirements during initial installation.
    # This means you need to re-run setup in order to gain script entrypoints.
    ENTRYPOINTS = ["servicelib-service-control=servicelib.scripts.service:control",
                   "servicelib-bulk-run=servicelib.scripts.bulk:run"]


HERE = os.path.abspath(os.path.dirname(__file__))

README = os.path.join(HERE, "README.rst")


def version():
    with open(os.path.join(HERE, "servicelib", "__init__.py")) as init:
        return re.search(r'^__version__ = "([^"]+)"', init.read(), re.MULTILINE).group(1)


setup(name="servicelib",
      version=version(),
      description="Deterministic start, stop, restart, pause and resume of services on local or "
                  "remote hosts.",
      long_description=open(README).read(),
      long_description_content_type="text/x-rst",
      platforms=["Any"],
      python_requires=">=3.8",
      install_requires=["docopt", "jinja2"],
      packages=find_packages(exclude=["tests"]),
      package_data={"servicelib.tasks": ["templates/*.j2"]},
      entry_points={"console_scripts": ENTRYPOINTS})
