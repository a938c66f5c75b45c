"""
Pytest configuration for Django tests.

pytest-django reads the settings module from pyproject.toml; this only
makes sure it is also set for code that inspects the environment directly.
"""
import os

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "storefront.settings")
