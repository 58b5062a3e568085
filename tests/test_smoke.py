"""Smoke tests to verify the package imports and the test setup works."""


def test_package_version():
    import radio

    assert radio.__version__ == "0.1.0"


def test_python_version():
    """Verify Python version meets requirements."""
    import sys

    assert sys.version_info >= (3, 11), "Python 3.11 or higher required"
