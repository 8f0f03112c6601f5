"""Hook specifications added to pytest by the pgfixture plugin."""

import pytest


@pytest.hookspec(firstresult=True)
def pytest_pgfixture_config(config):
    """
    Return the database the test run needs.

    Implement in ``conftest.py`` and return a ``PluginConfig`` (or a dict
    with the same keys). Returning None leaves the plugin inactive unless a
    config file is given.

    :param pytest.Config config: pytest config object
    """
