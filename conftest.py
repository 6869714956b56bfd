"""
Global pytest configuration for the agent supervisor.
"""


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "asyncio: mark test as an asyncio coroutine")
    config.addinivalue_line(
        "markers", "integration: marks tests that start real subprocesses"
    )


def pytest_addoption(parser):
    """Add command line options for integration tests."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests that start real subprocesses",
    )
