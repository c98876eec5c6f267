"""
Pytest fixtures for the xchain-rpc tests.
"""
import pytest

from xchain_rpc import _rate_limited_log
from xchain_rpc.chain import LocalChain
from xchain_rpc.config import NetworkConfig

from tests.test_helpers import deploy
from tests.test_helpers.deployment import ORIGIN_CHAIN_ID, TARGET_CHAIN_ID


@pytest.fixture(autouse=True)
def _reset_module_caches():
    """Start every test with an empty network cache and log limiter."""
    NetworkConfig._networks_cache = None
    _rate_limited_log.reset()
    yield
    NetworkConfig._networks_cache = None
    _rate_limited_log.reset()


@pytest.fixture
def origin_chain():
    """Chain hosting the proxy and the calling application."""
    return LocalChain(chain_id=ORIGIN_CHAIN_ID)


@pytest.fixture
def target_chain():
    """Chain hosting the server and the remote contract."""
    return LocalChain(chain_id=TARGET_CHAIN_ID)


@pytest.fixture
def deployment(origin_chain, target_chain):
    """Proxy, server, remote contract and caller wired across both chains."""
    return deploy(origin_chain, target_chain)


@pytest.fixture
def requested_call(deployment):
    """A call prepared by the recorder and requested on the proxy."""
    prepared = deployment.prepare().raise_for_status()
    call_id = deployment.prepared_call_id(prepared)
    request = deployment.request(call_id).raise_for_status()
    return call_id, request


@pytest.fixture
def executed_call(deployment, requested_call):
    """A requested call executed by the server."""
    call_id, request = requested_call
    execution = deployment.execute(request).raise_for_status()
    return call_id, execution
