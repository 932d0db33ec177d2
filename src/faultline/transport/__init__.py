"""
Faultline Transports

Concrete places an InterceptionPipeline can be installed:

- InterceptingTransport: httpx client transport
- MockServer: FastAPI development server / proxy
- faultline.transport.mitm_addon: mitmproxy addon (imported on its own,
  it needs mitmproxy installed)
"""

from .httpx_transport import InterceptingTransport, TOKEN_EXTENSION
from .server import MockServer, ServerConfig, create_mock_server

__all__ = [
    'InterceptingTransport',
    'TOKEN_EXTENSION',
    'MockServer',
    'ServerConfig',
    'create_mock_server',
]
