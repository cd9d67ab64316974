import socket

import pytest

from podbridge.preflight import check_port_available


def test_free_port_passes():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        port = s.getsockname()[1]
    check_port_available("127.0.0.1", port)


def test_port_in_use_exits_with_diagnostic():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        s.listen(1)
        port = s.getsockname()[1]
        with pytest.raises(SystemExit) as exc:
            check_port_available("127.0.0.1", port)
    assert f"127.0.0.1:{port}" in str(exc.value)
