import json
from unittest.mock import MagicMock

import pytest
import requests

from range_controller.config import ClusterConfig
from range_controller.exceptions import HypervisorAPIError, TransientError
from range_controller.hypervisor.client import ProxmoxClient
from range_controller.hypervisor.gateway import ProxmoxGateway


@pytest.fixture
def config():
    return ClusterConfig(
        host="pve.test",
        port=8006,
        token_id="root@pam!range",
        token_secret="s3cret",
        verify_ssl=True,
        nodes=("pve1",),
    )


def _response(status=200, payload=None):
    resp = MagicMock()
    resp.status_code = status
    resp.content = json.dumps(payload).encode() if payload is not None else b""
    return resp


def test_session_carries_api_token_header(config):
    gw = ProxmoxGateway(config)
    assert gw.session.headers["Authorization"] == "PVEAPIToken=root@pam!range=s3cret"


def test_post_sends_json_body_to_full_url(config):
    session = MagicMock()
    session.request.return_value = _response(200, {"data": "UPID:1"})
    gw = ProxmoxGateway(config, session=session)

    status, raw = gw.request("/pools", "post", {"poolid": "1001_web_alice"})

    assert status == 200
    assert json.loads(raw) == {"data": "UPID:1"}
    method, url = session.request.call_args.args
    kwargs = session.request.call_args.kwargs
    assert method == "POST"
    assert url == "https://pve.test:8006/api2/json/pools"
    assert kwargs["json"] == {"poolid": "1001_web_alice"}
    assert kwargs["verify"] is True


@pytest.mark.parametrize("method", ["GET", "DELETE"])
def test_body_is_never_sent_for_get_or_delete(config, method):
    session = MagicMock()
    session.request.return_value = _response(200, {"data": None})
    gw = ProxmoxGateway(config, session=session)

    gw.request("/pools/x", method, {"ignored": True})

    assert "json" not in session.request.call_args.kwargs


def test_status_codes_pass_through_uninterpreted(config):
    session = MagicMock()
    session.request.return_value = _response(500, {"data": None})
    gw = ProxmoxGateway(config, session=session)

    status, _ = gw.request("/cluster/nextid")

    assert status == 500


def test_connection_failure_is_transient(config):
    session = MagicMock()
    session.request.side_effect = requests.ConnectionError("refused")
    gw = ProxmoxGateway(config, session=session)

    with pytest.raises(TransientError):
        gw.request("/cluster/resources")


def test_unknown_method_rejected(config):
    gw = ProxmoxGateway(config, session=MagicMock())
    with pytest.raises(ValueError):
        gw.request("/cluster/resources", "PATCH")


def test_client_unwraps_data_and_raises_on_error_status():
    gateway = MagicMock()
    gateway.request.side_effect = [
        (200, json.dumps({"data": "105"}).encode()),
        (403, b'{"data": null}'),
    ]
    client = ProxmoxClient(gateway)

    assert client.next_vmid() == 105
    with pytest.raises(HypervisorAPIError) as err:
        client.vm_status("pve1", 105)
    assert err.value.api_status == 403
    assert isinstance(err.value, TransientError)


def test_client_parses_inventory_rows():
    gateway = MagicMock()
    gateway.request.return_value = (200, json.dumps({"data": [
        {"type": "qemu", "vmid": 200, "name": "web01", "node": "pve1", "pool": "p", "template": 1, "maxmem": 10, "extra": "x"},
        {"type": "pool", "id": "/pool/p", "pool": "p"},
    ]}).encode())

    rows = ProxmoxClient(gateway).cluster_resources(resource_type="vm")

    assert gateway.request.call_args.args[0] == "/cluster/resources?type=vm"
    assert rows[0].is_vm and rows[0].is_template and rows[0].vmid == 200
    assert not rows[1].is_vm
