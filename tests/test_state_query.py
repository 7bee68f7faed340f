import pytest

from conftest import make_bulb
from lifx_act.state_query import StateQueryTimeout, query_state


@pytest.mark.asyncio
async def test_query_returns_reported_state(make_client):
    bulb = make_bulb("Kitchen", "d0:73:d5:00:00:01", brightness=0x1234)
    client = make_client(bulb)

    state = await query_state(client, bulb.device, timeout_seconds=0.5, max_retries=3)

    assert state.brightness == 0x1234
    assert client.state_requests == ["Kitchen"]


@pytest.mark.asyncio
async def test_query_sends_one_request_plus_each_retry_then_times_out(make_client):
    bulb = make_bulb("Attic", "d0:73:d5:00:00:02", responsive=False)
    client = make_client(bulb)

    with pytest.raises(StateQueryTimeout) as excinfo:
        await query_state(client, bulb.device, timeout_seconds=0.01, max_retries=3)

    assert excinfo.value.retries == 3
    assert client.state_requests == ["Attic"] * 4


@pytest.mark.asyncio
async def test_zero_retries_sends_a_single_request(make_client):
    bulb = make_bulb("Attic", "d0:73:d5:00:00:02", responsive=False)
    client = make_client(bulb)

    with pytest.raises(StateQueryTimeout) as excinfo:
        await query_state(client, bulb.device, timeout_seconds=0.01, max_retries=0)

    assert excinfo.value.retries == 0
    assert client.state_requests == ["Attic"]


@pytest.mark.asyncio
async def test_slow_reply_is_accepted_after_a_retry(make_client):
    bulb = make_bulb("Porch", "d0:73:d5:00:00:03", slow_replies=1, reply_delay=0.5)
    client = make_client(bulb)

    state = await query_state(client, bulb.device, timeout_seconds=0.05, max_retries=5)

    assert state.label == "Porch"
    assert client.state_requests == ["Porch"] * 2


@pytest.mark.asyncio
async def test_reply_naming_another_bulb_is_re_requested(make_client):
    bulb = make_bulb("Desk", "d0:73:d5:00:00:04", wrong_replies=2)
    client = make_client(bulb)

    state = await query_state(client, bulb.device, timeout_seconds=0.5, max_retries=0)

    assert state.label == "Desk"
    assert client.state_requests == ["Desk"] * 3
