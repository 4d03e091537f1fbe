import json
from unittest.mock import Mock, patch
from urllib.parse import parse_qsl, urlencode

import pytest

from engine.dispatch.context import RequestContext
from engine.dispatch.exceptions import ExecutionTerminated, TaskConfigurationError
from engine.dispatch.types import DispatchState, TaskDefinition
from engine.tokens.authority import VerifyResult
from tests.support import (
    LOGGED_IN_ONLY,
    LOGGED_OUT_ONLY,
    POSTBACK_URL,
    Async,
    FixedWindow,
    NoAction,
    make_host,
)


# -------------------------
# CONSTRUCTION
# -------------------------

def test_auth_level_both():
    host = make_host()
    task = Async(host)

    assert host.hooks.has_action("async", task.on_trigger)
    assert host.hooks.has_action("admin_post_async/async", task.on_receive)
    assert host.hooks.has_action("admin_post_nopriv_async/async", task.on_receive)


def test_auth_level_logged_in_only():
    host = make_host()
    task = Async(host, LOGGED_IN_ONLY)

    assert host.hooks.has_action("async", task.on_trigger)
    assert host.hooks.has_action("admin_post_async/async", task.on_receive)
    assert not host.hooks.has_action("admin_post_nopriv_async/async")


def test_auth_level_logged_out_only():
    host = make_host()
    task = Async(host, LOGGED_OUT_ONLY)

    assert host.hooks.has_action("async", task.on_trigger)
    assert not host.hooks.has_action("admin_post_async/async")
    assert host.hooks.has_action("admin_post_nopriv_async/async", task.on_receive)


def test_trigger_uses_priority_and_arity():
    host = make_host()
    task = Async(host, TaskDefinition(action_name="async", argument_arity=2, priority=1))
    other = Mock()
    host.hooks.add_action("async", other, priority=5)

    host.hooks.do_action("async", "a", "b", "c")

    assert task.prepared == [["a", "b"]]
    other.assert_called_once_with("a")


@pytest.mark.parametrize("definition", [None, TaskDefinition(action_name="")])
def test_empty_action_fails_before_subscribing(definition):
    host = make_host()

    with pytest.raises(TaskConfigurationError, match="NoAction"):
        NoAction(host, definition)

    assert not host.hooks.has_action("")
    assert not host.hooks.has_action("admin_post_async/")
    assert not host.hooks.has_action("admin_post_nopriv_async/")


@pytest.mark.parametrize("action_name", ["nopriv_async", "nopriv_"])
def test_anonymous_prefix_is_reserved(action_name):
    host = make_host()

    with pytest.raises(TaskConfigurationError, match="nopriv_"):
        Async(host, TaskDefinition(action_name=action_name))

    assert not host.hooks.has_action(action_name)


def test_new_task_is_idle():
    assert Async(make_host()).state is DispatchState.IDLE


# -------------------------
# TRIGGER
# -------------------------

def test_exception_stops_launch_sequence():
    host = make_host()
    task = Async(host, prepare=Mock(side_effect=RuntimeError("no postback")))

    with patch.object(task, "create_nonce") as create_nonce:
        task.on_trigger(3, 42)

    assert task.prepared == [[3, 42]]
    create_nonce.assert_not_called()
    assert task.pending_payload is None
    assert task.state is DispatchState.ABORTED
    assert not host.hooks.has_action("shutdown")


def test_non_mapping_payload_aborts():
    host = make_host()
    task = Async(host, prepare=lambda args: ["not", "a", "mapping"])

    task.on_trigger()

    assert task.state is DispatchState.ABORTED
    assert task.pending_payload is None
    assert not host.hooks.has_action("shutdown")


def test_launch_sets_action_and_nonce():
    host = make_host()
    task = Async(host, prepare=lambda args: {"foo": args[0]})

    task.on_trigger("arg7")

    data = task.pending_payload
    assert data["foo"] == "arg7"
    assert data["action"] == "async/async"
    assert data["_nonce"] == task.create_nonce()
    assert task.state is DispatchState.SCHEDULED
    assert host.hooks.has_action("shutdown", task.on_fire)


def test_reserved_keys_are_overwritten():
    host = make_host()
    task = Async(host, prepare=lambda args: {"action": "evil", "_nonce": "forged"})

    task.on_trigger()

    assert task.pending_payload["action"] == "async/async"
    assert task.pending_payload["_nonce"] != "forged"


def test_repeated_trigger_registers_shutdown_once():
    transport = Mock()
    host = make_host(transport=transport)
    task = Async(host, prepare=lambda args: {"n": args[0]})

    task.on_trigger(1)
    task.on_trigger(2)
    host.shutdown()

    transport.post.assert_called_once()
    assert transport.post.call_args.kwargs["data"]["n"] == "2"


def test_failed_retrigger_keeps_earlier_payload():
    host = make_host()
    calls = iter([{"n": 1}, RuntimeError("second fails")])

    def prepare(args):
        result = next(calls)
        if isinstance(result, Exception):
            raise result
        return result

    task = Async(host, prepare=prepare)
    task.on_trigger()
    task.on_trigger()

    assert task.pending_payload["n"] == 1
    assert task.state is DispatchState.SCHEDULED


def test_trigger_through_hooks_does_not_surface_failure():
    host = make_host()
    Async(host, prepare=Mock(side_effect=ValueError("bad")))

    # Must not raise into the triggering request.
    assert host.hooks.do_action("async", "x") == 1


# -------------------------
# FIRE
# -------------------------

def test_launch_on_shutdown():
    transport = Mock()
    cookies = {
        "_some_cookie": "Value",
        "foo": "bar",
        "random": 1234,
        "array": ["not", "scalar"],
    }
    host = make_host(context=RequestContext(cookies=cookies), transport=transport)
    task = Async(host)

    task.on_trigger()
    nonce = task.pending_payload["_nonce"]
    task.on_fire()

    transport.post.assert_called_once_with(
        POSTBACK_URL,
        data={"action": "async/async", "_nonce": nonce},
        headers={
            "cookie": "_some_cookie=Value; foo=bar; random=1234; array=%5B%22not%22%2C%22scalar%22%5D"
        },
        timeout=(0.05, 0.01),
        verify=True,
        blocking=False,
    )
    assert task.state is DispatchState.FIRED


@pytest.mark.parametrize("verify_ssl", [True, False])
def test_ssl_verify_follows_filter(verify_ssl):
    transport = Mock()
    host = make_host(transport=transport)
    host.hooks.add_filter("https_local_ssl_verify", lambda default: verify_ssl)
    task = Async(host)

    task.on_trigger()
    task.on_fire()

    assert transport.post.call_args.kwargs["verify"] is verify_ssl


def test_launch_on_shutdown_empty_body():
    transport = Mock()
    task = Async(make_host(transport=transport))

    task.on_fire()

    transport.post.assert_not_called()
    assert task.state is DispatchState.IDLE


def test_fire_consumes_payload_once():
    transport = Mock()
    host = make_host(transport=transport)
    task = Async(host)

    task.on_trigger()
    task.on_fire()
    task.on_fire()

    assert transport.post.call_count == 1
    assert task.pending_payload is None


def test_non_scalar_payload_values_reach_the_receiver_whole():
    transport = Mock()
    host = make_host(transport=transport)
    task = Async(host, prepare=lambda args: {"ids": [1, 2, 3], "meta": {"a": 1, "b": 2}, "on": True})

    task.on_trigger()
    task.on_fire()

    data = transport.post.call_args.kwargs["data"]
    assert data["ids"] == "[1,2,3]"
    assert data["meta"] == '{"a":1,"b":2}'
    assert data["on"] == "1"

    # One field per name on the wire.
    received = dict(parse_qsl(urlencode(data)))
    assert json.loads(received["ids"]) == [1, 2, 3]
    assert json.loads(received["meta"]) == {"a": 1, "b": 2}


def test_transport_failure_does_not_stop_other_postbacks():
    transport = Mock()
    transport.post.side_effect = [RuntimeError("can't start new thread"), None]
    host = make_host(transport=transport)
    first = Async(host, TaskDefinition(action_name="first"))
    second = Async(host, TaskDefinition(action_name="second"))

    host.hooks.do_action("first")
    host.hooks.do_action("second")
    assert host.shutdown() == 2

    assert transport.post.call_count == 2
    assert transport.post.call_args.kwargs["data"]["action"] == "async/second"
    assert first.state is DispatchState.ABORTED
    assert first.pending_payload is None
    assert second.state is DispatchState.FIRED


def test_aborted_schedule_never_fires():
    transport = Mock()
    host = make_host(transport=transport)
    Async(host, prepare=Mock(side_effect=RuntimeError("boom")))

    host.hooks.do_action("async")
    host.shutdown()

    transport.post.assert_not_called()


# -------------------------
# RECEIVE
# -------------------------

def _receive(task):
    with pytest.raises(ExecutionTerminated) as excinfo:
        task.on_receive()
    return excinfo.value


def test_handle_postback_nonce_not_set():
    host = make_host()
    task = Async(host)

    with patch.object(task, "verify_nonce") as verify_nonce:
        terminated = _receive(task)

    verify_nonce.assert_not_called()
    assert task.executed == []
    assert terminated.silent is True


@pytest.mark.parametrize("nonce", ["asdfasdf", "", "0123456789", 99])
def test_handle_postback_invalid_nonce(nonce):
    host = make_host(context=RequestContext(form={"_nonce": nonce}))
    task = Async(host)

    terminated = _receive(task)

    assert task.executed == []
    assert terminated.silent is True


def test_handle_postback_nonce_from_other_task_rejected():
    host = make_host()
    other = Async(host, TaskDefinition(action_name="other"))
    host.context.form = {"_nonce": other.create_nonce()}
    task = Async(host)

    _receive(task)

    assert task.executed == []


def test_handle_postback_logged_in():
    host = make_host(context=RequestContext(is_authenticated=True))
    task = Async(host)
    host.context.form = {"_nonce": task.create_nonce()}

    terminated = _receive(task)

    assert task.executed == ["async"]
    assert task.action_name == "async"
    assert terminated.silent is True


def test_handle_postback_anon():
    host = make_host(context=RequestContext(is_authenticated=False))
    task = Async(host)
    host.context.form = {"_nonce": task.create_nonce()}

    _receive(task)

    assert task.executed == ["nopriv_async"]
    assert task.action_name == "nopriv_async"


def test_handle_postback_stale_nonce_accepted():
    window = FixedWindow(10)
    host = make_host(window=window)
    task = Async(host)
    host.context.form = {"_nonce": task.create_nonce()}

    window.window = 11
    assert task.verify_nonce(host.context.form["_nonce"]) is VerifyResult.STALE
    _receive(task)

    assert len(task.executed) == 1


def test_handle_postback_expired_nonce_rejected():
    window = FixedWindow(10)
    host = make_host(window=window)
    task = Async(host)
    host.context.form = {"_nonce": task.create_nonce()}

    window.window = 12
    _receive(task)

    assert task.executed == []


def test_action_failure_still_terminates():
    host = make_host(context=RequestContext(is_authenticated=True))
    task = Async(host)
    host.context.form = {"_nonce": task.create_nonce()}

    with patch.object(task, "execute_action", side_effect=RuntimeError("boom")) as execute:
        terminated = _receive(task)

    execute.assert_called_once_with()
    assert terminated.silent is True


def test_execution_killed_either_way():
    host = make_host(context=RequestContext(is_authenticated=True))
    task = Async(host)

    host.context.form = {"_nonce": task.create_nonce()}
    _receive(task)

    host.context.form = {}
    _receive(task)

    assert task.executed == ["async"]


# -------------------------
# END TO END
# -------------------------

def test_schedule_fire_receive_round_trip():
    transport = Mock()
    sender = make_host(transport=transport)
    Async(sender, prepare=lambda args: {"foo": "bar"})

    sender.hooks.do_action("async", "ignored")
    sender.shutdown()

    body = transport.post.call_args.kwargs["data"]
    assert set(body) == {"foo", "action", "_nonce"}
    assert body["foo"] == "bar"
    assert body["action"] == "async/async"
    assert len(body["_nonce"]) == 10

    # A fresh request receives it.
    receiver = make_host(context=RequestContext(form=dict(body), is_authenticated=True))
    task = Async(receiver)
    assert task.verify_nonce(body["_nonce"]) is VerifyResult.FRESH

    with pytest.raises(ExecutionTerminated):
        receiver.route_postback()

    assert task.executed == ["async"]
