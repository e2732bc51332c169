import pytest

from billing.utils.best_effort import best_effort
from billing.utils.retry import retry_call, retry_until


def _flaky(failures, value="ok"):
    state = {"calls": 0}

    def fn():
        state["calls"] += 1
        if state["calls"] <= failures:
            raise RuntimeError(f"fail {state['calls']}")
        return value

    return fn, state


def test_retry_call_returns_first_success():
    sleeps = []
    fn, state = _flaky(2)
    assert retry_call(fn, attempts=3, delay=0.5, label="t", sleep=sleeps.append) == "ok"
    assert state["calls"] == 3
    assert sleeps == [0.5, 0.5]


def test_retry_call_reraises_last_error():
    fn, state = _flaky(5)
    with pytest.raises(RuntimeError, match="fail 3"):
        retry_call(fn, attempts=3, delay=0, label="t", sleep=lambda s: None)
    assert state["calls"] == 3


def test_retry_call_only_retries_listed_errors():
    def fn():
        raise KeyError("nope")

    with pytest.raises(KeyError):
        retry_call(fn, attempts=3, delay=0, label="t", retry_on=(RuntimeError,), sleep=lambda s: None)


def test_retry_call_rejects_zero_attempts():
    with pytest.raises(ValueError):
        retry_call(lambda: 1, attempts=0, delay=0, label="t")


def test_retry_until_waits_for_predicate():
    values = iter([None, {}, {"fee": 1.2}])
    sleeps = []
    result = retry_until(lambda: next(values), lambda r: bool(r), attempts=3, delay=2.0, label="fee", sleep=sleeps.append)
    assert result == {"fee": 1.2}
    assert sleeps == [2.0, 2.0]


def test_retry_until_gives_up_with_none():
    fn, state = _flaky(10)
    assert retry_until(fn, lambda r: True, attempts=2, delay=0, label="t", sleep=lambda s: None) is None
    assert state["calls"] == 2


def test_best_effort_swallows_and_logs(caplog):
    def boom():
        raise RuntimeError("crm down")

    assert best_effort("crm", boom) is None
    assert "best_effort crm failed" in caplog.text


def test_best_effort_passes_arguments_through():
    assert best_effort("sum", lambda a, b=0: a + b, 2, b=3) == 5
