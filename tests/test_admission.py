import pytest
import redis

from passgate.admission import AllowAll, RedisAdmissionControl
from passgate.errors import InternalError


class FakePipeline:
    def __init__(self, redis):
        self.redis = redis
        self.ops = []

    def incr(self, key):
        self.ops.append(("incr", key))
        return self

    def expire(self, key, seconds, nx=False):
        self.ops.append(("expire", key, seconds, nx))
        return self

    def execute(self):
        results = []
        for op in self.ops:
            if op[0] == "incr":
                self.redis.counts[op[1]] = self.redis.counts.get(op[1], 0) + 1
                results.append(self.redis.counts[op[1]])
            else:
                _, key, seconds, nx = op
                if nx and key in self.redis.ttls:
                    results.append(False)
                else:
                    self.redis.ttls[key] = seconds
                    results.append(True)
        self.ops = []
        return results


class FakeRedis:
    """Just enough of redis.Redis for a fixed-window counter."""

    def __init__(self):
        self.counts = {}
        self.ttls = {}

    def pipeline(self):
        return FakePipeline(self)

    def expire_all(self):
        self.counts.clear()
        self.ttls.clear()


def test_allows_up_to_limit_then_denies():
    redis = FakeRedis()
    admission = RedisAdmissionControl(redis, limit=3, window_seconds=60)

    assert [admission.admit("1.2.3.4") for _ in range(4)] == [True, True, True, False]
    assert redis.ttls == {"admission:1.2.3.4": 60}


def test_callers_are_counted_separately():
    admission = RedisAdmissionControl(FakeRedis(), limit=1)
    assert admission.admit("a") is True
    assert admission.admit("b") is True
    assert admission.admit("a") is False


def test_new_window_resets():
    redis = FakeRedis()
    admission = RedisAdmissionControl(redis, limit=1)
    assert admission.admit("a") is True
    assert admission.admit("a") is False
    redis.expire_all()
    assert admission.admit("a") is True


def test_allow_all():
    assert all(AllowAll().admit("a") for _ in range(100))


class UnreachableRedis(FakeRedis):
    def pipeline(self):
        pipe = FakePipeline(self)

        def execute():
            raise redis.ConnectionError("connection refused")

        pipe.execute = execute
        return pipe


def test_store_failure_is_internal_error():
    admission = RedisAdmissionControl(UnreachableRedis(), limit=3)
    with pytest.raises(InternalError):
        admission.admit("a")
